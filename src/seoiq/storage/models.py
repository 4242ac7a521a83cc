"""SQLModel database models."""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SiteRecord(SQLModel, table=True):
    """A managed site and its autopilot configuration and progress slot."""

    id: str = Field(primary_key=True)
    organization_id: str = Field(index=True)
    domain: str

    autopilot_enabled: bool = False
    autopilot_cadence: str = "weekly"  # daily | every_3_days | weekly
    autopilot_iq_level: str = "medium"  # low | medium | high
    autopilot_articles_per_run: int = 1
    autopilot_next_run_at: datetime | None = None

    # Progress slot: step and keyword are always written together
    autopilot_pipeline_step: str | None = None  # None | awaiting_generation
    autopilot_pipeline_keyword_id: str | None = None
    autopilot_pipeline_article_id: str | None = None

    autopilot_last_run_at: datetime | None = None
    autopilot_last_error: str | None = None
    autopilot_run_started_at: datetime | None = None  # in-flight lease

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ScheduledRun(SQLModel, table=True):
    """One calendar-date commitment to produce one article for one site."""

    __table_args__ = (UniqueConstraint("site_id", "scheduled_date"),)

    id: int | None = Field(default=None, primary_key=True)
    site_id: str = Field(foreign_key="siterecord.id", index=True)
    scheduled_date: date = Field(index=True)
    status: str = "pending"  # pending | keyword_picked | generating | completed | failed
    keyword_id: str | None = None
    keyword_text: str | None = None
    article_id: str | None = None
    article_title: str | None = None
    published_url: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
