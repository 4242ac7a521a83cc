"""Per-site autopilot configuration and the single-slot progress record."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from pathlib import Path

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import OperationalError
from sqlmodel import select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from seoiq.pipeline.base import (
    AWAITING_GENERATION,
    Cadence,
    PreconditionError,
    ReasoningLevel,
    SiteNotFoundError,
)
from seoiq.storage.database import get_session
from seoiq.storage.models import SiteRecord, utcnow

logger = logging.getLogger(__name__)


class AutopilotConfig(BaseModel):
    """Read view of a site's autopilot fields."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    domain: str
    enabled: bool
    cadence: Cadence
    reasoning_level: ReasoningLevel
    articles_per_run: int
    next_run_at: datetime | None = None
    pipeline_step: str | None = None
    pipeline_keyword_id: str | None = None
    pipeline_article_id: str | None = None
    last_run_at: datetime | None = None
    last_error: str | None = None
    run_started_at: datetime | None = None

    @property
    def awaiting_generation(self) -> bool:
        return self.pipeline_step == AWAITING_GENERATION

    @classmethod
    def from_record(cls, record: SiteRecord) -> AutopilotConfig:
        return cls(
            site_id=record.id,
            domain=record.domain,
            enabled=record.autopilot_enabled,
            cadence=Cadence(record.autopilot_cadence),
            reasoning_level=ReasoningLevel(record.autopilot_iq_level),
            articles_per_run=record.autopilot_articles_per_run,
            next_run_at=record.autopilot_next_run_at,
            pipeline_step=record.autopilot_pipeline_step,
            pipeline_keyword_id=record.autopilot_pipeline_keyword_id,
            pipeline_article_id=record.autopilot_pipeline_article_id,
            last_run_at=record.autopilot_last_run_at,
            last_error=record.autopilot_last_error,
            run_started_at=record.autopilot_run_started_at,
        )


class AutopilotUpdate(BaseModel):
    """Partial update; fields left unset are not touched."""

    enabled: bool | None = None
    cadence: Cadence | None = None
    reasoning_level: ReasoningLevel | None = None
    articles_per_run: int | None = None
    pipeline_step: str | None = None


def next_run_after(now: datetime, cadence: Cadence, hour: int) -> datetime:
    """Next nightly slot ``cadence`` days from ``now`` at ``hour``:00."""
    day = (now + relativedelta(days=cadence.days)).date()
    return datetime.combine(day, time(hour=hour))


class SiteStore:
    """Persistence for ``SiteRecord`` autopilot fields.

    Progress writes always set or clear ``pipeline_step`` and
    ``pipeline_keyword_id`` in the same commit.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        max_articles_per_run: int = 5,
        nightly_run_hour: int = 6,
        lease_minutes: int = 60,
    ) -> None:
        self._db_path = db_path
        self._max_articles_per_run = max_articles_per_run
        self._nightly_run_hour = nightly_run_hour
        self._lease = timedelta(minutes=lease_minutes)

    # -- sites ----------------------------------------------------------------

    def add_site(self, site_id: str, organization_id: str, domain: str) -> AutopilotConfig:
        with get_session(self._db_path) as session:
            if session.get(SiteRecord, site_id) is not None:
                raise PreconditionError(f"Site already exists: {site_id}")
            record = SiteRecord(id=site_id, organization_id=organization_id, domain=domain)
            session.add(record)
            session.commit()
            session.refresh(record)
            return AutopilotConfig.from_record(record)

    def list_sites(self) -> list[AutopilotConfig]:
        with get_session(self._db_path) as session:
            records = session.exec(select(SiteRecord).order_by(SiteRecord.id)).all()
            return [AutopilotConfig.from_record(r) for r in records]

    def due_sites(self, now: datetime) -> list[AutopilotConfig]:
        """Enabled sites whose next run is due and that have nothing in flight.

        A site held by a live run lease is not due, whatever its progress.
        """
        with get_session(self._db_path) as session:
            records = session.exec(
                select(SiteRecord)
                .where(SiteRecord.autopilot_enabled == True)  # noqa: E712
                .where(SiteRecord.autopilot_next_run_at != None)  # noqa: E711
                .where(SiteRecord.autopilot_next_run_at <= now)
                .where(SiteRecord.autopilot_pipeline_step == None)  # noqa: E711
                .where(self._lease_free(utcnow()))
                .order_by(SiteRecord.autopilot_next_run_at, SiteRecord.id)
            ).all()
            return [AutopilotConfig.from_record(r) for r in records]

    # -- config ---------------------------------------------------------------

    def get_autopilot_config(self, site_id: str) -> AutopilotConfig:
        with get_session(self._db_path) as session:
            return AutopilotConfig.from_record(self._load(session, site_id))

    def update_autopilot_config(self, site_id: str, changes: AutopilotUpdate) -> AutopilotConfig:
        fields = changes.model_fields_set
        with get_session(self._db_path) as session:
            record = self._load(session, site_id)

            if "pipeline_step" in fields:
                if changes.pipeline_step is not None:
                    raise PreconditionError(
                        "pipeline_step can only be cleared through a config update"
                    )
                self._clear_progress(record)

            if changes.cadence is not None:
                record.autopilot_cadence = changes.cadence.value
            if changes.reasoning_level is not None:
                record.autopilot_iq_level = changes.reasoning_level.value
            if changes.articles_per_run is not None:
                record.autopilot_articles_per_run = min(
                    max(changes.articles_per_run, 1), self._max_articles_per_run
                )

            if changes.enabled is True:
                record.autopilot_enabled = True
                record.autopilot_next_run_at = next_run_after(
                    utcnow(), Cadence(record.autopilot_cadence), self._nightly_run_hour
                )
            elif changes.enabled is False:
                record.autopilot_enabled = False
                record.autopilot_next_run_at = None

            record.updated_at = utcnow()
            session.add(record)
            session.commit()
            session.refresh(record)
            return AutopilotConfig.from_record(record)

    def advance_schedule(self, site_id: str, now: datetime) -> None:
        with get_session(self._db_path) as session:
            record = self._load(session, site_id)
            record.autopilot_next_run_at = next_run_after(
                now, Cadence(record.autopilot_cadence), self._nightly_run_hour
            )
            record.updated_at = utcnow()
            session.add(record)
            session.commit()

    # -- in-flight lease ------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    def claim_run(self, site_id: str, *, resume: bool) -> AutopilotConfig:
        """Take the site's single in-flight slot.

        A fresh run requires no recorded progress; a resume requires
        ``awaiting_generation``. A lease older than the configured window
        is treated as abandoned by a crashed process.
        """
        now = utcnow()
        expected_step = (
            SiteRecord.autopilot_pipeline_step == AWAITING_GENERATION
            if resume
            else SiteRecord.autopilot_pipeline_step == None  # noqa: E711
        )
        stmt = (
            update(SiteRecord)
            .where(
                and_(
                    SiteRecord.id == site_id,
                    expected_step,
                    self._lease_free(now),
                )
            )
            .values(autopilot_run_started_at=now, updated_at=now)
        )
        with get_session(self._db_path) as session:
            result = session.exec(stmt)
            session.commit()
            claimed = result.rowcount == 1
            config = AutopilotConfig.from_record(self._load(session, site_id))

        if claimed:
            return config
        if config.run_started_at is not None and config.run_started_at >= now - self._lease:
            raise PreconditionError(f"An autopilot run is already in progress for {site_id}")
        if resume:
            raise PreconditionError(f"Nothing to resume for {site_id}: no article is in flight")
        raise PreconditionError(
            f"Site {site_id} has an article awaiting generation; resume it or clear progress first"
        )

    def release_run(self, site_id: str, claimed_at: datetime) -> None:
        """Drop the lease stamped ``claimed_at``; a newer claim is kept."""
        with get_session(self._db_path) as session:
            result = session.exec(
                update(SiteRecord)
                .where(SiteRecord.id == site_id)
                .where(SiteRecord.autopilot_run_started_at == claimed_at)
                .values(autopilot_run_started_at=None)
            )
            session.commit()
        if result.rowcount != 1:
            logger.warning("Lease on %s was taken over before release", site_id)

    # -- progress checkpoints -------------------------------------------------

    def checkpoint_keyword(self, site_id: str, keyword_id: str) -> None:
        """Record a picked keyword; steps 1-2 are now durable."""
        with get_session(self._db_path) as session:
            record = self._load(session, site_id)
            record.autopilot_pipeline_step = AWAITING_GENERATION
            record.autopilot_pipeline_keyword_id = keyword_id
            record.autopilot_pipeline_article_id = None
            record.autopilot_last_error = None
            record.updated_at = utcnow()
            session.add(record)
            session.commit()

    def record_article(self, site_id: str, article_id: str) -> None:
        with get_session(self._db_path) as session:
            session.exec(
                update(SiteRecord)
                .where(SiteRecord.id == site_id)
                .where(SiteRecord.autopilot_pipeline_step == AWAITING_GENERATION)
                .values(autopilot_pipeline_article_id=article_id, updated_at=utcnow())
            )
            session.commit()

    def complete_unit(self, site_id: str) -> None:
        """Clear progress after a successful publish and stamp ``last_run_at``."""
        with get_session(self._db_path) as session:
            record = self._load(session, site_id)
            self._clear_progress(record)
            record.autopilot_last_run_at = utcnow()
            record.autopilot_last_error = None
            record.updated_at = utcnow()
            session.add(record)
            session.commit()

    def record_error(self, site_id: str, message: str) -> None:
        with get_session(self._db_path) as session:
            record = self._load(session, site_id)
            record.autopilot_last_error = message
            record.updated_at = utcnow()
            session.add(record)
            session.commit()
        logger.warning("Autopilot error for %s: %s", site_id, message)

    # -- helpers --------------------------------------------------------------

    def _lease_free(self, now: datetime):
        return or_(
            SiteRecord.autopilot_run_started_at == None,  # noqa: E711
            SiteRecord.autopilot_run_started_at < now - self._lease,
        )

    @staticmethod
    def _clear_progress(record: SiteRecord) -> None:
        record.autopilot_pipeline_step = None
        record.autopilot_pipeline_keyword_id = None
        record.autopilot_pipeline_article_id = None

    @staticmethod
    def _load(session, site_id: str) -> SiteRecord:
        record = session.get(SiteRecord, site_id)
        if record is None:
            raise SiteNotFoundError(f"Site not found: {site_id}")
        return record
