"""Durable table of per-date scheduled runs."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import OperationalError
from sqlmodel import col, select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from seoiq.pipeline.base import RunStatus, ScheduleError
from seoiq.storage.database import get_session
from seoiq.storage.models import ScheduledRun, utcnow

logger = logging.getLogger(__name__)


class ScheduledRunStore:
    """Rows keyed by ``(site_id, scheduled_date)``.

    Status changes go through :meth:`transition`, a conditional update that
    only applies when the row still has the expected status. A row left in
    ``generating`` for longer than the lease window is considered abandoned
    and can be returned to ``keyword_picked`` with :meth:`reclaim_stale`.
    """

    def __init__(self, db_path: Path, *, lease_minutes: int = 60) -> None:
        self._db_path = db_path
        self._lease = timedelta(minutes=lease_minutes)

    def get(self, run_id: int) -> ScheduledRun | None:
        with get_session(self._db_path) as session:
            return session.get(ScheduledRun, run_id)

    def get_by_date(self, site_id: str, day: date) -> ScheduledRun | None:
        with get_session(self._db_path) as session:
            return session.exec(
                select(ScheduledRun)
                .where(ScheduledRun.site_id == site_id)
                .where(ScheduledRun.scheduled_date == day)
            ).first()

    def list_between(self, site_id: str, start: date, end: date) -> list[ScheduledRun]:
        """Rows with ``start <= scheduled_date < end``, oldest first."""
        with get_session(self._db_path) as session:
            return list(
                session.exec(
                    select(ScheduledRun)
                    .where(ScheduledRun.site_id == site_id)
                    .where(ScheduledRun.scheduled_date >= start)
                    .where(ScheduledRun.scheduled_date < end)
                    .order_by(ScheduledRun.scheduled_date)
                ).all()
            )

    def list_on(
        self, day: date, status: RunStatus, site_id: str | None = None
    ) -> list[ScheduledRun]:
        with get_session(self._db_path) as session:
            query = (
                select(ScheduledRun)
                .where(ScheduledRun.scheduled_date == day)
                .where(ScheduledRun.status == status.value)
            )
            if site_id is not None:
                query = query.where(ScheduledRun.site_id == site_id)
            return list(session.exec(query.order_by(ScheduledRun.id)).all())

    def create_many(self, site_id: str, dates: Iterable[date]) -> list[ScheduledRun]:
        """Create ``pending`` rows for dates that have none; returns the new rows.

        Dates that already have a row (in any status) are ignored.
        """
        wanted = sorted(set(dates))
        if not wanted:
            return []

        with get_session(self._db_path) as session:
            existing = set(
                session.exec(
                    select(ScheduledRun.scheduled_date)
                    .where(ScheduledRun.site_id == site_id)
                    .where(col(ScheduledRun.scheduled_date).in_(wanted))
                ).all()
            )
            missing = [d for d in wanted if d not in existing]
            if not missing:
                return []

            now = utcnow()
            session.exec(
                insert(ScheduledRun)
                .values(
                    [
                        {
                            "site_id": site_id,
                            "scheduled_date": d,
                            "status": RunStatus.PENDING.value,
                            "created_at": now,
                            "updated_at": now,
                        }
                        for d in missing
                    ]
                )
                .on_conflict_do_nothing(index_elements=["site_id", "scheduled_date"])
            )
            session.commit()

            created = list(
                session.exec(
                    select(ScheduledRun)
                    .where(ScheduledRun.site_id == site_id)
                    .where(col(ScheduledRun.scheduled_date).in_(missing))
                    .order_by(ScheduledRun.scheduled_date)
                ).all()
            )
        logger.info("Scheduled %d run(s) for %s", len(created), site_id)
        return created

    def delete_pending(self, site_id: str, day: date) -> bool:
        """Delete the row for ``day``; only ``pending`` rows may be deleted.

        Returns False when there is no row. Raises ``ScheduleError`` for a
        row in any other status.
        """
        with get_session(self._db_path) as session:
            row = session.exec(
                select(ScheduledRun)
                .where(ScheduledRun.site_id == site_id)
                .where(ScheduledRun.scheduled_date == day)
            ).first()
            if row is None:
                return False
            if row.status != RunStatus.PENDING.value:
                raise ScheduleError(
                    f"Cannot delete the {day.isoformat()} run for {site_id}: status is {row.status}"
                )
            session.delete(row)
            session.commit()
        return True

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    def transition(
        self,
        run_id: int,
        expected: RunStatus,
        new: RunStatus,
        **values: object,
    ) -> bool:
        """Move a row from ``expected`` to ``new``; False if its status changed."""
        stmt = (
            update(ScheduledRun)
            .where(ScheduledRun.id == run_id)
            .where(ScheduledRun.status == expected.value)
            .values(status=new.value, updated_at=utcnow(), **values)
        )
        with get_session(self._db_path) as session:
            result = session.exec(stmt)
            session.commit()
        return result.rowcount == 1

    def reclaim_stale(self, site_id: str, day: date) -> int:
        """Return abandoned ``generating`` rows for ``day`` to ``keyword_picked``.

        ``updated_at`` is stamped by the claiming transition, so a row whose
        stamp is older than the lease window has no live owner.
        """
        now = utcnow()
        with get_session(self._db_path) as session:
            result = session.exec(
                update(ScheduledRun)
                .where(ScheduledRun.site_id == site_id)
                .where(ScheduledRun.scheduled_date == day)
                .where(ScheduledRun.status == RunStatus.GENERATING.value)
                .where(ScheduledRun.updated_at < now - self._lease)
                .values(status=RunStatus.KEYWORD_PICKED.value, updated_at=now)
            )
            session.commit()
        if result.rowcount:
            logger.warning(
                "Reclaimed %d abandoned run(s) for %s on %s", result.rowcount, site_id, day
            )
        return result.rowcount
