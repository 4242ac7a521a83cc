"""Content calendar: per-date scheduled runs for a site."""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from enum import Enum
from typing import Iterable

from dateutil.relativedelta import relativedelta

from seoiq.pipeline.base import RunStatus
from seoiq.storage.models import ScheduledRun
from seoiq.storage.runs import ScheduledRunStore
from seoiq.storage.sites import SiteStore

logger = logging.getLogger(__name__)

_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


class ToggleResult(str, Enum):
    CREATED = "created"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


def parse_year_month(year_month: str) -> date:
    """Return the first day of a ``YYYY-MM`` month."""
    match = _YEAR_MONTH.match(year_month.strip())
    if not match:
        raise ValueError(f"Expected a month as YYYY-MM, got {year_month!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range in {year_month!r}")
    return date(year, month, 1)


def month_bounds(year_month: str) -> tuple[date, date]:
    """First day of the month and first day of the following month."""
    start = parse_year_month(year_month)
    return start, start + relativedelta(months=1)


def sunday_based_weekday(day: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def eligible_dates(year_month: str, weekdays: Iterable[int], today: date) -> list[date]:
    """Days of the month strictly after ``today`` on one of ``weekdays``."""
    wanted = set(weekdays)
    bad = [w for w in wanted if not 0 <= w <= 6]
    if bad:
        raise ValueError(f"Weekdays must be 0 (Sunday) to 6 (Saturday), got {sorted(bad)}")

    start, end = month_bounds(year_month)
    days = []
    day = max(start, today + timedelta(days=1))
    while day < end:
        if sunday_based_weekday(day) in wanted:
            days.append(day)
        day += timedelta(days=1)
    return days


class CalendarScheduler:
    """Creates, removes and lists scheduled runs for a site's month view.

    Listing, toggling and scheduling raise ``SiteNotFoundError`` for an
    unregistered site.
    """

    def __init__(self, runs: ScheduledRunStore, sites: SiteStore) -> None:
        self._runs = runs
        self._sites = sites

    def list_month(self, site_id: str, year_month: str) -> list[ScheduledRun]:
        start, end = month_bounds(year_month)
        self._sites.get_autopilot_config(site_id)
        return self._runs.list_between(site_id, start, end)

    def toggle_day(self, site_id: str, day: date, today: date) -> ToggleResult:
        """Create a pending run on an empty day or remove a pending one.

        Past days and days whose run has moved past ``pending`` are left
        alone.
        """
        self._sites.get_autopilot_config(site_id)
        if day < today:
            return ToggleResult.UNCHANGED

        existing = self._runs.get_by_date(site_id, day)
        if existing is None:
            created = self._runs.create_many(site_id, [day])
            return ToggleResult.CREATED if created else ToggleResult.UNCHANGED
        if existing.status != RunStatus.PENDING.value:
            return ToggleResult.UNCHANGED

        deleted = self._runs.delete_pending(site_id, day)
        return ToggleResult.DELETED if deleted else ToggleResult.UNCHANGED

    def schedule_month(
        self,
        site_id: str,
        year_month: str,
        weekdays: Iterable[int],
        today: date,
    ) -> list[ScheduledRun]:
        """Add pending runs on the chosen weekdays after ``today``.

        Existing rows are never modified, so repeating the call is a no-op.
        """
        self._sites.get_autopilot_config(site_id)
        days = eligible_dates(year_month, weekdays, today)
        created = self._runs.create_many(site_id, days)
        logger.info(
            "Month %s for %s: %d eligible day(s), %d new run(s)",
            year_month,
            site_id,
            len(days),
            len(created),
        )
        return created

    def ready_today(self, site_id: str, today: date) -> list[ScheduledRun]:
        """Today's runs whose keyword was picked overnight."""
        return self._runs.list_on(today, RunStatus.KEYWORD_PICKED, site_id=site_id)
