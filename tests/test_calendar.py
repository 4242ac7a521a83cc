"""Tests for the content calendar scheduler."""

from __future__ import annotations

from datetime import date

import pytest

from seoiq.pipeline.base import RunStatus, SiteNotFoundError
from seoiq.pipeline.calendar import (
    CalendarScheduler,
    ToggleResult,
    eligible_dates,
    month_bounds,
    parse_year_month,
    sunday_based_weekday,
)
from seoiq.storage.runs import ScheduledRunStore
from seoiq.storage.sites import SiteStore
from tests.conftest import SITE_ID

JULY_MWF = [
    date(2025, 7, 11),
    date(2025, 7, 14),
    date(2025, 7, 16),
    date(2025, 7, 18),
    date(2025, 7, 21),
    date(2025, 7, 23),
    date(2025, 7, 25),
    date(2025, 7, 28),
    date(2025, 7, 30),
]


@pytest.fixture
def scheduler(runs: ScheduledRunStore, sites: SiteStore) -> CalendarScheduler:
    return CalendarScheduler(runs, sites)


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def test_parse_year_month() -> None:
    assert parse_year_month("2025-07") == date(2025, 7, 1)


@pytest.mark.parametrize("bad", ["2025-7", "2025-13", "July 2025", "2025-00", ""])
def test_parse_year_month_rejects_bad_input(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_year_month(bad)


def test_month_bounds_wraps_december() -> None:
    assert month_bounds("2025-12") == (date(2025, 12, 1), date(2026, 1, 1))


def test_sunday_based_weekday() -> None:
    assert sunday_based_weekday(date(2025, 7, 13)) == 0  # Sunday
    assert sunday_based_weekday(date(2025, 7, 14)) == 1  # Monday
    assert sunday_based_weekday(date(2025, 7, 19)) == 6  # Saturday


def test_eligible_dates_strictly_after_today() -> None:
    assert eligible_dates("2025-07", {1, 3, 5}, date(2025, 7, 10)) == JULY_MWF


def test_eligible_dates_past_month_is_empty() -> None:
    assert eligible_dates("2025-06", {0, 1, 2, 3, 4, 5, 6}, date(2025, 7, 10)) == []


def test_eligible_dates_future_month_starts_on_first() -> None:
    days = eligible_dates("2025-08", {5}, date(2025, 7, 10))
    assert days[0] == date(2025, 8, 1)
    assert len(days) == 5


def test_eligible_dates_rejects_bad_weekday() -> None:
    with pytest.raises(ValueError):
        eligible_dates("2025-07", {7}, date(2025, 7, 10))


# ---------------------------------------------------------------------------
# schedule_month
# ---------------------------------------------------------------------------


class TestScheduleMonth:
    def test_mon_wed_fri_after_the_tenth(self, scheduler: CalendarScheduler) -> None:
        created = scheduler.schedule_month(SITE_ID, "2025-07", {1, 3, 5}, date(2025, 7, 10))

        assert [r.scheduled_date for r in created] == JULY_MWF
        assert all(r.status == RunStatus.PENDING.value for r in created)
        listed = scheduler.list_month(SITE_ID, "2025-07")
        assert all(r.scheduled_date > date(2025, 7, 10) for r in listed)

    def test_second_call_adds_nothing(self, scheduler: CalendarScheduler) -> None:
        today = date(2025, 7, 10)
        scheduler.schedule_month(SITE_ID, "2025-07", {1, 3, 5}, today)
        before = len(scheduler.list_month(SITE_ID, "2025-07"))

        again = scheduler.schedule_month(SITE_ID, "2025-07", {1, 3, 5}, today)

        assert again == []
        assert len(scheduler.list_month(SITE_ID, "2025-07")) == before

    def test_existing_rows_left_untouched(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        [row] = runs.create_many(SITE_ID, [date(2025, 7, 14)])
        runs.transition(row.id, RunStatus.PENDING, RunStatus.KEYWORD_PICKED, keyword_id="kw-1")

        created = scheduler.schedule_month(SITE_ID, "2025-07", {1}, date(2025, 7, 10))

        assert date(2025, 7, 14) not in [r.scheduled_date for r in created]
        assert runs.get(row.id).status == RunStatus.KEYWORD_PICKED.value
        assert runs.get(row.id).keyword_id == "kw-1"


# ---------------------------------------------------------------------------
# toggle_day
# ---------------------------------------------------------------------------


class TestToggleDay:
    def test_creates_then_deletes(self, scheduler: CalendarScheduler) -> None:
        today = date(2025, 7, 10)
        day = date(2025, 7, 14)

        assert scheduler.toggle_day(SITE_ID, day, today) == ToggleResult.CREATED
        assert [r.scheduled_date for r in scheduler.list_month(SITE_ID, "2025-07")] == [day]

        assert scheduler.toggle_day(SITE_ID, day, today) == ToggleResult.DELETED
        assert scheduler.list_month(SITE_ID, "2025-07") == []

    def test_today_is_actionable(self, scheduler: CalendarScheduler) -> None:
        today = date(2025, 7, 10)
        assert scheduler.toggle_day(SITE_ID, today, today) == ToggleResult.CREATED

    def test_keyword_picked_row_is_not_toggled(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        day = date(2025, 7, 14)
        [row] = runs.create_many(SITE_ID, [day])
        runs.transition(
            row.id, RunStatus.PENDING, RunStatus.KEYWORD_PICKED,
            keyword_id="kw-1", keyword_text="best running shoes 2025",
        )

        result = scheduler.toggle_day(SITE_ID, day, date(2025, 7, 10))

        assert result == ToggleResult.UNCHANGED
        stored = runs.get(row.id)
        assert stored.status == RunStatus.KEYWORD_PICKED.value
        assert stored.keyword_text == "best running shoes 2025"

    def test_past_day_is_never_actionable(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        today = date(2025, 7, 10)
        past = date(2025, 7, 7)
        assert scheduler.toggle_day(SITE_ID, past, today) == ToggleResult.UNCHANGED
        assert runs.get_by_date(SITE_ID, past) is None

        runs.create_many(SITE_ID, [past])
        assert scheduler.toggle_day(SITE_ID, past, today) == ToggleResult.UNCHANGED
        assert runs.get_by_date(SITE_ID, past) is not None


# ---------------------------------------------------------------------------
# list_month / ready_today
# ---------------------------------------------------------------------------


class TestListing:
    def test_list_month_includes_all_statuses_in_range(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        created = runs.create_many(
            SITE_ID, [date(2025, 6, 30), date(2025, 7, 1), date(2025, 7, 31), date(2025, 8, 1)]
        )
        runs.transition(created[1].id, RunStatus.PENDING, RunStatus.FAILED, error="x")

        listed = scheduler.list_month(SITE_ID, "2025-07")

        assert [r.scheduled_date for r in listed] == [date(2025, 7, 1), date(2025, 7, 31)]
        assert listed[0].status == RunStatus.FAILED.value

    def test_ready_today_only_keyword_picked_for_today(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        today = date(2025, 7, 14)
        [picked] = runs.create_many(SITE_ID, [today])
        [tomorrow] = runs.create_many(SITE_ID, [date(2025, 7, 15)])
        runs.create_many("site-b", [today])
        runs.transition(picked.id, RunStatus.PENDING, RunStatus.KEYWORD_PICKED, keyword_id="kw-1")
        runs.transition(tomorrow.id, RunStatus.PENDING, RunStatus.KEYWORD_PICKED, keyword_id="kw-2")

        ready = scheduler.ready_today(SITE_ID, today)

        assert [r.id for r in ready] == [picked.id]


class TestUnknownSite:
    def test_schedule_month_creates_nothing(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        with pytest.raises(SiteNotFoundError):
            scheduler.schedule_month("nope", "2025-07", {1, 3, 5}, date(2025, 7, 10))
        assert runs.list_between("nope", date(2025, 7, 1), date(2025, 8, 1)) == []

    def test_toggle_day_creates_nothing(
        self, scheduler: CalendarScheduler, runs: ScheduledRunStore
    ) -> None:
        with pytest.raises(SiteNotFoundError):
            scheduler.toggle_day("nope", date(2025, 7, 14), date(2025, 7, 10))
        assert runs.get_by_date("nope", date(2025, 7, 14)) is None

    def test_list_month(self, scheduler: CalendarScheduler) -> None:
        with pytest.raises(SiteNotFoundError):
            scheduler.list_month("nope", "2025-07")
