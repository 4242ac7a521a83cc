"""Unattended keyword pre-pick, meant to run once a night.

Picking is cheap and safe to run with nobody watching; generation and
publishing are left for a resume or a ready-today run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from seoiq.pipeline.base import ContentBackend, PreconditionError, RunStatus
from seoiq.storage.runs import ScheduledRunStore
from seoiq.storage.sites import SiteStore

logger = logging.getLogger(__name__)

NO_KEYWORDS = "No active keywords found; refresh opportunities first"


@dataclass
class NightlyReport:
    sites_picked: dict[str, str] = field(default_factory=dict)  # site id -> keyword id
    sites_failed: dict[str, str] = field(default_factory=dict)  # site id -> error
    runs_picked: list[int] = field(default_factory=list)
    runs_failed: list[int] = field(default_factory=list)
    sites_skipped: list[str] = field(default_factory=list)  # held by another run


class NightlyTrigger:
    def __init__(
        self,
        backend: ContentBackend,
        sites: SiteStore,
        runs: ScheduledRunStore,
    ) -> None:
        self._backend = backend
        self._sites = sites
        self._runs = runs

    def run(self, now: datetime) -> NightlyReport:
        report = NightlyReport()
        self.pick_due_sites(now, report)
        self.pick_scheduled_rows(now, report)
        return report

    def pick_due_sites(self, now: datetime, report: NightlyReport | None = None) -> NightlyReport:
        """Checkpoint a keyword for every enabled site whose run is due.

        Each site is picked under the same lease an ad hoc run takes. A
        site that cannot be claimed keeps its ``next_run_at`` for the next
        night.
        """
        report = report or NightlyReport()
        for config in self._sites.due_sites(now):
            try:
                claim = self._sites.claim_run(config.site_id, resume=False)
            except PreconditionError as exc:
                logger.info("Skipping nightly pick for %s: %s", config.site_id, exc)
                report.sites_skipped.append(config.site_id)
                continue

            try:
                self._pick_for_site(config.site_id, report)
                self._sites.advance_schedule(config.site_id, now)
            finally:
                self._sites.release_run(config.site_id, claim.run_started_at)
        return report

    def _pick_for_site(self, site_id: str, report: NightlyReport) -> None:
        try:
            keyword = self._backend.pick_best_keyword(site_id)
        except Exception as exc:
            message = str(exc) or NO_KEYWORDS
            self._sites.record_error(site_id, message)
            report.sites_failed[site_id] = message
            return
        self._sites.checkpoint_keyword(site_id, keyword.id)
        report.sites_picked[site_id] = keyword.id
        logger.info("Nightly pick for %s: %r", site_id, keyword.keyword)

    def pick_scheduled_rows(
        self, now: datetime, report: NightlyReport | None = None
    ) -> NightlyReport:
        """Move today's pending runs to ``keyword_picked`` (or ``failed``)."""
        report = report or NightlyReport()
        for row in self._runs.list_on(now.date(), RunStatus.PENDING):
            try:
                keyword = self._backend.pick_best_keyword(row.site_id)
            except Exception as exc:
                if self._runs.transition(
                    row.id,
                    RunStatus.PENDING,
                    RunStatus.FAILED,
                    error=str(exc) or NO_KEYWORDS,
                ):
                    report.runs_failed.append(row.id)
                logger.warning("Nightly pick failed for run %s: %s", row.id, exc)
                continue

            if self._runs.transition(
                row.id,
                RunStatus.PENDING,
                RunStatus.KEYWORD_PICKED,
                keyword_id=keyword.id,
                keyword_text=keyword.keyword,
            ):
                report.runs_picked.append(row.id)
        return report
