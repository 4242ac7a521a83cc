"""Composition root for running the pipeline ad hoc or from the calendar."""

from __future__ import annotations

import logging
from datetime import date

from seoiq.config import Settings
from seoiq.pipeline.base import (
    ContentBackend,
    RunReport,
    RunStatus,
    StepFailedError,
)
from seoiq.pipeline.calendar import CalendarScheduler
from seoiq.pipeline.orchestrator import PipelineOrchestrator, ProgressCallback
from seoiq.storage.runs import ScheduledRunStore
from seoiq.storage.sites import SiteStore

logger = logging.getLogger(__name__)


class RunExecutor:
    """Run now, resume, and run the calendar's ready-today rows.

    Ad hoc runs track progress on the site; calendar runs track it on
    each scheduled row and leave the site's progress fields alone.
    """

    def __init__(
        self,
        backend: ContentBackend,
        sites: SiteStore,
        runs: ScheduledRunStore,
        *,
        generate_thumbnail: bool = True,
        submit_indexing: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.sites = sites
        self.runs = runs
        self.calendar = CalendarScheduler(runs, sites)
        self.orchestrator = PipelineOrchestrator(
            backend,
            sites,
            generate_thumbnail=generate_thumbnail,
            submit_indexing=submit_indexing,
            on_progress=on_progress,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: ContentBackend,
        on_progress: ProgressCallback | None = None,
    ) -> RunExecutor:
        sites = SiteStore(
            settings.db_path,
            max_articles_per_run=settings.max_articles_per_run,
            nightly_run_hour=settings.nightly_run_hour,
            lease_minutes=settings.run_lease_minutes,
        )
        return cls(
            backend,
            sites,
            ScheduledRunStore(settings.db_path, lease_minutes=settings.run_lease_minutes),
            generate_thumbnail=settings.generate_thumbnail,
            submit_indexing=settings.submit_indexing,
            on_progress=on_progress,
        )

    def run_now(self, site_id: str, instructions: str | None = None) -> RunReport:
        return self.orchestrator.run_fresh(site_id, instructions=instructions)

    def resume(self, site_id: str, instructions: str | None = None) -> RunReport:
        return self.orchestrator.resume(site_id, instructions=instructions)

    def run_ready_today(self, site_id: str, today: date) -> RunReport:
        """Generate and publish every run for ``today`` whose keyword is picked.

        Each row is claimed with a ``keyword_picked -> generating``
        transition first; rows another invocation already claimed are
        skipped. Rows abandoned in ``generating`` by a process that died are
        reclaimed first. The first failure, including an interrupt, marks its
        row failed and halts.
        """
        config = self.sites.get_autopilot_config(site_id)
        self.runs.reclaim_stale(site_id, today)
        ready = self.calendar.ready_today(site_id, today)
        report = RunReport(site_id=site_id)
        logger.info("%d scheduled run(s) ready for %s on %s", len(ready), site_id, today)

        for unit, row in enumerate(ready, start=1):
            if not self.runs.transition(row.id, RunStatus.KEYWORD_PICKED, RunStatus.GENERATING):
                logger.info("Scheduled run %s was claimed elsewhere, skipping", row.id)
                report.skipped_runs.append(row.id)
                continue

            try:
                result = self.orchestrator.run_picked(
                    config,
                    row.keyword_id,
                    row.keyword_text,
                    unit=unit,
                    total=len(ready),
                    report=report,
                )
            except BaseException as exc:
                if isinstance(exc, StepFailedError):
                    message = exc.message
                else:
                    message = str(exc) or exc.__class__.__name__
                self.runs.transition(
                    row.id, RunStatus.GENERATING, RunStatus.FAILED, error=message
                )
                raise

            self.runs.transition(
                row.id,
                RunStatus.GENERATING,
                RunStatus.COMPLETED,
                article_id=result.article_id,
                article_title=result.article_title,
                published_url=result.published_url,
                error=None,
            )
            report.units.append(result)

        return report
