"""Pipeline orchestrator: refresh, pick, generate, publish.

Progress is durable only at two checkpoints: after a keyword is picked
(``awaiting_generation`` with the keyword id) and after a publish
(progress cleared). A process that dies between them leaves the site
resumable from step 3.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from seoiq.pipeline.base import (
    Article,
    ContentBackend,
    Keyword,
    PipelineProgress,
    PipelineStep,
    PreconditionError,
    PublishResult,
    RunReport,
    StepFailedError,
    StepStatus,
    UnitResult,
)
from seoiq.storage.sites import AutopilotConfig, SiteStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineProgress], None]
T = TypeVar("T")


class PipelineOrchestrator:
    """Drives articles through the four pipeline steps, one unit at a time."""

    def __init__(
        self,
        backend: ContentBackend,
        sites: SiteStore,
        *,
        generate_thumbnail: bool = True,
        submit_indexing: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._backend = backend
        self._sites = sites
        self._generate_thumbnail = generate_thumbnail
        self._submit_indexing = submit_indexing
        self._on_progress = on_progress
        self.progress = PipelineProgress()

    # -- entry points ---------------------------------------------------------

    def run_fresh(
        self,
        site_id: str,
        count: int | None = None,
        instructions: str | None = None,
    ) -> RunReport:
        """Refresh once, then pick/generate/publish ``count`` articles.

        ``count`` defaults to the site's ``articles_per_run`` as read when
        the run starts. The first failing unit halts the batch.
        """
        config = self._sites.claim_run(site_id, resume=False)
        try:
            total = count if count is not None else config.articles_per_run
            if total < 1:
                raise PreconditionError("A run needs at least one article")

            report = RunReport(site_id=site_id)
            self._reset(unit=1, total=total)
            logger.info("Fresh run for %s: %d article(s)", site_id, total)

            report.refresh = self._step(
                report,
                PipelineStep.REFRESH,
                lambda: self._backend.refresh_opportunities(site_id),
            )
            logger.info(
                "Refreshed %s: %d queries, %d opportunities",
                site_id,
                report.refresh.queries_synced,
                report.refresh.opportunities_scored,
            )

            for unit in range(1, total + 1):
                if unit > 1:
                    self._reset(unit=unit, total=total)
                    self._mark(PipelineStep.REFRESH, StepStatus.SKIPPED)

                keyword: Keyword = self._step(
                    report,
                    PipelineStep.PICK,
                    lambda: self._backend.pick_best_keyword(site_id),
                )
                self._sites.checkpoint_keyword(site_id, keyword.id)
                self.progress.keyword = keyword.keyword
                self._emit()
                logger.info("Unit %d/%d: picked %r", unit, total, keyword.keyword)

                report.units.append(
                    self._generate_and_publish(
                        report, config, keyword.id, keyword.keyword, instructions
                    )
                )
            return report
        finally:
            self._sites.release_run(site_id, config.run_started_at)

    def resume(self, site_id: str, instructions: str | None = None) -> RunReport:
        """Re-enter at step 3 with the keyword persisted by an earlier run."""
        config = self._sites.claim_run(site_id, resume=True)
        try:
            report = RunReport(site_id=site_id)
            self._reset(unit=1, total=1)
            self._mark(PipelineStep.REFRESH, StepStatus.SKIPPED)
            self._mark(PipelineStep.PICK, StepStatus.SKIPPED)
            logger.info("Resuming %s with keyword %s", site_id, config.pipeline_keyword_id)

            report.units.append(
                self._generate_and_publish(
                    report, config, config.pipeline_keyword_id, None, instructions
                )
            )
            return report
        finally:
            self._sites.release_run(site_id, config.run_started_at)

    def run_picked(
        self,
        config: AutopilotConfig,
        keyword_id: str,
        keyword: str | None = None,
        *,
        unit: int = 1,
        total: int = 1,
        report: RunReport | None = None,
        instructions: str | None = None,
    ) -> UnitResult:
        """Steps 3-4 for a keyword chosen elsewhere; site progress is untouched."""
        report = report or RunReport(site_id=config.site_id)
        self._reset(unit=unit, total=total)
        self._mark(PipelineStep.REFRESH, StepStatus.SKIPPED)
        self._mark(PipelineStep.PICK, StepStatus.SKIPPED)
        self.progress.keyword = keyword
        return self._generate_and_publish(
            report, config, keyword_id, keyword, instructions, track_site=False
        )

    # -- steps ----------------------------------------------------------------

    def _generate_and_publish(
        self,
        report: RunReport,
        config: AutopilotConfig,
        keyword_id: str,
        keyword: str | None,
        instructions: str | None,
        *,
        track_site: bool = True,
    ) -> UnitResult:
        site_id = config.site_id
        article: Article = self._step(
            report,
            PipelineStep.GENERATE,
            lambda: self._backend.generate_article(
                site_id,
                keyword_id,
                config.reasoning_level.value,
                instructions,
            ),
            track_site=track_site,
        )
        if track_site:
            self._sites.record_article(site_id, article.id)
        self.progress.article_title = article.title
        self._emit()

        published: PublishResult = self._step(
            report,
            PipelineStep.PUBLISH,
            lambda: self._backend.publish_and_index(
                article.id,
                generate_thumbnail=self._generate_thumbnail,
                submit_indexing=self._submit_indexing,
            ),
            track_site=track_site,
        )
        if track_site:
            self._sites.complete_unit(site_id)
        self.progress.published_url = published.published_url
        self._emit()
        logger.info("Published %r at %s", article.title, published.published_url)

        return UnitResult(
            unit=self.progress.unit,
            keyword_id=keyword_id,
            keyword=keyword,
            article_id=article.id,
            article_title=article.title,
            published_url=published.published_url,
            thumbnail_generated=published.thumbnail_generated,
            indexing_submitted=published.indexing_submitted,
        )

    def _step(
        self,
        report: RunReport,
        step: PipelineStep,
        call: Callable[[], T],
        *,
        track_site: bool = True,
    ) -> T:
        self._mark(step, StepStatus.RUNNING)
        try:
            result = call()
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._mark(step, StepStatus.FAILED)
            self.progress.error = message
            self._emit()
            if track_site:
                self._sites.record_error(report.site_id, message)
            logger.error(
                "Step %d (%s) failed for %s, unit %d: %s",
                step,
                step.label,
                report.site_id,
                self.progress.unit,
                message,
            )
            raise StepFailedError(step, self.progress.unit, message, report) from exc
        self._mark(step, StepStatus.DONE)
        return result

    # -- progress -------------------------------------------------------------

    def _reset(self, *, unit: int, total: int) -> None:
        self.progress = PipelineProgress(unit=unit, total_units=total)
        self._emit()

    def _mark(self, step: PipelineStep, status: StepStatus) -> None:
        self.progress.steps[step] = status
        self._emit()

    def _emit(self) -> None:
        if self._on_progress is not None:
            self._on_progress(self.progress)
