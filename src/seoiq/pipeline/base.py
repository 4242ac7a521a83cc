"""Shared pipeline types: steps, statuses, collaborator contract, errors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum


class PipelineStep(IntEnum):
    REFRESH = 1
    PICK = 2
    GENERATE = 3
    PUBLISH = 4

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]


_STEP_LABELS = {
    PipelineStep.REFRESH: "Refresh opportunities",
    PipelineStep.PICK: "Pick keyword",
    PipelineStep.GENERATE: "Generate article",
    PipelineStep.PUBLISH: "Publish and index",
}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class Cadence(str, Enum):
    DAILY = "daily"
    EVERY_3_DAYS = "every_3_days"
    WEEKLY = "weekly"

    @property
    def days(self) -> int:
        return {"daily": 1, "every_3_days": 3, "weekly": 7}[self.value]


class ReasoningLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RunStatus(str, Enum):
    PENDING = "pending"
    KEYWORD_PICKED = "keyword_picked"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


AWAITING_GENERATION = "awaiting_generation"


# ---------------------------------------------------------------------------
# Collaborator value types
# ---------------------------------------------------------------------------


@dataclass
class RefreshResult:
    queries_synced: int = 0
    opportunities_scored: int = 0


@dataclass
class Keyword:
    id: str
    keyword: str
    opportunity_type: str | None = None
    opportunity_score: float = 0.0


@dataclass
class Article:
    id: str
    title: str
    slug: str = ""


@dataclass
class PublishResult:
    published_url: str
    thumbnail_generated: bool = False
    indexing_submitted: bool = False


class ContentBackend(ABC):
    """The four collaborator calls the pipeline sequences.

    Every call may block for an arbitrary time and may raise; the
    orchestrator never retries them.
    """

    @abstractmethod
    def refresh_opportunities(self, site_id: str) -> RefreshResult:
        """Sync search analytics and rescore keyword opportunities."""
        ...

    @abstractmethod
    def pick_best_keyword(self, site_id: str) -> Keyword:
        """Return the best unused opportunity; raise if there is none."""
        ...

    @abstractmethod
    def generate_article(
        self,
        site_id: str,
        keyword_id: str,
        reasoning_level: str,
        instructions: str | None = None,
    ) -> Article:
        """Draft an article for the keyword."""
        ...

    @abstractmethod
    def publish_and_index(
        self,
        article_id: str,
        *,
        generate_thumbnail: bool = True,
        submit_indexing: bool = True,
    ) -> PublishResult:
        """Publish the article and submit its URL for indexing."""
        ...


# ---------------------------------------------------------------------------
# Progress and results
# ---------------------------------------------------------------------------


@dataclass
class PipelineProgress:
    """Caller-visible view of the step currently being driven."""

    steps: dict[PipelineStep, StepStatus] = field(
        default_factory=lambda: {step: StepStatus.PENDING for step in PipelineStep}
    )
    unit: int = 0
    total_units: int = 0
    keyword: str | None = None
    article_title: str | None = None
    published_url: str | None = None
    error: str | None = None

    @property
    def failed_step(self) -> PipelineStep | None:
        for step, status in self.steps.items():
            if status == StepStatus.FAILED:
                return step
        return None


@dataclass
class UnitResult:
    """Outcome of one fully published article."""

    unit: int
    keyword_id: str
    keyword: str | None
    article_id: str
    article_title: str
    published_url: str
    thumbnail_generated: bool = False
    indexing_submitted: bool = False


@dataclass
class RunReport:
    site_id: str
    refresh: RefreshResult | None = None
    units: list[UnitResult] = field(default_factory=list)
    skipped_runs: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AutopilotError(Exception):
    """Base class for all autopilot errors."""


class CollaboratorError(AutopilotError):
    """A remote collaborator call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PreconditionError(AutopilotError):
    """The requested action is not valid in the current state."""


class SiteNotFoundError(AutopilotError):
    pass


class ScheduleError(AutopilotError):
    """A calendar operation would damage in-flight or historical work."""


class StepFailedError(AutopilotError):
    """A pipeline step failed; the batch halted at ``unit``."""

    def __init__(
        self,
        step: PipelineStep,
        unit: int,
        message: str,
        report: RunReport,
    ) -> None:
        super().__init__(f"Unit {unit}, step {int(step)} ({step.label}) failed: {message}")
        self.step = step
        self.unit = unit
        self.message = message
        self.report = report

    @property
    def resumable(self) -> bool:
        return self.step >= PipelineStep.GENERATE
