"""Shared test fixtures."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import pytest

from seoiq.config import Settings
from seoiq.pipeline.base import (
    Article,
    ContentBackend,
    Keyword,
    PublishResult,
    RefreshResult,
)
from seoiq.pipeline.executor import RunExecutor
from seoiq.storage.database import _engines
from seoiq.storage.runs import ScheduledRunStore
from seoiq.storage.sites import SiteStore

SITE_ID = "site-s"


class FakeBackend(ContentBackend):
    """Scripted collaborator that records every call.

    ``failures[(method, n)]`` is raised on the n-th call of ``method``.
    ``keywords`` is consumed in order by ``pick_best_keyword``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[tuple[str, int], BaseException] = {}
        self.keywords: list[Keyword] = []
        self.titles: dict[str, str] = {}
        self._counts: Counter[str] = Counter()

    def _enter(self, name: str, *args: object) -> int:
        self._counts[name] += 1
        self.calls.append((name, *args))
        exc = self.failures.get((name, self._counts[name]))
        if exc is not None:
            raise exc
        return self._counts[name]

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def refresh_opportunities(self, site_id: str) -> RefreshResult:
        self._enter("refresh", site_id)
        return RefreshResult(queries_synced=120, opportunities_scored=14)

    def pick_best_keyword(self, site_id: str) -> Keyword:
        n = self._enter("pick", site_id)
        if self.keywords:
            return self.keywords.pop(0)
        return Keyword(id=f"kw-{n}", keyword=f"keyword {n}", opportunity_score=50.0)

    def generate_article(
        self,
        site_id: str,
        keyword_id: str,
        reasoning_level: str,
        instructions: str | None = None,
    ) -> Article:
        self._enter("generate", site_id, keyword_id, reasoning_level, instructions)
        title = self.titles.get(keyword_id, f"Article for {keyword_id}")
        return Article(id=f"art-{keyword_id}", title=title, slug=keyword_id)

    def publish_and_index(
        self,
        article_id: str,
        *,
        generate_thumbnail: bool = True,
        submit_indexing: bool = True,
    ) -> PublishResult:
        self._enter("publish", article_id, generate_thumbnail, submit_indexing)
        return PublishResult(
            published_url=f"https://s.example/blog/{article_id}",
            thumbnail_generated=generate_thumbnail,
            indexing_submitted=submit_indexing,
        )


@pytest.fixture(autouse=True)
def _clear_engines():
    """Drop cached engines so each test gets its own database."""
    _engines.clear()
    yield
    _engines.clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        api_base_url="https://seoiq.test/api",
        api_token="test-token-not-real",
        db_path=tmp_path / "test.db",
    )


@pytest.fixture
def sites(settings: Settings) -> SiteStore:
    store = SiteStore(settings.db_path)
    store.add_site(SITE_ID, "org-1", "s.example")
    return store


@pytest.fixture
def runs(settings: Settings) -> ScheduledRunStore:
    return ScheduledRunStore(settings.db_path)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def executor(backend: FakeBackend, sites: SiteStore, runs: ScheduledRunStore) -> RunExecutor:
    return RunExecutor(backend, sites, runs)
