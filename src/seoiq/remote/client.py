"""HTTP client for the SEO IQ API endpoints the pipeline drives.

Each method maps to one collaborator call. Non-2xx responses are raised
as ``CollaboratorError`` carrying the server's error text; nothing is
retried here.
"""

from __future__ import annotations

import httpx

from seoiq.config import Settings
from seoiq.pipeline.base import (
    Article,
    CollaboratorError,
    ContentBackend,
    Keyword,
    PublishResult,
    RefreshResult,
)


class SeoIQClient(ContentBackend):
    """Wrapper around the SEO IQ API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 120.0,
        lookback_days: int = 90,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._lookback_days = lookback_days
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SeoIQClient:
        return cls(
            settings.api_base_url,
            settings.api_token,
            timeout=settings.request_timeout,
            lookback_days=settings.refresh_lookback_days,
        )

    def refresh_opportunities(self, site_id: str) -> RefreshResult:
        data = self._post(
            "/seo-iq/refresh-keywords",
            {"site_id": site_id, "days": self._lookback_days},
        )
        return RefreshResult(
            queries_synced=data.get("gsc_queries", 0),
            opportunities_scored=data.get("opportunities_scored", 0),
        )

    def pick_best_keyword(self, site_id: str) -> Keyword:
        data = self._post("/seo-iq/autopilot-pick-keyword", {"site_id": site_id})
        return Keyword(
            id=data["id"],
            keyword=data["keyword"],
            opportunity_type=data.get("opportunity_type"),
            opportunity_score=data.get("opportunity_score") or 0.0,
        )

    def generate_article(
        self,
        site_id: str,
        keyword_id: str,
        reasoning_level: str,
        instructions: str | None = None,
    ) -> Article:
        payload: dict = {
            "site_id": site_id,
            "keyword_id": keyword_id,
            "iq_level": reasoning_level,
        }
        if instructions:
            payload["custom_instructions"] = instructions

        data = self._post("/seo-iq/generate-article", payload)["article"]
        return Article(id=data["id"], title=data["title"], slug=data.get("slug", ""))

    def publish_and_index(
        self,
        article_id: str,
        *,
        generate_thumbnail: bool = True,
        submit_indexing: bool = True,
    ) -> PublishResult:
        data = self._post(
            "/seo-iq/publish-article",
            {
                "article_id": article_id,
                "generate_thumbnail": generate_thumbnail,
                "submit_indexing": submit_indexing,
            },
        )
        return PublishResult(
            published_url=data["published_url"],
            thumbnail_generated=bool(data.get("thumbnail_generated")),
            indexing_submitted=bool(data.get("indexing_submitted")),
        )

    def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise CollaboratorError(f"{path}: {exc}") from exc

        if resp.is_error:
            raise CollaboratorError(_error_message(resp), status_code=resp.status_code)
        return resp.json()

    def close(self) -> None:
        self._client.close()


def _error_message(resp: httpx.Response) -> str:
    """Best human-readable message from an error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip() or f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}"
    parts = [body.get("error"), body.get("message") or body.get("details")]
    return ": ".join(str(p) for p in parts if p) or f"HTTP {resp.status_code}"
