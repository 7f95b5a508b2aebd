"""Web search client for game and player research (Serper)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from parlay_gen.errors import ProviderFetchError
from parlay_gen.settings import Settings

logger = logging.getLogger(__name__)

SearchPostFn = Callable[[str, dict[str, str], dict[str, Any], float], dict[str, Any]]


class SearchAPIError(ProviderFetchError):
    """Raised when a search request fails."""


@dataclass(frozen=True)
class SearchResult:
    title: str
    snippet: str
    link: str


def _default_post(
    url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float
) -> dict[str, Any]:
    try:
        response = httpx.post(url, headers=headers, json=payload, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status == 429:
            logger.warning("search provider rate limited the request")
        raise SearchAPIError(f"search request failed: status={status}") from exc
    except httpx.HTTPError as exc:
        raise SearchAPIError(f"search request transport error: {exc}") from exc
    try:
        data = response.json()
    except ValueError as exc:
        raise SearchAPIError("search response is not JSON") from exc
    if not isinstance(data, dict):
        raise SearchAPIError("unexpected search response payload")
    return data


def parse_organic(payload: dict[str, Any]) -> list[SearchResult]:
    organic = payload.get("organic", [])
    if not isinstance(organic, list):
        return []
    results: list[SearchResult] = []
    for row in organic:
        if not isinstance(row, dict):
            continue
        results.append(
            SearchResult(
                title=str(row.get("title", "")).strip(),
                snippet=str(row.get("snippet", "")).strip(),
                link=str(row.get("link", "")).strip(),
            )
        )
    return results


class SearchClient:
    """POST free-text queries to the search provider and return organic results."""

    def __init__(self, settings: Settings, *, post_fn: SearchPostFn | None = None) -> None:
        self.settings = settings
        self.post_fn = post_fn or _default_post
        self._url = f"{settings.serper_base_url.rstrip('/')}/search"

    @property
    def enabled(self) -> bool:
        return bool(self.settings.serper_api_key.strip())

    def search(self, query: str, *, fast_mode: bool = False) -> list[SearchResult]:
        api_key = self.settings.serper_api_key.strip()
        if not api_key:
            raise SearchAPIError("missing search API key; set SERPER_API_KEY")
        timeout = (
            self.settings.serper_fast_timeout_s if fast_mode else self.settings.serper_timeout_s
        )
        headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}
        payload = {"q": query, "num": 3 if fast_mode else 10}
        return parse_organic(self.post_fn(self._url, headers, payload, timeout))
