"""HTTP client for The Odds API v4."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from time import perf_counter
from typing import Any

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from parlay_gen.catalog import is_prop_market
from parlay_gen.errors import ProviderFetchError
from parlay_gen.settings import Settings

logger = logging.getLogger(__name__)


class OddsAPIError(ProviderFetchError):
    """Raised on Odds API failures."""


class RetryableStatusError(RuntimeError):
    """Raised for retryable status codes."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"retryable status {response.status_code}")

    def retry_after_seconds(self) -> float | None:
        raw_value = self.response.headers.get("Retry-After")
        if not raw_value:
            return None
        try:
            return max(0.0, float(raw_value))
        except ValueError:
            try:
                date_value = parsedate_to_datetime(raw_value)
            except (TypeError, ValueError):
                return None
            return max(0.0, (date_value - datetime.now(UTC)).total_seconds())


@dataclass(frozen=True)
class OddsResponse:
    """Response data and metadata from an API call."""

    data: Any
    status_code: int
    headers: dict[str, str]
    duration_ms: int
    retry_count: int


def _wait_for_retry(retry_state) -> float:
    """Wait strategy for tenacity retries."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, RetryableStatusError):
        retry_after = exc.retry_after_seconds()
        if retry_after is not None:
            return min(retry_after, 60.0)
    return min(2 ** (retry_state.attempt_number - 1), 30.0)


class OddsAPIClient:
    """Thin HTTP client around The Odds API v4."""

    def __init__(self, settings: Settings, *, fast_mode: bool = False) -> None:
        self.settings = settings
        self._base_url = settings.odds_api_base_url.rstrip("/")
        timeout = settings.odds_api_fast_timeout_s if fast_mode else settings.odds_api_timeout_s
        limits = httpx.Limits(max_connections=8, max_keepalive_connections=4)
        self._http = httpx.Client(timeout=timeout, limits=limits)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> OddsAPIClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, *, path: str, params: dict[str, Any]) -> OddsResponse:
        api_key = str(self.settings.odds_api_key).strip()
        if not api_key:
            raise OddsAPIError("missing Odds API key; set ODDS_API_KEY")
        params_with_key = dict(params)
        params_with_key["apiKey"] = api_key
        url = f"{self._base_url}/{path.lstrip('/')}"
        retries = 0
        started = perf_counter()
        response: httpx.Response | None = None
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(4),
                retry=retry_if_exception_type(RetryableStatusError),
                wait=_wait_for_retry,
                reraise=True,
            ):
                with attempt:
                    retries = attempt.retry_state.attempt_number - 1
                    response = self._http.get(url, params=params_with_key)
                    if response.status_code == 429 or 500 <= response.status_code <= 599:
                        raise RetryableStatusError(response)
                    response.raise_for_status()
        except RetryableStatusError as exc:
            raise OddsAPIError(
                f"{path} failed with status {exc.response.status_code} after retries"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise OddsAPIError(f"{path} failed with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise OddsAPIError(f"{path} failed with transport error: {exc}") from exc
        if response is None:
            raise OddsAPIError(f"{path} failed without a response")

        duration_ms = int((perf_counter() - started) * 1000)
        headers = {
            "x-requests-last": response.headers.get("x-requests-last", ""),
            "x-requests-used": response.headers.get("x-requests-used", ""),
            "x-requests-remaining": response.headers.get("x-requests-remaining", ""),
        }
        logger.debug(
            "odds api %s status=%s duration_ms=%s retries=%s remaining=%s",
            path,
            response.status_code,
            duration_ms,
            retries,
            headers["x-requests-remaining"],
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise OddsAPIError(f"{path} returned a non-JSON body") from exc
        return OddsResponse(
            data=data,
            status_code=response.status_code,
            headers=headers,
            duration_ms=duration_ms,
            retry_count=retries,
        )

    def list_events(
        self,
        *,
        sport_key: str,
        commence_from: str | None = None,
        commence_to: str | None = None,
    ) -> OddsResponse:
        """List events for a sport (free endpoint)."""
        params: dict[str, Any] = {"dateFormat": "iso"}
        if commence_from:
            params["commenceTimeFrom"] = commence_from
        if commence_to:
            params["commenceTimeTo"] = commence_to
        return self._request(path=f"/sports/{sport_key}/events", params=params)

    def get_featured_odds(
        self,
        *,
        sport_key: str,
        markets: list[str],
        bookmakers: str,
        commence_from: str | None = None,
        commence_to: str | None = None,
    ) -> OddsResponse:
        """Fetch bulk odds for non-prop markets."""
        props = sorted(key for key in markets if is_prop_market(key))
        if props:
            raise ValueError(f"prop markets need per-event queries: {','.join(props)}")
        params: dict[str, Any] = {
            "markets": ",".join(markets),
            "bookmakers": bookmakers,
            "oddsFormat": "american",
            "dateFormat": "iso",
        }
        if commence_from:
            params["commenceTimeFrom"] = commence_from
        if commence_to:
            params["commenceTimeTo"] = commence_to
        return self._request(path=f"/sports/{sport_key}/odds", params=params)

    def get_event_odds(
        self,
        *,
        sport_key: str,
        event_id: str,
        markets: list[str],
        bookmakers: str,
    ) -> OddsResponse:
        """Fetch odds for one event, including player and team prop markets."""
        params: dict[str, Any] = {
            "markets": ",".join(markets),
            "bookmakers": bookmakers,
            "oddsFormat": "american",
            "dateFormat": "iso",
        }
        return self._request(path=f"/sports/{sport_key}/events/{event_id}/odds", params=params)
