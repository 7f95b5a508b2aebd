"""Event-level odds sources used by acquisition."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from parlay_gen.cache import TTLCache
from parlay_gen.models import Event
from parlay_gen.normalize import normalize_event, normalize_events
from parlay_gen.odds_client import OddsAPIClient
from parlay_gen.time_utils import iso_z


class OddsSource(Protocol):
    """Provider seam for acquisition; implementations raise ProviderFetchError on failure."""

    def fetch_featured(
        self,
        *,
        sport_key: str,
        markets: list[str],
        bookmaker: str,
        start: datetime,
        end: datetime,
    ) -> list[Event]: ...

    def list_events(self, *, sport_key: str, start: datetime, end: datetime) -> list[Event]: ...

    def fetch_event_odds(
        self,
        *,
        sport_key: str,
        event_id: str,
        markets: list[str],
        bookmaker: str,
    ) -> Event | None: ...


def _hour_bucket(value: datetime) -> str:
    return iso_z(value.replace(minute=0, second=0, microsecond=0))


class LiveOddsSource:
    """Odds API backed source with a short-lived in-process response cache.

    Cache keys combine the sport, bookmaker, market set and hour-bucketed window,
    so repeated acquisition passes inside one pipeline run reuse responses.
    """

    def __init__(self, client: OddsAPIClient, *, cache: TTLCache[Any]) -> None:
        self.client = client
        self.cache = cache

    def fetch_featured(
        self,
        *,
        sport_key: str,
        markets: list[str],
        bookmaker: str,
        start: datetime,
        end: datetime,
    ) -> list[Event]:
        key = (
            "featured",
            sport_key,
            bookmaker,
            tuple(sorted(markets)),
            _hour_bucket(start),
            _hour_bucket(end),
        )
        payload = self.cache.get_or_compute(
            key,
            lambda: self.client.get_featured_odds(
                sport_key=sport_key,
                markets=markets,
                bookmakers=bookmaker,
                commence_from=iso_z(start),
                commence_to=iso_z(end),
            ).data,
        )
        return normalize_events(payload, sport_key=sport_key)

    def list_events(self, *, sport_key: str, start: datetime, end: datetime) -> list[Event]:
        key = ("events", sport_key, _hour_bucket(start), _hour_bucket(end))
        payload = self.cache.get_or_compute(
            key,
            lambda: self.client.list_events(
                sport_key=sport_key,
                commence_from=iso_z(start),
                commence_to=iso_z(end),
            ).data,
        )
        return normalize_events(payload, sport_key=sport_key)

    def fetch_event_odds(
        self,
        *,
        sport_key: str,
        event_id: str,
        markets: list[str],
        bookmaker: str,
    ) -> Event | None:
        key = ("event", sport_key, event_id, bookmaker, tuple(sorted(markets)))
        payload = self.cache.get_or_compute(
            key,
            lambda: self.client.get_event_odds(
                sport_key=sport_key,
                event_id=event_id,
                markets=markets,
                bookmakers=bookmaker,
            ).data,
        )
        return normalize_event(payload, sport_key=sport_key)
