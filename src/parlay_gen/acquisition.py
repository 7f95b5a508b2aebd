"""Cache-first odds acquisition with market widening and bookmaker fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from parlay_gen.catalog import (
    ALL_BET_TYPES,
    BOOKMAKER_KEYS,
    CORE_MARKETS,
    EXPANSION_ORDER,
    bookmaker_key,
    fallback_books,
    markets_for_bet_types,
    sport_codes,
    split_markets,
    user_selectable_bet_types,
)
from parlay_gen.errors import ProviderFetchError
from parlay_gen.models import Event
from parlay_gen.normalize import merge_events, restrict_props_to_teams
from parlay_gen.odds_source import OddsSource
from parlay_gen.rate_limit import RateLimiter
from parlay_gen.settings import Settings
from parlay_gen.store import OddsRowStore
from parlay_gen.time_utils import utc_now

logger = logging.getLogger(__name__)

CORE_BET_TYPES = ("Moneyline/Spread", "Totals (O/U)")
PROP_BET_TYPES = {"Player Props", "TD Props"}
DEFAULT_PRIMARY_BOOK = "draftkings"
SINGLE_DAY_WINDOW_HOURS = 30


@dataclass(frozen=True)
class AcquisitionRequest:
    sports: tuple[str, ...]
    bet_types: tuple[str, ...]
    num_legs: int
    date_range_days: int = 1
    bookmaker: str = "DraftKings"
    fast_mode: bool = False


@dataclass(frozen=True)
class AcquisitionResult:
    """Events plus flags describing how they were obtained."""

    events: list[Event]
    source: str
    bet_types: tuple[str, ...]
    fallback_used: bool = False
    fallback_reason: str | None = None
    market_expanded: bool = False
    degraded_freshness: bool = False
    data_quality: int = 0
    insufficient_data: bool = False
    warning: str | None = None
    books_used: tuple[str, ...] = field(default_factory=tuple)

    @property
    def expanded_bet_types(self) -> list[str]:
        return [label for label in self.bet_types if label not in user_selectable_bet_types()]


@dataclass
class _BookFetch:
    events: list[Event]
    degraded_freshness: bool = False


def date_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """Commence-time window; a single day widens to 30 hours for timezone skew."""
    if days <= 1:
        return now, now + timedelta(hours=SINGLE_DAY_WINDOW_HOURS)
    return now, now + timedelta(days=days)


def in_window(event: Event, start: datetime, end: datetime) -> bool:
    return start < event.commence_time < end


def has_sufficient_data(events: list[Event], num_legs: int) -> bool:
    """At least one event per leg, each with a populated primary quote."""
    with_markets = sum(1 for event in events if event.market_count >= 1)
    return len(events) >= num_legs and with_markets >= num_legs


def combine_events(primary: list[Event], fallback: list[Event]) -> list[Event]:
    """Append fallback events whose ids the primary set does not already hold."""
    seen = {event.id for event in primary}
    combined = list(primary)
    for event in fallback:
        if event.id in seen:
            continue
        seen.add(event.id)
        combined.append(event)
    return combined


def data_quality(events: list[Event]) -> int:
    """Percent of events whose primary quote carries two or more markets."""
    if not events:
        return 0
    full = sum(1 for event in events if event.market_count >= 2)
    return int(round(full / len(events) * 100))


class OddsAcquirer:
    """Acquire events for a request from the odds store, the live source and fallbacks.

    Single fetch failures are logged and skipped. An empty outcome is reported as
    ``insufficient_data`` on the result rather than raised.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        source: OddsSource | None = None,
        store: OddsRowStore | None = None,
        allow_live_fetch: bool | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.source = source
        self.store = store
        self.allow_live_fetch = (
            settings.odds_allow_live_fetch if allow_live_fetch is None else allow_live_fetch
        )
        self.rate_limiter = rate_limiter or RateLimiter(rpm=settings.odds_prop_requests_per_minute)
        self.clock = clock

    def acquire(self, request: AcquisitionRequest) -> AcquisitionResult:
        primary = bookmaker_key(request.bookmaker) or DEFAULT_PRIMARY_BOOK
        now = self.clock()
        start, end = date_window(now, request.date_range_days)
        cap_count = max(10, request.num_legs * 2)
        bet_types = list(request.bet_types) or [ALL_BET_TYPES]
        degraded = False
        expanded = False
        fallback_reason: str | None = None

        def fetch(book: str) -> list[Event]:
            nonlocal degraded
            result = self._fetch_book(
                book, request, bet_types, start=start, end=end, cap_count=cap_count
            )
            degraded = degraded or result.degraded_freshness
            return result.events

        events = fetch(primary)

        if not events and ALL_BET_TYPES not in bet_types:
            wanted_props = any(
                label in PROP_BET_TYPES or label.startswith("_player") for label in bet_types
            )
            fallback_reason = "player-props-unavailable" if wanted_props else "no-games-found"
            logger.warning("no events for %s; falling back to core markets", bet_types)
            bet_types = list(CORE_BET_TYPES)
            expanded = True
            events = fetch(primary)

        required = request.num_legs * 2
        if self._bettable(events) < required and ALL_BET_TYPES not in bet_types:
            if request.fast_mode:
                logger.info("fast mode: skipping market expansion")
            else:
                for extra in EXPANSION_ORDER:
                    if self._bettable(events) >= required:
                        break
                    if extra in bet_types:
                        continue
                    bet_types.append(extra)
                    expanded = True
                    events = fetch(primary)
                    logger.info("expanded markets with %s: %s events", extra, len(events))

        source_label = _display_book(primary)
        books_used = [primary]
        fallback_used = False
        warning: str | None = None
        if not has_sufficient_data(events, request.num_legs):
            logger.warning("primary book %s insufficient; trying fallbacks", primary)
            for book in fallback_books(primary):
                extra_events = fetch(book)
                merged = combine_events(events, extra_events)
                if len(merged) > len(events):
                    books_used.append(book)
                    fallback_used = True
                    fallback_reason = fallback_reason or "insufficient-games-primary-book"
                events = merged
                if has_sufficient_data(events, request.num_legs):
                    logger.info("fallback %s reached sufficiency with %s events", book, len(events))
                    break
            else:
                warning = "Limited data available"
            if fallback_used:
                source_label = " + ".join([source_label, *books_used[1:]])

        insufficient = not events
        if insufficient:
            warning = "No events available for the requested sports and window"
        return AcquisitionResult(
            events=events,
            source=source_label,
            bet_types=tuple(bet_types),
            fallback_used=fallback_used,
            fallback_reason=fallback_reason,
            market_expanded=expanded,
            degraded_freshness=degraded,
            data_quality=data_quality(events),
            insufficient_data=insufficient,
            warning=warning,
            books_used=tuple(books_used),
        )

    @staticmethod
    def _bettable(events: list[Event]) -> int:
        return sum(1 for event in events if event.market_count >= 1)

    def _requested_markets(self, bet_types: list[str], fast_mode: bool) -> list[str]:
        markets = markets_for_bet_types(bet_types)
        if fast_mode:
            markets = [key for key in markets if key in CORE_MARKETS]
        return markets

    def _fetch_book(
        self,
        book: str,
        request: AcquisitionRequest,
        bet_types: list[str],
        *,
        start: datetime,
        end: datetime,
        cap_count: int,
    ) -> _BookFetch:
        markets = self._requested_markets(bet_types, request.fast_mode)
        codes = sport_codes(request.sports)
        if not markets or not codes:
            return _BookFetch(events=[])

        if self.store is not None:
            try:
                cached = self.store.query(
                    sports=codes,
                    bookmaker=book,
                    markets=markets,
                    start=start,
                    end=end,
                    freshness_hours=self.settings.odds_freshness_hours,
                    now=start,
                )
            except (OSError, ValueError) as exc:
                logger.warning("odds store read failed for %s: %s", book, exc)
            else:
                if cached.events:
                    logger.info("odds store hit: %s events for %s", len(cached.events), book)
                    return _BookFetch(cached.events, cached.degraded_freshness)

        if not self.allow_live_fetch or self.source is None:
            logger.info("cache-only mode: no live odds fetch for %s", book)
            return _BookFetch(events=[])

        events = self._fetch_live(book, codes, markets, request.fast_mode, start, end, cap_count)
        if events and self.store is not None:
            try:
                self.store.upsert_events(events, now=start)
            except OSError as exc:
                logger.warning("odds store write failed: %s", exc)
        return _BookFetch(events=events)

    def _fetch_live(
        self,
        book: str,
        codes: list[str],
        markets: list[str],
        fast_mode: bool,
        start: datetime,
        end: datetime,
        cap_count: int,
    ) -> list[Event]:
        regular, props = split_markets(markets)
        if fast_mode and props:
            logger.info("fast mode: skipping %s prop markets", len(props))
            props = []
        groups: list[list[Event]] = []
        with ThreadPoolExecutor(max_workers=max(1, min(4, len(codes) * 2))) as pool:
            futures = {}
            for code in codes:
                if regular:
                    futures[pool.submit(self._fetch_regular, code, regular, book, start, end)] = (
                        code,
                        "regular",
                    )
                if props:
                    futures[pool.submit(self._fetch_props, code, props, book, start, end)] = (
                        code,
                        "props",
                    )
            ordered: dict[tuple[str, str], list[Event]] = {}
            for future in as_completed(futures):
                ordered[futures[future]] = future.result()
        for code in codes:
            regular_events = ordered.get((code, "regular"), [])
            if fast_mode:
                regular_events = regular_events[:cap_count]
            groups.append(regular_events)
            groups.append(ordered.get((code, "props"), []))
        return [event for event in merge_events(groups) if in_window(event, start, end)]

    def _fetch_regular(
        self, code: str, markets: list[str], book: str, start: datetime, end: datetime
    ) -> list[Event]:
        assert self.source is not None
        try:
            events = self.source.fetch_featured(
                sport_key=code, markets=markets, bookmaker=book, start=start, end=end
            )
        except (ProviderFetchError, ValueError) as exc:
            logger.warning("regular markets fetch failed for %s/%s: %s", code, book, exc)
            return []
        return [event for event in events if event.bookmakers]

    def _fetch_props(
        self, code: str, markets: list[str], book: str, start: datetime, end: datetime
    ) -> list[Event]:
        assert self.source is not None
        try:
            discovered = self.source.list_events(sport_key=code, start=start, end=end)
        except (ProviderFetchError, ValueError) as exc:
            logger.warning("event discovery failed for %s: %s", code, exc)
            return []
        discovered = [event for event in discovered if in_window(event, start, end)]
        if not discovered:
            return []

        def fetch_one(event: Event) -> Event | None:
            self.rate_limiter.wait()
            try:
                detailed = self.source.fetch_event_odds(
                    sport_key=code, event_id=event.id, markets=markets, bookmaker=book
                )
            except (ProviderFetchError, ValueError) as exc:
                logger.warning("prop fetch failed for %s: %s", event.label, exc)
                return None
            if detailed is None:
                return None
            filtered = restrict_props_to_teams(detailed)
            if filtered.market_count == 0:
                return None
            return filtered

        workers = max(1, min(self.settings.odds_prop_workers, len(discovered)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(fetch_one, discovered))
        return [event for event in results if event is not None]


def _display_book(key: str) -> str:
    for name, value in BOOKMAKER_KEYS.items():
        if value == key:
            return name
    return key
