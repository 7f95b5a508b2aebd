"""File-backed persistent caches for odds rows and team intelligence."""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Iterable
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from parlay_gen.models import BookmakerQuote, Event, Market, Outcome
from parlay_gen.time_utils import iso_z, parse_iso_z, utc_now
from parlay_gen.util.parsing import safe_float, to_price

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".tmp-{path.name}-{uuid.uuid4().hex}")
    try:
        payload = json.dumps(value, sort_keys=True, ensure_ascii=True, indent=2) + "\n"
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        with suppress(FileNotFoundError):
            tmp_path.unlink()
        raise


def _load_rows(path: Path) -> dict[str, dict[str, Any]]:
    if not path.exists():
        return {}
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        return {}
    return {str(key): row for key, row in payload.items() if isinstance(row, dict)}


@dataclass(frozen=True)
class StoreQueryResult:
    """Events read back from the odds store."""

    events: list[Event]
    degraded_freshness: bool
    row_count: int


def odds_row_key(event_id: str, bookmaker: str, market_key: str) -> str:
    return f"{event_id}|{bookmaker}|{market_key}"


class OddsRowStore:
    """Odds rows keyed by (external event id, bookmaker, market key) with upsert semantics."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self.path = self.root / "odds_cache" / "rows.json"
        self._lock = threading.Lock()

    def upsert_events(self, events: Iterable[Event], *, now: datetime | None = None) -> int:
        """Write every (event, bookmaker, market) row, replacing existing keys."""
        stamp = iso_z(now or utc_now())
        written = 0
        with self._lock:
            rows = _load_rows(self.path)
            for event in events:
                for quote in event.bookmakers:
                    for market in quote.markets:
                        rows[odds_row_key(event.id, quote.key, market.key)] = {
                            "external_game_id": event.id,
                            "sport": event.sport,
                            "commence_time": iso_z(event.commence_time),
                            "home_team": event.home_team,
                            "away_team": event.away_team,
                            "bookmaker": quote.key,
                            "market_type": market.key,
                            "outcomes": [outcome.to_dict() for outcome in market.outcomes],
                            "last_update": iso_z(quote.last_update) if quote.last_update else stamp,
                            "last_updated": stamp,
                        }
                        written += 1
            _atomic_write_json(self.path, rows)
        return written

    def _matching_rows(
        self,
        *,
        sports: set[str],
        bookmaker: str,
        markets: set[str],
        start: datetime,
        end: datetime,
        fresh_after: datetime | None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = list(_load_rows(self.path).values())
        matched: list[dict[str, Any]] = []
        for row in rows:
            if row.get("sport") not in sports or row.get("bookmaker") != bookmaker:
                continue
            if row.get("market_type") not in markets:
                continue
            commence = parse_iso_z(str(row.get("commence_time", "")))
            if commence is None or not (start < commence < end):
                continue
            if fresh_after is not None:
                updated = parse_iso_z(str(row.get("last_updated", "")))
                if updated is None or updated < fresh_after:
                    continue
            matched.append(row)
        matched.sort(key=lambda row: str(row.get("last_updated", "")), reverse=True)
        return matched

    def query(
        self,
        *,
        sports: Iterable[str],
        bookmaker: str,
        markets: Iterable[str],
        start: datetime,
        end: datetime,
        freshness_hours: float,
        now: datetime | None = None,
    ) -> StoreQueryResult:
        """Rows inside the commence window, fresh ones first, else stale-but-future ones.

        Stale rows are only used when no fresh row matches, and the result then
        carries ``degraded_freshness=True``. Rows outside ``(start, end)`` are never
        returned.
        """
        sport_set = set(sports)
        market_set = set(markets)
        current = now or utc_now()
        fresh_after = current - timedelta(hours=freshness_hours)
        rows = self._matching_rows(
            sports=sport_set,
            bookmaker=bookmaker,
            markets=market_set,
            start=start,
            end=end,
            fresh_after=fresh_after,
        )
        degraded = False
        if not rows:
            rows = self._matching_rows(
                sports=sport_set,
                bookmaker=bookmaker,
                markets=market_set,
                start=start,
                end=end,
                fresh_after=None,
            )
            degraded = bool(rows)
            if degraded:
                logger.warning(
                    "using %s stale odds rows for %s (older than %sh)",
                    len(rows),
                    bookmaker,
                    freshness_hours,
                )
        return StoreQueryResult(
            events=rows_to_events(rows),
            degraded_freshness=degraded,
            row_count=len(rows),
        )


def rows_to_events(rows: Iterable[dict[str, Any]]) -> list[Event]:
    """Rebuild events from stored rows, grouping by event id then bookmaker."""
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        event_id = str(row.get("external_game_id", ""))
        commence = parse_iso_z(str(row.get("commence_time", "")))
        if not event_id or commence is None:
            continue
        game = grouped.setdefault(
            event_id,
            {
                "sport": str(row.get("sport", "")),
                "commence": commence,
                "home": str(row.get("home_team", "")),
                "away": str(row.get("away_team", "")),
                "books": {},
            },
        )
        book_key = str(row.get("bookmaker", ""))
        book = game["books"].setdefault(
            book_key,
            {"last_update": parse_iso_z(str(row.get("last_update", ""))), "markets": {}},
        )
        outcomes: list[Outcome] = []
        for raw in row.get("outcomes", []) or []:
            if not isinstance(raw, dict):
                continue
            price = to_price(raw.get("price"))
            if price is None:
                continue
            outcomes.append(
                Outcome(
                    name=str(raw.get("name", "")),
                    price=price,
                    point=safe_float(raw.get("point")),
                    description=raw.get("description") or None,
                )
            )
        market_key = str(row.get("market_type", ""))
        if outcomes and market_key not in book["markets"]:
            book["markets"][market_key] = Market(key=market_key, outcomes=tuple(outcomes))

    events: list[Event] = []
    for event_id, game in grouped.items():
        quotes = tuple(
            BookmakerQuote(
                key=book_key,
                markets=tuple(book["markets"].values()),
                last_update=book["last_update"],
            )
            for book_key, book in game["books"].items()
        )
        events.append(
            Event(
                id=event_id,
                sport=game["sport"],
                commence_time=game["commence"],
                home_team=game["home"],
                away_team=game["away"],
                bookmakers=quotes,
            )
        )
    events.sort(key=lambda event: event.commence_time)
    return events


def news_row_key(sport: str, search_type: str, team: str) -> str:
    return f"{sport}|{search_type}|{team.lower()}"


class NewsCacheStore:
    """Team intelligence summaries keyed by (sport, search type, team) with expiry."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self.path = self.root / "news_cache" / "rows.json"
        self._lock = threading.Lock()

    def upsert(
        self,
        *,
        sport: str,
        search_type: str,
        team: str,
        summary: str,
        articles: list[dict[str, Any]] | None = None,
        ttl_hours: float = 6.0,
        now: datetime | None = None,
    ) -> None:
        current = now or utc_now()
        with self._lock:
            rows = _load_rows(self.path)
            rows[news_row_key(sport, search_type, team)] = {
                "sport": sport,
                "search_type": search_type,
                "team_name": team,
                "summary": summary,
                "articles": list(articles or []),
                "created_at": iso_z(current),
                "expires_at": iso_z(current + timedelta(hours=ttl_hours)),
            }
            _atomic_write_json(self.path, rows)

    def lookup(
        self,
        *,
        sport: str,
        team: str,
        search_type: str | None = None,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Unexpired intelligence rows for one team, newest first."""
        current = now or utc_now()
        with self._lock:
            rows = list(_load_rows(self.path).values())
        matched: list[dict[str, Any]] = []
        for row in rows:
            if row.get("sport") != sport:
                continue
            if str(row.get("team_name", "")).lower() != team.lower():
                continue
            if search_type is not None and row.get("search_type") != search_type:
                continue
            expires = parse_iso_z(str(row.get("expires_at", "")))
            if expires is None or expires <= current:
                continue
            matched.append(row)
        matched.sort(key=lambda row: str(row.get("created_at", "")), reverse=True)
        return matched
