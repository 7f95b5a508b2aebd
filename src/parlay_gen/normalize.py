"""Normalization of Odds API payloads into immutable events."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from parlay_gen.models import BookmakerQuote, Event, Market, Outcome, synthesize_event_id
from parlay_gen.time_utils import parse_iso_z
from parlay_gen.util.parsing import clean_text, safe_float, to_price

logger = logging.getLogger(__name__)


def _expect_dict(value: Any, context: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{context} must be an object")
    return value


def _expect_list(value: Any, context: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{context} must be a list")
    return value


def _outcome(raw: Any) -> Outcome | None:
    row = _expect_dict(raw, "outcome")
    price = to_price(row.get("price"))
    name = clean_text(row.get("name"))
    if price is None or not name:
        return None
    description = clean_text(row.get("description")) or None
    return Outcome(
        name=name, price=price, point=safe_float(row.get("point")), description=description
    )


def normalize_bookmakers(raw_books: Any, context: str) -> tuple[BookmakerQuote, ...]:
    quotes: list[BookmakerQuote] = []
    for bookmaker in _expect_list(raw_books, f"{context}.bookmakers"):
        book_dict = _expect_dict(bookmaker, f"{context}.bookmaker")
        book_key = clean_text(book_dict.get("key"))
        markets: list[Market] = []
        for market in _expect_list(book_dict.get("markets", []), f"{context}.markets"):
            market_dict = _expect_dict(market, f"{context}.market")
            outcomes = [
                outcome
                for outcome in (
                    _outcome(item)
                    for item in _expect_list(market_dict.get("outcomes", []), "outcomes")
                )
                if outcome is not None
            ]
            if outcomes:
                key = clean_text(market_dict.get("key"))
                markets.append(Market(key=key, outcomes=tuple(outcomes)))
        last_update = parse_iso_z(clean_text(book_dict.get("last_update")))
        quotes.append(BookmakerQuote(key=book_key, markets=tuple(markets), last_update=last_update))
    return tuple(quotes)


def normalize_event(payload: Any, *, sport_key: str | None = None) -> Event | None:
    """Normalize one provider event object; None when it lacks teams or a start time."""
    event = _expect_dict(payload, "event")
    sport = clean_text(event.get("sport_key")) or (sport_key or "")
    home = clean_text(event.get("home_team"))
    away = clean_text(event.get("away_team"))
    commence = parse_iso_z(clean_text(event.get("commence_time")))
    if not home or not away or commence is None:
        logger.debug("skipping event without teams or commence time: %s", event.get("id"))
        return None
    event_id = clean_text(event.get("id")) or synthesize_event_id(sport, home, away, commence)
    bookmakers = normalize_bookmakers(event.get("bookmakers", []), f"event[{event_id}]")
    return Event(
        id=event_id,
        sport=sport,
        commence_time=commence,
        home_team=home,
        away_team=away,
        bookmakers=bookmakers,
    )


def normalize_events(payload: Any, *, sport_key: str | None = None) -> list[Event]:
    """Normalize a list endpoint response into events."""
    events: list[Event] = []
    for item in _expect_list(payload, "events_payload"):
        event = normalize_event(item, sport_key=sport_key)
        if event is not None:
            events.append(event)
    return events


def _team_tokens(team: str) -> tuple[str, ...]:
    lowered = team.lower()
    prefix = lowered[:3]
    return (lowered, f"({prefix})", prefix)


def restrict_props_to_teams(event: Event) -> Event:
    """Drop player-prop outcomes whose description names neither team in the event.

    Markets left without outcomes are removed. Non-player markets are untouched.
    """
    tokens = _team_tokens(event.home_team) + _team_tokens(event.away_team)
    quotes: list[BookmakerQuote] = []
    for quote in event.bookmakers:
        markets: list[Market] = []
        for market in quote.markets:
            if not market.key.startswith("player_"):
                markets.append(market)
                continue
            kept = tuple(
                outcome
                for outcome in market.outcomes
                if any(token in (outcome.description or "").lower() for token in tokens)
            )
            dropped = len(market.outcomes) - len(kept)
            if dropped:
                logger.debug(
                    "%s %s: dropped %s outcomes for players outside %s",
                    quote.key,
                    market.key,
                    dropped,
                    event.label,
                )
            if kept:
                markets.append(Market(key=market.key, outcomes=kept))
        quotes.append(
            BookmakerQuote(key=quote.key, markets=tuple(markets), last_update=quote.last_update)
        )
    return event.with_bookmakers(tuple(quotes))


def merge_event_markets(base: Event, extra: Event) -> Event:
    """Merge markets from ``extra`` into ``base`` per bookmaker; base keeps duplicate keys."""
    extra_by_book = {quote.key: quote for quote in extra.bookmakers}
    quotes: list[BookmakerQuote] = []
    for quote in base.bookmakers:
        addition = extra_by_book.pop(quote.key, None)
        if addition is None:
            quotes.append(quote)
            continue
        known = {market.key for market in quote.markets}
        markets = quote.markets + tuple(m for m in addition.markets if m.key not in known)
        quotes.append(BookmakerQuote(key=quote.key, markets=markets, last_update=quote.last_update))
    quotes.extend(extra_by_book.values())
    return base.with_bookmakers(tuple(quotes))


def merge_events(groups: Iterable[list[Event]]) -> list[Event]:
    """Merge event lists that may describe the same event id, first seen order preserved."""
    merged: dict[str, Event] = {}
    for group in groups:
        for event in group:
            existing = merged.get(event.id)
            merged[event.id] = event if existing is None else merge_event_markets(existing, event)
    return list(merged.values())
