"""Projection of acquired events onto the selected bet types."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from parlay_gen.catalog import ALL_BET_TYPES, MARKET_MAPPING
from parlay_gen.models import BookmakerQuote, Event, ResearchedEvent

logger = logging.getLogger(__name__)

LOW_RISK_MONEYLINE_ONLY = "Moneyline/Spread"


def allowed_markets(bet_types: Iterable[str], risk_level: str) -> set[str] | None:
    """Market keys permitted by the selection; None means no filtering."""
    labels = list(bet_types)
    if not labels or ALL_BET_TYPES in labels:
        return None
    allowed: set[str] = set()
    for label in labels:
        keys = MARKET_MAPPING.get(label)
        if keys is None:
            logger.warning("unknown bet type %r ignored by market filter", label)
            continue
        if risk_level == "Low" and label == LOW_RISK_MONEYLINE_ONLY:
            keys = ("h2h",)
        allowed.update(keys)
    return allowed


def _project(event: Event, allowed: set[str]) -> Event | None:
    quotes: list[BookmakerQuote] = []
    for quote in event.bookmakers:
        markets = tuple(market for market in quote.markets if market.key in allowed)
        if markets:
            quotes.append(replace(quote, markets=markets))
    if not quotes:
        return None
    return event.with_bookmakers(tuple(quotes))


def filter_events(events: list[Event], bet_types: Iterable[str], risk_level: str) -> list[Event]:
    """Keep only selected markets, pruning empty bookmakers and events.

    When the projection would empty a non-empty input, the input is returned
    unfiltered.
    """
    allowed = allowed_markets(bet_types, risk_level)
    if allowed is None:
        return list(events)
    projected = [item for item in (_project(event, allowed) for event in events) if item]
    if events and not projected:
        logger.warning("no events left after market filter; using unfiltered events")
        return list(events)
    return projected


def filter_researched(
    items: list[ResearchedEvent], bet_types: Iterable[str], risk_level: str
) -> list[ResearchedEvent]:
    """Market filter over researched events, keeping their research attached."""
    allowed = allowed_markets(bet_types, risk_level)
    if allowed is None:
        return list(items)
    projected: list[ResearchedEvent] = []
    for item in items:
        event = _project(item.event, allowed)
        if event is not None:
            projected.append(replace(item, event=event))
    if items and not projected:
        logger.warning("no events left after market filter; using unfiltered events")
        return list(items)
    return projected
