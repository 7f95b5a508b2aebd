"""Immutable data model for events, quotes, legs and pipeline results."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from parlay_gen.odds_math import ParlayOdds
from parlay_gen.time_utils import display_date, iso_z


@dataclass(frozen=True)
class Outcome:
    name: str
    price: int
    point: float | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {"name": self.name, "price": self.price}
        if self.point is not None:
            row["point"] = self.point
        if self.description:
            row["description"] = self.description
        return row


@dataclass(frozen=True)
class Market:
    key: str
    outcomes: tuple[Outcome, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "outcomes": [outcome.to_dict() for outcome in self.outcomes]}


@dataclass(frozen=True)
class BookmakerQuote:
    key: str
    markets: tuple[Market, ...]
    last_update: datetime | None = None

    def market(self, key: str) -> Market | None:
        for market in self.markets:
            if market.key == key:
                return market
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "last_update": iso_z(self.last_update) if self.last_update else None,
            "markets": [market.to_dict() for market in self.markets],
        }


def synthesize_event_id(sport: str, home_team: str, away_team: str, commence: datetime) -> str:
    """Stable key for provider events that arrive without an id."""
    raw = "|".join([sport, away_team.lower(), home_team.lower(), iso_z(commence)])
    return "syn-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Event:
    """One sporting event with its bookmaker quotes, fixed for a pipeline run."""

    id: str
    sport: str
    commence_time: datetime
    home_team: str
    away_team: str
    bookmakers: tuple[BookmakerQuote, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.away_team} @ {self.home_team}"

    @property
    def primary_quote(self) -> BookmakerQuote | None:
        return self.bookmakers[0] if self.bookmakers else None

    @property
    def market_count(self) -> int:
        quote = self.primary_quote
        return len(quote.markets) if quote else 0

    def with_bookmakers(self, bookmakers: tuple[BookmakerQuote, ...]) -> Event:
        return replace(self, bookmakers=bookmakers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sport_key": self.sport,
            "commence_time": iso_z(self.commence_time),
            "home_team": self.home_team,
            "away_team": self.away_team,
            "bookmakers": [quote.to_dict() for quote in self.bookmakers],
        }


@dataclass(frozen=True)
class ResearchedEvent:
    """Event plus optional research context attached by enrichment."""

    event: Event
    research: str | None = None
    sources: tuple[dict[str, str], ...] = ()
    intelligence: tuple[dict[str, Any], ...] = ()

    @property
    def has_research(self) -> bool:
        return bool(self.research)


@dataclass(frozen=True)
class Leg:
    """One wager line within a parlay or pick list."""

    date: str
    game: str
    bet: str
    odds: str
    confidence: float | None = None
    rationale: str = ""
    citations: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "game": self.game,
            "bet": self.bet,
            "odds": self.odds,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "citations": list(self.citations),
        }


@dataclass(frozen=True)
class Pick:
    """Independently gradable single-market suggestion."""

    id: str
    event_id: str
    game_date: str
    sport: str
    home_team: str
    away_team: str
    market_type: str
    bet_type: str
    pick: str
    odds: str
    point: float | None = None
    research: str | None = None
    confidence: float | None = None
    reasoning: str = ""

    @property
    def game(self) -> str:
        return f"{self.away_team} @ {self.home_team}"

    def as_leg(self) -> Leg:
        return Leg(
            date=self.game_date,
            game=self.game,
            bet=self.pick,
            odds=self.odds,
            confidence=self.confidence,
            rationale=self.reasoning,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "game_date": self.game_date,
            "sport": self.sport,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "market_type": self.market_type,
            "bet_type": self.bet_type,
            "pick": self.pick,
            "odds": self.odds,
            "point": self.point,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "has_research": bool(self.research),
        }


@dataclass(frozen=True)
class ParlayResult:
    """Final parlay text with legs and engine-derived combined price."""

    content: str
    legs: tuple[Leg, ...]
    lock_legs: tuple[Leg, ...]
    combined: ParlayOdds | None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "content": self.content,
            "legs": [leg.to_dict() for leg in self.legs],
            "lock_legs": [leg.to_dict() for leg in self.lock_legs],
            "combined_odds": self.combined.combined_american if self.combined else None,
            "payout_on_100": self.combined.payout_on_100 if self.combined else None,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class NoOpportunities:
    """Structured terminal result when no events could be acquired."""

    message: str
    retry_hint: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "no_opportunities",
            "message": self.message,
            "retry_hint": self.retry_hint,
            "metadata": self.metadata,
        }


def game_date(event: Event) -> str:
    return display_date(event.commence_time)
