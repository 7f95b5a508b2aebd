"""Shared odds conversion and parlay combination math."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from parlay_gen.errors import InvalidInputError, InvalidOddsError

EVEN_TOKENS = {"EV", "EVEN", "PK", "PICK"}
_SIGNED_INT_RE = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True)
class ParlayOdds:
    """Combined price for a set of legs, with payout on a $100 stake."""

    combined_american: str
    payout_on_100: int
    profit_on_100: int
    decimal_odds: float


def parse_american(odds: Any) -> int:
    """Parse an American price from an int or signed numeric string."""
    if isinstance(odds, bool):
        raise InvalidOddsError(f"invalid american odds: {odds!r}")
    if isinstance(odds, int):
        value = odds
    elif isinstance(odds, float):
        if odds != odds or odds in {float("inf"), float("-inf")}:
            raise InvalidOddsError(f"invalid american odds: {odds!r}")
        value = int(round(odds))
    elif isinstance(odds, str):
        raw = odds.strip()
        if not _SIGNED_INT_RE.match(raw):
            raise InvalidOddsError(f"invalid american odds: {odds!r}")
        value = int(raw)
    else:
        raise InvalidOddsError(f"invalid american odds: {odds!r}")
    if value == 0:
        raise InvalidOddsError("american odds cannot be zero")
    return value


def format_american(value: int) -> str:
    """Render an American price with an explicit sign."""
    return f"+{value}" if value > 0 else str(value)


def normalize_american_token(token: str | None) -> str | None:
    """Normalize model-written odds tokens such as EVEN or 150 to signed form."""
    if token is None:
        return None
    raw = token.strip().upper()
    if not raw:
        return None
    if raw in EVEN_TOKENS:
        return "+100"
    if not _SIGNED_INT_RE.match(raw):
        return None
    if raw[0] in "+-":
        return raw
    return f"+{raw}"


def american_to_decimal(odds: Any) -> float:
    """Convert American odds to decimal odds."""
    value = parse_american(odds)
    if value > 0:
        return 1.0 + (value / 100.0)
    return 1.0 + (100.0 / abs(value))


def decimal_to_american(decimal_odds: float) -> str:
    """Convert decimal odds to a signed American price string."""
    if decimal_odds is None or isinstance(decimal_odds, bool):
        raise InvalidOddsError(f"invalid decimal odds: {decimal_odds!r}")
    value = float(decimal_odds)
    if value < 1.0:
        raise InvalidOddsError(f"decimal odds must be >= 1, got {value}")
    if value == 1.0:
        raise InvalidOddsError("decimal odds of 1.0 have no american equivalent")
    if value >= 2.0:
        return f"+{int(round((value - 1.0) * 100.0))}"
    return f"-{int(round(100.0 / (value - 1.0)))}"


def combine_legs(odds_list: Sequence[Any]) -> ParlayOdds:
    """Combine leg prices into one parlay price via decimal multiplication."""
    if isinstance(odds_list, (str, bytes)) or not isinstance(odds_list, Sequence):
        raise InvalidInputError("combine_legs expects a list of american odds")
    if not odds_list:
        raise InvalidInputError("combine_legs requires at least one leg")
    combined = 1.0
    for odds in odds_list:
        combined *= american_to_decimal(odds)
    return ParlayOdds(
        combined_american=decimal_to_american(combined),
        payout_on_100=int(round(combined * 100.0)),
        profit_on_100=int(round((combined - 1.0) * 100.0)),
        decimal_odds=combined,
    )


def implied_probability(odds: Any) -> float:
    """Implied win probability of an American price, as a percentage."""
    value = parse_american(odds)
    if value > 0:
        return 100.0 / (value + 100.0) * 100.0
    magnitude = abs(value)
    return magnitude / (magnitude + 100.0) * 100.0
