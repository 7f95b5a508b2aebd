"""Static market catalog: sports, bet types, bookmakers and fallbacks."""

from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

ALL_BET_TYPES = "ALL"
PLAYER_PROPS_EXPANSION = "_player_props"
TEAM_PROPS_EXPANSION = "_team_props"
EXPANSION_ORDER = (PLAYER_PROPS_EXPANSION, TEAM_PROPS_EXPANSION)

CORE_MARKETS = ("h2h", "spreads", "totals")

SPORT_CODES: dict[str, str] = {
    "NFL": "americanfootball_nfl",
    "NBA": "basketball_nba",
    "MLB": "baseball_mlb",
    "NHL": "icehockey_nhl",
    "Soccer": "soccer_epl",
    "NCAAF": "americanfootball_ncaaf",
    "PGA/Golf": "golf_pga",
    "Tennis": "tennis_atp",
    "UFC": "mma_ufc",
}

MARKET_MAPPING: dict[str, tuple[str, ...]] = {
    "Moneyline/Spread": ("h2h", "spreads"),
    "Totals (O/U)": ("totals",),
    "Player Props": (
        "player_pass_yds",
        "player_pass_tds",
        "player_pass_completions",
        "player_pass_attempts",
        "player_rush_yds",
        "player_rush_tds",
        "player_rush_attempts",
        "player_receptions",
        "player_reception_yds",
        "player_reception_tds",
        "player_points",
        "player_rebounds",
        "player_assists",
        "player_threes",
        "player_shots_on_goal",
        "player_goals",
        "batter_hits",
        "batter_home_runs",
        "pitcher_strikeouts",
    ),
    "TD Props": (
        "player_pass_tds",
        "player_rush_tds",
        "player_reception_tds",
        "player_anytime_td",
        "player_1st_td",
        "player_last_td",
    ),
    "Team Props": ("team_totals",),
    PLAYER_PROPS_EXPANSION: (
        "player_pass_yds",
        "player_rush_yds",
        "player_receptions",
        "player_reception_yds",
        "player_pass_tds",
        "player_anytime_td",
    ),
    TEAM_PROPS_EXPANSION: ("team_totals",),
}

BOOKMAKER_KEYS: dict[str, str] = {
    "DraftKings": "draftkings",
    "FanDuel": "fanduel",
    "MGM": "mgm",
    "Caesars": "caesars",
    "Bet365": "bet365",
}

FALLBACK_BOOKS: dict[str, tuple[str, ...]] = {
    "draftkings": ("fanduel", "mgm", "caesars"),
    "fanduel": ("draftkings", "mgm", "caesars"),
    "mgm": ("draftkings", "fanduel", "caesars"),
    "caesars": ("draftkings", "fanduel", "mgm"),
    "bet365": ("draftkings", "fanduel", "mgm"),
}
DEFAULT_FALLBACK_BOOKS = ("draftkings", "fanduel")

PROP_PREFIXES = ("player_", "team_", "batter_", "pitcher_")

MARKET_LABELS: dict[str, str] = {
    "h2h": "Moneyline",
    "spreads": "Spread",
    "totals": "Total",
    "team_totals": "Team Total",
}


def user_selectable_bet_types() -> list[str]:
    """Bet-type labels a caller may choose; internal expansion keys excluded."""
    return [label for label in MARKET_MAPPING if not label.startswith("_")]


def sport_code(sport: str) -> str | None:
    """Provider sport code for a display sport, or None when unknown."""
    code = SPORT_CODES.get(sport.strip())
    if code is None:
        logger.warning("unknown sport %r; skipping", sport)
    return code


def sport_codes(sports: Iterable[str]) -> list[str]:
    codes: list[str] = []
    for sport in sports:
        code = sport_code(sport)
        if code and code not in codes:
            codes.append(code)
    return codes


def bookmaker_key(name: str) -> str | None:
    """Provider key for a bookmaker display name; provider keys pass through."""
    raw = name.strip()
    if raw in BOOKMAKER_KEYS:
        return BOOKMAKER_KEYS[raw]
    if raw.lower() in BOOKMAKER_KEYS.values():
        return raw.lower()
    logger.warning("unknown bookmaker %r", name)
    return None


def fallback_books(primary: str) -> tuple[str, ...]:
    """Ordered fallback bookmaker keys for a primary bookmaker key."""
    chain = FALLBACK_BOOKS.get(primary, DEFAULT_FALLBACK_BOOKS)
    return tuple(book for book in chain if book != primary)


def markets_for_bet_types(bet_types: Iterable[str]) -> list[str]:
    """Expand bet-type labels to an ordered, de-duplicated market key list.

    The ``ALL`` sentinel expands to every user-selectable bet type. Unknown
    labels contribute nothing and log a warning.
    """
    labels = list(bet_types)
    if ALL_BET_TYPES in labels:
        labels = user_selectable_bet_types()
    markets: list[str] = []
    for label in labels:
        keys = MARKET_MAPPING.get(label)
        if keys is None:
            logger.warning("unknown bet type %r; no markets mapped", label)
            continue
        for key in keys:
            if key not in markets:
                markets.append(key)
    return markets


def is_prop_market(market_key: str) -> bool:
    """Prop markets require per-event queries at the odds provider."""
    return market_key.startswith(PROP_PREFIXES)


def split_markets(markets: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split market keys into (regular, prop) lists, preserving order."""
    regular: list[str] = []
    props: list[str] = []
    for key in markets:
        (props if is_prop_market(key) else regular).append(key)
    return regular, props


def market_label(market_key: str) -> str:
    if market_key in MARKET_LABELS:
        return MARKET_LABELS[market_key]
    words = market_key.split("_")
    if words and words[0] in {"player", "batter", "pitcher"}:
        words = words[1:]
    return " ".join(word.capitalize() for word in words) or market_key
