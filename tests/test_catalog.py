from __future__ import annotations

import logging

import pytest

from parlay_gen.catalog import (
    bookmaker_key,
    fallback_books,
    is_prop_market,
    market_label,
    markets_for_bet_types,
    sport_code,
    sport_codes,
    split_markets,
    user_selectable_bet_types,
)


def test_user_selectable_bet_types_hide_internal_keys() -> None:
    labels = user_selectable_bet_types()

    assert "Moneyline/Spread" in labels
    assert "Team Props" in labels
    assert all(not label.startswith("_") for label in labels)


def test_sport_code_lookup_and_unknown_warning(caplog: pytest.LogCaptureFixture) -> None:
    assert sport_code("NFL") == "americanfootball_nfl"
    with caplog.at_level(logging.WARNING, logger="parlay_gen.catalog"):
        assert sport_code("Curling") is None
    assert "unknown sport" in caplog.text


def test_sport_codes_skips_unknown_and_dedupes() -> None:
    assert sport_codes(["NFL", "Curling", "NFL", "NBA"]) == [
        "americanfootball_nfl",
        "basketball_nba",
    ]


def test_bookmaker_key_accepts_display_and_provider_names() -> None:
    assert bookmaker_key("DraftKings") == "draftkings"
    assert bookmaker_key("fanduel") == "fanduel"
    assert bookmaker_key("Bovada") is None


def test_fallback_books_exclude_primary() -> None:
    assert fallback_books("draftkings") == ("fanduel", "mgm", "caesars")
    assert "bet365" not in fallback_books("bet365")
    assert fallback_books("unknown") == ("draftkings", "fanduel")


def test_markets_for_bet_types_expands_and_dedupes() -> None:
    markets = markets_for_bet_types(["Moneyline/Spread", "Totals (O/U)", "Moneyline/Spread"])

    assert markets == ["h2h", "spreads", "totals"]


def test_markets_for_all_covers_every_selectable_type() -> None:
    markets = markets_for_bet_types(["ALL"])

    assert {"h2h", "spreads", "totals", "team_totals", "player_anytime_td"} <= set(markets)


def test_markets_for_unknown_label_is_empty(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="parlay_gen.catalog"):
        assert markets_for_bet_types(["Parlay Insurance"]) == []
    assert "unknown bet type" in caplog.text


def test_split_markets_and_prop_detection() -> None:
    regular, props = split_markets(["h2h", "player_points", "totals", "team_totals"])

    assert regular == ["h2h", "totals"]
    assert props == ["player_points", "team_totals"]
    assert is_prop_market("batter_hits")
    assert not is_prop_market("spreads")


def test_market_label() -> None:
    assert market_label("h2h") == "Moneyline"
    assert market_label("player_reception_yds") == "Reception Yds"
    assert market_label("pitcher_strikeouts") == "Strikeouts"
