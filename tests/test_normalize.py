import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from parlay_gen.models import BookmakerQuote, Event, Market, Outcome
from parlay_gen.normalize import (
    merge_events,
    normalize_event,
    normalize_events,
    restrict_props_to_teams,
)

FIXTURES = Path(__file__).parent / "fixtures"


def _load(name: str) -> object:
    return json.loads((FIXTURES / name).read_text(encoding="utf-8"))


def test_normalize_featured_fixture() -> None:
    events = normalize_events(_load("featured_nfl.json"))

    assert len(events) == 2
    first = events[0]
    assert first.id == "evt-kc-buf"
    assert first.label == "Kansas City Chiefs @ Buffalo Bills"
    assert first.commence_time == datetime(2026, 10, 18, 20, 25, tzinfo=UTC)
    quote = first.primary_quote
    assert quote is not None
    assert [market.key for market in quote.markets] == ["h2h", "spreads", "totals"]
    totals = quote.market("totals")
    assert totals is not None
    assert [outcome.name for outcome in totals.outcomes] == ["Over", "Under"]


def test_missing_id_gets_stable_synthetic_key() -> None:
    payload = _load("featured_nfl.json")
    first = normalize_events(payload)[1]
    second = normalize_events(payload)[1]

    assert first.id.startswith("syn-")
    assert first.id == second.id


def test_normalize_event_rejects_non_object() -> None:
    with pytest.raises(ValueError, match="event must be an object"):
        normalize_event(["not", "an", "event"])


def test_restrict_props_keeps_only_players_from_the_game() -> None:
    event = normalize_event(_load("event_props.json"))
    assert event is not None

    filtered = restrict_props_to_teams(event)
    quote = filtered.primary_quote
    assert quote is not None
    keys = [market.key for market in quote.markets]

    assert keys == ["player_pass_yds", "team_totals"]
    pass_yds = quote.market("player_pass_yds")
    assert pass_yds is not None
    assert [outcome.description for outcome in pass_yds.outcomes] == [
        "Josh Allen (BUF)",
        "Patrick Mahomes - Kansas City Chiefs",
    ]


def test_merge_events_adds_markets_and_keeps_first_seen() -> None:
    commence = datetime(2026, 10, 18, 20, 25, tzinfo=UTC)
    h2h = Market("h2h", (Outcome("Bills", -150), Outcome("Chiefs", 130)))
    h2h_other = Market("h2h", (Outcome("Bills", -999), Outcome("Chiefs", 999)))
    props = Market("player_pass_yds", (Outcome("Over", -110, 262.5, "Josh Allen (BUF)"),))
    base = Event("e1", "nfl", commence, "Bills", "Chiefs", (BookmakerQuote("dk", (h2h,)),))
    extra = Event(
        "e1", "nfl", commence, "Bills", "Chiefs", (BookmakerQuote("dk", (h2h_other, props)),)
    )
    other = Event("e2", "nfl", commence, "Jets", "Dolphins")

    merged = merge_events([[base], [extra, other]])

    assert [event.id for event in merged] == ["e1", "e2"]
    quote = merged[0].primary_quote
    assert quote is not None
    assert [market.key for market in quote.markets] == ["h2h", "player_pass_yds"]
    h2h_market = quote.market("h2h")
    assert h2h_market is not None
    assert h2h_market.outcomes[0].price == -150
