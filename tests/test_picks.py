from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from parlay_gen.acquisition import OddsAcquirer
from parlay_gen.cache import TTLCache
from parlay_gen.errors import InsufficientDataError, ProviderFetchError
from parlay_gen.models import BookmakerQuote, Event, Market, Outcome, ResearchedEvent
from parlay_gen.picks import (
    apply_ranking,
    choose_moneyline,
    choose_spread,
    choose_total,
    conflict_free,
    extract_picks,
    make_pick,
    parse_ranking,
    pick_text,
    smart_alert,
    suggest_picks,
    suggestion_count,
)
from parlay_gen.pipeline import ParlayRequest
from parlay_gen.rate_limit import RateLimiter
from parlay_gen.research import ResearchEnricher
from parlay_gen.search_client import SearchClient
from parlay_gen.settings import Settings

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _event(event_id: str, home: str, away: str) -> Event:
    markets = (
        Market("totals", (Outcome("Over", -110, 47.5), Outcome("Under", -110, 47.5))),
        Market("h2h", (Outcome(home, -150), Outcome(away, 130))),
        Market("spreads", (Outcome(home, -110, -3.5), Outcome(away, -110, 3.5))),
        Market("player_pass_yds", (Outcome("Over", -115, 262.5, "Josh Allen"),)),
    )
    return Event(
        event_id,
        "americanfootball_nfl",
        NOW + timedelta(hours=5),
        home,
        away,
        (BookmakerQuote("draftkings", markets),),
    )


EVENTS = [
    _event("evt-1", "Buffalo Bills", "Kansas City Chiefs"),
    _event("evt-2", "Miami Dolphins", "New York Jets"),
]


class FakeSource:
    def __init__(self, events: list[Event]) -> None:
        self.events = events

    def fetch_featured(self, *, sport_key, markets, bookmaker, start, end):
        return list(self.events) if bookmaker == "draftkings" else []

    def list_events(self, *, sport_key, start, end):
        return []

    def fetch_event_odds(self, *, sport_key, event_id, markets, bookmaker):
        return None


def _components(events: list[Event]) -> dict:
    settings = Settings(_env_file=None, serper_api_key="")
    acquirer = OddsAcquirer(
        settings=settings,
        source=FakeSource(events),
        store=None,
        allow_live_fetch=True,
        rate_limiter=RateLimiter(rpm=6000, sleep=lambda _: None),
        clock=lambda: NOW,
    )
    enricher = ResearchEnricher(
        settings=settings,
        search=SearchClient(settings),
        cache=TTLCache(ttl_seconds=60.0),
        clock=lambda: NOW,
    )
    return {"acquirer": acquirer, "enricher": enricher}


def _request(**overrides) -> ParlayRequest:
    values = {
        "sports": ("NFL",),
        "bet_types": ("Moneyline/Spread", "Totals (O/U)"),
        "num_legs": 3,
    }
    values.update(overrides)
    return ParlayRequest(**values)


def test_suggestion_count() -> None:
    assert suggestion_count(1) == 10
    assert suggestion_count(3) == 10
    assert suggestion_count(4) == 20
    assert suggestion_count(10) == 30


@pytest.mark.parametrize(
    ("prices", "expected"),
    [
        ((-150, 130), 130),
        ((-500, 380), -500),
        ((-120, 100), 100),
        ((-130, 300), 300),
    ],
)
def test_choose_moneyline(prices: tuple[int, int], expected: int) -> None:
    outcomes = [Outcome("Home", prices[0]), Outcome("Away", prices[1])]

    chosen = choose_moneyline(outcomes)

    assert chosen is not None and chosen.price == expected


def test_choose_spread_prefers_smallest_line() -> None:
    outcomes = [Outcome("Home", -110, -7.5), Outcome("Away", -110, 2.5)]

    chosen = choose_spread(outcomes)

    assert chosen is not None and chosen.name == "Away"


def test_choose_total_votes_on_research_keywords() -> None:
    outcomes = [Outcome("Over", -110, 44.5), Outcome("Under", -110, 44.5)]

    under = choose_total(outcomes, "Strong defensive unit and wind in the forecast")
    over = choose_total(outcomes, "")

    assert under is not None and under.name == "Under"
    assert over is not None and over.name == "Over"


def test_pick_text_per_market() -> None:
    spread = Market("spreads", (Outcome("Bills", -110, 3.5),))
    prop = Market("player_pass_yds", (Outcome("Over", -115, 262.5, "Josh Allen"),))

    assert pick_text(Market("h2h", ()), Outcome("Bills", -150)) == "Bills ML"
    assert pick_text(spread, spread.outcomes[0]) == "Bills +3.5"
    assert pick_text(Market("totals", ()), Outcome("Over", -110, 47.5)) == "Over 47.5"
    assert pick_text(prop, prop.outcomes[0]) == "Josh Allen Over 262.5 (Pass Yds)"


def test_make_pick_builds_stable_id() -> None:
    item = ResearchedEvent(EVENTS[0], research="notes")
    market = EVENTS[0].bookmakers[0].markets[3]

    pick = make_pick(item, market, market.outcomes[0])

    assert pick.id == "evt-1_player_pass_yds_Over_Josh Allen"
    assert pick.odds == "-115"
    assert pick.bet_type == "Pass Yds"
    assert pick.game == "Kansas City Chiefs @ Buffalo Bills"
    assert pick.to_dict()["has_research"] is True


def test_extract_picks_one_per_market_in_priority_order() -> None:
    picks = extract_picks([ResearchedEvent(EVENTS[0])])

    assert [pick.market_type for pick in picks] == ["h2h", "spreads", "totals", "player_pass_yds"]
    assert [pick.pick for pick in picks[:3]] == [
        "Kansas City Chiefs ML",
        "Buffalo Bills -3.5",
        "Over 47.5",
    ]


def test_parse_ranking_accepts_objects_and_ids() -> None:
    reply = 'Ranked: [{"id": "a", "confidence": 8, "reasoning": " solid "}, "b", 3]'

    assert parse_ranking(reply) == [
        {"id": "a", "confidence": 8, "reasoning": " solid "},
        {"id": "b"},
    ]
    assert parse_ranking("no json here") == []
    assert parse_ranking("[not json]") == []


def test_apply_ranking_orders_and_enriches() -> None:
    picks = extract_picks([ResearchedEvent(EVENTS[0])])[:3]
    ranking = [
        {"id": picks[2].id, "confidence": 7, "reasoning": " pace "},
        {"id": "missing"},
        {"id": picks[0].id},
    ]

    ordered = apply_ranking(picks, ranking)

    assert [pick.id for pick in ordered] == [picks[2].id, picks[0].id, picks[1].id]
    assert ordered[0].confidence == 7.0
    assert ordered[0].reasoning == "pace"
    assert ordered[1].confidence is None


def test_conflict_free_drops_opposing_total() -> None:
    item = ResearchedEvent(EVENTS[0])
    totals = EVENTS[0].bookmakers[0].markets[0]
    over = make_pick(item, totals, totals.outcomes[0])
    under = make_pick(item, totals, totals.outcomes[1])

    assert conflict_free([over, under], limit=5) == [over]
    assert conflict_free([over, under], limit=0) == []


def test_smart_alert_types() -> None:
    request = _request()

    assert smart_alert(10, 10, 1, request) is None
    single = smart_alert(3, 10, 1, request)
    assert single is not None and single.type == "limited_games"
    assert single.suggestions[0].endswith("(currently 1 day)")
    few = smart_alert(6, 10, 2, request)
    assert few is not None and few.type == "limited_options"
    assert "🏈 Consider additional sports: NBA, NHL, Soccer" in few.suggestions
    many = smart_alert(8, 10, 5, request)
    assert many is not None and many.type == "insufficient_data"
    assert many.title == "2 fewer picks than requested"


def test_suggest_picks_uses_model_ranking() -> None:
    prompts: list[str] = []
    total_id = "evt-2_totals_Over"

    def model(prompt: str) -> str:
        prompts.append(prompt)
        return json.dumps([{"id": total_id, "confidence": 7, "reasoning": "Fast pace"}])

    result = suggest_picks(_request(), generate_fn=model, **_components(EVENTS))

    assert "id=evt-1_h2h_Kansas City Chiefs" in prompts[0]
    assert result.suggestions[0].id == total_id
    assert result.suggestions[0].confidence == 7.0
    assert len(result.suggestions) == 6
    assert all(pick.market_type != "player_pass_yds" for pick in result.suggestions)
    row = result.to_dict()
    assert row["metadata"]["requested_suggestions"] == 10
    assert row["metadata"]["returned_suggestions"] == 6
    assert row["metadata"]["model_ranked"] is True
    assert row["alert"]["type"] == "limited_options"


def test_suggest_picks_falls_back_to_candidate_order() -> None:
    def model(prompt: str) -> str:
        raise ProviderFetchError("openai request failed: status=500")

    result = suggest_picks(_request(), generate_fn=model, **_components(EVENTS))

    assert result.metadata["model_ranked"] is False
    assert result.suggestions[0].id == "evt-1_h2h_Kansas City Chiefs"


def test_suggest_picks_without_events_raises() -> None:
    with pytest.raises(InsufficientDataError):
        suggest_picks(_request(), generate_fn=lambda prompt: "[]", **_components([]))
