from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx

from parlay_gen.cache import TTLCache
from parlay_gen.models import BookmakerQuote, Event, Market, Outcome, ResearchedEvent
from parlay_gen.research import (
    ResearchEnricher,
    extract_key_insights,
    format_research_for_prompt,
    game_query,
    player_names,
    prioritize_events,
    research_depth,
    synthesize_research,
)
from parlay_gen.search_client import SearchAPIError, SearchClient, SearchResult
from parlay_gen.settings import Settings
from parlay_gen.store import NewsCacheStore

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _event(event_id: str, hours: float, *, props: bool = False) -> Event:
    markets = [Market("h2h", (Outcome("Buffalo Bills", -150), Outcome("Kansas City Chiefs", 130)))]
    if props:
        markets.append(
            Market(
                "player_pass_yds",
                (
                    Outcome("Over", -115, 262.5, "Josh Allen"),
                    Outcome("Under", -105, 262.5, "Josh Allen"),
                    Outcome("Over", -110, 255.5, "Patrick Mahomes"),
                ),
            )
        )
    return Event(
        id=event_id,
        sport="americanfootball_nfl",
        commence_time=NOW + timedelta(hours=hours),
        home_team="Buffalo Bills",
        away_team="Kansas City Chiefs",
        bookmakers=(BookmakerQuote("draftkings", tuple(markets)),),
    )


class FakeSearchPost:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.queries: list[str] = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def __call__(
        self, url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float
    ) -> dict[str, Any]:
        with self._lock:
            self.queries.append(payload["q"])
        if self.fail_on and self.fail_on in payload["q"]:
            raise SearchAPIError("search request failed: status=500")
        return {
            "organic": [
                {
                    "title": "Bills injury report",
                    "snippet": "Josh Allen is questionable with a shoulder injury",
                    "link": "https://example.com/bills",
                },
                {
                    "title": "Chiefs trends",
                    "snippet": "Kansas City on a four-game win streak",
                    "link": "https://example.com/chiefs",
                },
            ]
        }


def _enricher(post: FakeSearchPost, *, key: str = "serper-key", **kwargs) -> ResearchEnricher:
    settings = Settings(_env_file=None, serper_api_key=key, research_batch_size=2)
    return ResearchEnricher(
        settings=settings,
        search=SearchClient(settings, post_fn=post),
        cache=TTLCache(ttl_seconds=1800.0),
        clock=lambda: NOW,
        **kwargs,
    )


def test_prioritize_prefers_sooner_events_and_skips_empty() -> None:
    soon = _event("soon", 3)
    later = _event("later", 30)
    empty = Event("empty", "americanfootball_nfl", NOW + timedelta(hours=1), "A", "B")

    ordered = prioritize_events([later, empty, soon], NOW, top_k=25)

    assert [event.id for event in ordered] == ["soon", "later"]


def test_research_depth_deep_only_for_low_risk() -> None:
    assert research_depth("Low") == "deep"
    assert research_depth("Medium") == "moderate"
    assert research_depth("High") == "moderate"


def test_player_names_first_seen_unique() -> None:
    assert player_names(_event("e", 3, props=True)) == ["Josh Allen", "Patrick Mahomes"]


def test_synthesize_research_numbers_sources_and_flags_insights() -> None:
    results = [
        SearchResult("Bills injury report", "Allen questionable", "https://a"),
        SearchResult("Weather", "Heavy wind expected", "https://b"),
    ]

    summary, sources = synthesize_research(results)

    assert summary.startswith("Bills injury report: Allen questionable | Weather:")
    assert "Analysis: Injury concerns detected, Weather factor identified" in summary
    assert [source["idx"] for source in sources] == ["1", "2"]
    assert synthesize_research([]) == ("No research data available", ())


def test_extract_key_insights_none_without_keywords() -> None:
    assert extract_key_insights("nothing notable here") is None


def test_game_query_uses_local_date() -> None:
    query = game_query(_event("e", 8))

    assert query.startswith("Kansas City Chiefs vs Buffalo Bills 2026 Oct 18, 2026")
    assert query.endswith("injury report recent performance trends prediction")


def test_enrich_without_key_passes_events_through() -> None:
    post = FakeSearchPost()
    enricher = _enricher(post, key="")

    researched = enricher.enrich([_event("a", 3)], num_legs=1, risk_level="Medium")

    assert post.queries == []
    assert researched[0].research is None


def test_enrich_limits_targets_and_keeps_every_event() -> None:
    post = FakeSearchPost()
    events = [_event(f"e{idx}", 2 + idx) for idx in range(5)]

    researched = _enricher(post).enrich(events, num_legs=1, risk_level="Medium")

    assert len(researched) == 5
    assert sum(1 for item in researched if item.has_research) == 3
    assert {item.event.id for item in researched} == {event.id for event in events}


def test_identical_queries_are_served_from_cache() -> None:
    post = FakeSearchPost()
    enricher = _enricher(post)
    event = _event("a", 3)

    enricher.enrich([event], num_legs=1, risk_level="Medium")
    enricher.enrich([event], num_legs=1, risk_level="Medium")

    assert len(post.queries) == 1


def test_low_risk_adds_player_insights() -> None:
    post = FakeSearchPost()

    researched = _enricher(post).enrich(
        [_event("a", 3, props=True)], num_legs=1, risk_level="Low"
    )

    assert len(post.queries) == 2
    assert "players Josh Allen, Patrick Mahomes" in post.queries[1]
    assert researched[0].research is not None
    assert "PLAYER INSIGHTS: Josh Allen is questionable" in researched[0].research


def test_search_failure_degrades_single_event(caplog) -> None:
    post = FakeSearchPost(fail_on="Kansas City Chiefs vs Buffalo Bills 2026 Oct 18")
    events = [_event("today", 3), _event("later", 40)]

    researched = _enricher(post).enrich(events, num_legs=2, risk_level="Medium")

    by_id = {item.event.id: item for item in researched}
    assert by_id["today"].research is None
    assert by_id["later"].research is not None
    assert "research failed" in caplog.text


def test_non_json_search_response_degrades_single_event(monkeypatch, caplog) -> None:
    def fake_post(url: str, **kwargs: Any) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    settings = Settings(_env_file=None, serper_api_key="serper-key")
    enricher = ResearchEnricher(
        settings=settings,
        search=SearchClient(settings),
        cache=TTLCache(ttl_seconds=1800.0),
        clock=lambda: NOW,
    )

    researched = enricher.enrich([_event("a", 3)], num_legs=1, risk_level="Medium")

    assert researched[0].research is None
    assert "search response is not JSON" in caplog.text


def test_intelligence_attached_from_news_store(tmp_path: Path) -> None:
    store = NewsCacheStore(tmp_path)
    store.upsert(
        sport="americanfootball_nfl",
        search_type="injuries",
        team="Buffalo Bills",
        summary="Allen probable",
        ttl_hours=6,
    )
    enricher = _enricher(FakeSearchPost(), key="", news_store=store)

    researched = enricher.enrich([_event("a", 3)], num_legs=1, risk_level="Medium")

    assert [row["summary"] for row in researched[0].intelligence] == ["Allen probable"]


def test_format_research_dedupes_sources() -> None:
    sources = ({"idx": "1", "title": "Bills", "link": "https://a", "snippet": ""},)
    researched = [
        ResearchedEvent(_event("a", 8), research="first", sources=sources),
        ResearchedEvent(_event("b", 9), research="second", sources=sources),
        ResearchedEvent(_event("c", 10)),
    ]

    text = format_research_for_prompt(researched)

    assert "10/18/2026 - Kansas City Chiefs @ Buffalo Bills\n   RESEARCH: first" in text
    assert text.count("https://a") == 1
    assert text.endswith("SOURCES:\n\n[1] Bills - https://a")
