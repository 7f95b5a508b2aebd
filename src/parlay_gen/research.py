"""Prioritized, cached, rate-monitored research enrichment of events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from parlay_gen.cache import TTLCache
from parlay_gen.errors import ProviderFetchError
from parlay_gen.models import Event, ResearchedEvent
from parlay_gen.rate_limit import RequestRateMonitor
from parlay_gen.search_client import SearchClient, SearchResult
from parlay_gen.settings import Settings
from parlay_gen.store import NewsCacheStore
from parlay_gen.time_utils import DISPLAY_ZONE, hours_until, utc_now

logger = logging.getLogger(__name__)

DEEP = "deep"
MODERATE = "moderate"
SUMMARY_LIMIT = 1200
PLAYER_SUMMARY_LIMIT = 800
MAX_PLAYERS = 5
MAX_PROMPT_EVENTS = 20
MAX_PROMPT_SOURCES = 20

INSIGHT_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("injury", "injured", "questionable"), "Injury concerns detected"),
    (("weather", "rain", "wind"), "Weather factor identified"),
    (("streak", "consecutive", "trend"), "Performance trend noted"),
    (("line", "spread", "odds"), "Betting line movement detected"),
)


def research_priority(event: Event, now: datetime) -> int:
    """Sooner events and events with more markets are researched first."""
    priority = 0
    hours = hours_until(event.commence_time, now)
    if hours < 6:
        priority += 50
    elif hours < 24:
        priority += 30
    elif hours < 48:
        priority += 10
    return priority + event.market_count * 5


def prioritize_events(events: list[Event], now: datetime, top_k: int) -> list[Event]:
    eligible = [event for event in events if event.market_count > 0]
    eligible.sort(key=lambda event: research_priority(event, now), reverse=True)
    return eligible[:top_k]


def research_depth(risk_level: str) -> str:
    return DEEP if risk_level == "Low" else MODERATE


def player_names(event: Event) -> list[str]:
    """Prop participants on the primary quote, first seen order."""
    quote = event.primary_quote
    if quote is None:
        return []
    names: list[str] = []
    for market in quote.markets:
        if not market.key.startswith("player_"):
            continue
        for outcome in market.outcomes:
            name = outcome.description
            if name and name not in {"Over", "Under"} and name not in names:
                names.append(name)
    return names


def extract_key_insights(text: str) -> str | None:
    lowered = text.lower()
    found = [label for words, label in INSIGHT_KEYWORDS if any(word in lowered for word in words)]
    return ", ".join(found) if found else None


def synthesize_research(results: list[SearchResult]) -> tuple[str, tuple[dict[str, str], ...]]:
    """Summarize the top five results and keep them as numbered sources."""
    if not results:
        return "No research data available", ()
    top = results[:5]
    insights = " | ".join(f"{row.title}: {row.snippet}" for row in top)[:SUMMARY_LIMIT]
    sources = tuple(
        {"idx": str(idx), "title": row.title, "link": row.link, "snippet": row.snippet}
        for idx, row in enumerate(top, start=1)
    )
    analysis = extract_key_insights(insights)
    summary = f"{insights} | Analysis: {analysis}" if analysis else insights
    return summary, sources


def game_query(event: Event) -> str:
    local = event.commence_time.astimezone(DISPLAY_ZONE)
    date_text = local.strftime("%b %d, %Y").replace(" 0", " ")
    return (
        f"{event.away_team} vs {event.home_team} {local.year} {date_text} "
        "injury report recent performance trends prediction"
    )


def player_query(event: Event, names: list[str]) -> str:
    local = event.commence_time.astimezone(DISPLAY_ZONE)
    date_text = local.strftime("%b %d").replace(" 0", " ")
    players = ", ".join(names[:MAX_PLAYERS])
    return (
        f"{event.away_team} {event.home_team} {date_text} {local.year} players {players} "
        "stats recent performance touchdowns"
    )


class ResearchEnricher:
    """Attach free-text research to the highest-priority events.

    Search failures degrade the affected event to ``research=None``; the batch
    always completes.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        search: SearchClient,
        cache: TTLCache[list[SearchResult]],
        monitor: RequestRateMonitor | None = None,
        news_store: NewsCacheStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.search = search
        self.cache = cache
        self.monitor = monitor or RequestRateMonitor(
            warn_threshold=settings.research_rate_warn_per_s, name="search"
        )
        self.news_store = news_store
        self.clock = clock

    def enrich(
        self,
        events: list[Event],
        *,
        num_legs: int,
        risk_level: str,
        fast_mode: bool = False,
    ) -> list[ResearchedEvent]:
        if not self.search.enabled:
            logger.info("no search API key; skipping research for %s events", len(events))
            return [self._passthrough(event) for event in events]

        now = self.clock()
        prioritized = prioritize_events(events, now, self.settings.research_top_k)
        targets = prioritized[: min(len(prioritized), num_legs * 3)]
        depth = research_depth(risk_level)
        batch_size = max(1, self.settings.research_batch_size)

        enriched: list[ResearchedEvent] = []
        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            for offset in range(0, len(targets), batch_size):
                batch = targets[offset : offset + batch_size]
                enriched.extend(
                    pool.map(lambda event: self._analyze(event, depth, fast_mode), batch)
                )

        researched_ids = {item.event.id for item in enriched}
        rest = [self._passthrough(event) for event in events if event.id not in researched_ids]
        logger.info(
            "researched %s of %s events (depth=%s)",
            sum(1 for item in enriched if item.has_research),
            len(events),
            depth,
        )
        return enriched + rest

    def _passthrough(self, event: Event) -> ResearchedEvent:
        return ResearchedEvent(event=event, intelligence=self._intelligence(event))

    def _search(self, query: str, fast_mode: bool) -> list[SearchResult]:
        def run() -> list[SearchResult]:
            self.monitor.record()
            return self.search.search(query, fast_mode=fast_mode)

        return self.cache.get_or_compute(query.strip().lower(), run)

    def _analyze(self, event: Event, depth: str, fast_mode: bool) -> ResearchedEvent:
        intelligence = self._intelligence(event)
        try:
            summary, sources = synthesize_research(self._search(game_query(event), fast_mode))
        except ProviderFetchError as exc:
            logger.warning("research failed for %s: %s", event.label, exc)
            return ResearchedEvent(event=event, intelligence=intelligence)

        names = player_names(event)
        if depth == DEEP and names:
            insights = self._player_insights(event, names, fast_mode)
            if insights:
                summary = f"{summary} | PLAYER INSIGHTS: {insights}"
        return ResearchedEvent(
            event=event,
            research=summary,
            sources=sources,
            intelligence=intelligence,
        )

    def _player_insights(self, event: Event, names: list[str], fast_mode: bool) -> str:
        try:
            results = self._search(player_query(event, names), fast_mode)
        except ProviderFetchError as exc:
            logger.warning("player research failed for %s: %s", event.label, exc)
            return ""
        lowered = [name.lower() for name in names[:MAX_PLAYERS]]
        snippets = [
            row.snippet
            for row in results[:5]
            if any(name in row.snippet.lower() for name in lowered)
        ]
        return " | ".join(snippets)[:PLAYER_SUMMARY_LIMIT]

    def _intelligence(self, event: Event) -> tuple[dict[str, Any], ...]:
        if self.news_store is None:
            return ()
        rows: list[dict[str, Any]] = []
        try:
            for team in (event.home_team, event.away_team):
                rows.extend(self.news_store.lookup(sport=event.sport, team=team))
        except (OSError, ValueError) as exc:
            logger.warning("intelligence lookup failed for %s: %s", event.label, exc)
            return ()
        return tuple(rows)


def format_research_for_prompt(researched: list[ResearchedEvent]) -> str:
    """Render researched events and a de-duplicated numbered source list."""
    lines: list[str] = []
    sources: list[tuple[str, str]] = []
    seen: set[str] = set()
    for item in [row for row in researched if row.research][:MAX_PROMPT_EVENTS]:
        event = item.event
        local = event.commence_time.astimezone(DISPLAY_ZONE)
        date_text = f"{local.month}/{local.day}/{local.year}"
        lines.append(f"{date_text} - {event.label}\n   RESEARCH: {item.research}")
        for source in item.sources:
            link = source.get("link", "")
            if not link or link in seen or len(sources) >= MAX_PROMPT_SOURCES:
                continue
            seen.add(link)
            sources.append((source.get("title", ""), link))
    if sources:
        lines.append("SOURCES:")
        lines.extend(f"[{idx}] {title} - {link}" for idx, (title, link) in enumerate(sources, 1))
    return "\n\n".join(lines)
