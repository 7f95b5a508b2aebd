"""Independent single-market pick suggestions ranked by the model."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from parlay_gen.acquisition import OddsAcquirer
from parlay_gen.catalog import is_prop_market, market_label
from parlay_gen.errors import InsufficientDataError, ProviderFetchError
from parlay_gen.generation import GenerateFn
from parlay_gen.market_filter import filter_researched
from parlay_gen.models import Market, Outcome, Pick, ResearchedEvent, game_date
from parlay_gen.odds_math import format_american
from parlay_gen.pipeline import NO_DATA_RETRY_HINT, ParlayRequest, check_request
from parlay_gen.research import ResearchEnricher
from parlay_gen.risk import risk_policy
from parlay_gen.util.parsing import safe_float
from parlay_gen.validation import conflicts_with_any

logger = logging.getLogger(__name__)

ACQUIRE_ALL_LEGS = 100
MARKET_PRIORITY = ("h2h", "spreads", "totals")
OVER_KEYWORDS = ("high scoring", "offensive", "pace", "points", "yards", "fast")
UNDER_KEYWORDS = ("defensive", "low scoring", "slow", "weather", "wind", "defense")
SUGGESTED_SPORTS = ("NFL", "NBA", "NHL", "Soccer", "MLB", "NCAAF")
SUGGESTED_BET_TYPES = ("Moneyline/Spread", "Player Props", "Totals (O/U)", "TD Props")
CANDIDATE_PROMPT_LIMIT = 60

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass(frozen=True)
class SmartAlert:
    type: str
    severity: str
    title: str
    message: str
    suggestions: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class PickSuggestions:
    suggestions: tuple[Pick, ...]
    requested: int
    alert: SmartAlert | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "suggestions": [pick.to_dict() for pick in self.suggestions],
            "alert": self.alert.to_dict() if self.alert else None,
            "metadata": {
                "requested_suggestions": self.requested,
                "returned_suggestions": len(self.suggestions),
                **self.metadata,
            },
        }


def suggestion_count(num_legs: int) -> int:
    return 10 if num_legs <= 3 else min(30, num_legs * 5)


def choose_moneyline(outcomes: Sequence[Outcome]) -> Outcome | None:
    """Underdog priced +100..+250, else a favorite at -150 or shorter, else the underdog."""
    if len(outcomes) < 2:
        return outcomes[0] if outcomes else None
    ranked = sorted(outcomes, key=lambda outcome: outcome.price, reverse=True)
    underdog, favorite = ranked[0], ranked[1]
    if 100 <= underdog.price <= 250:
        return underdog
    if favorite.price <= -150:
        return favorite
    return underdog


def choose_spread(outcomes: Sequence[Outcome]) -> Outcome | None:
    if len(outcomes) < 2:
        return outcomes[0] if outcomes else None
    return min(outcomes, key=lambda outcome: abs(outcome.point or 0.0))


def choose_total(outcomes: Sequence[Outcome], research: str) -> Outcome | None:
    """Research keywords vote Over or Under; ties go Over."""
    if len(outcomes) < 2:
        return outcomes[0] if outcomes else None
    over = next((item for item in outcomes if "over" in item.name.lower()), None)
    under = next((item for item in outcomes if "under" in item.name.lower()), None)
    if over is None or under is None:
        return outcomes[0]
    text = research.lower()
    over_score = sum(1 for word in OVER_KEYWORDS if word in text)
    under_score = sum(1 for word in UNDER_KEYWORDS if word in text)
    return under if under_score > over_score else over


def _point_text(point: float | None, signed: bool) -> str:
    if point is None:
        return ""
    text = f"{point:g}"
    if signed and point > 0:
        text = f"+{text}"
    return f" {text}"


def pick_text(market: Market, outcome: Outcome) -> str:
    if market.key == "h2h":
        return f"{outcome.name} ML"
    if market.key == "spreads":
        return f"{outcome.name}{_point_text(outcome.point, True)}"
    if market.key == "totals":
        return f"{outcome.name}{_point_text(outcome.point, False)}"
    subject = outcome.description or ""
    line = f"{outcome.name}{_point_text(outcome.point, False)}"
    return f"{subject} {line} ({market_label(market.key)})".strip()


def make_pick(item: ResearchedEvent, market: Market, outcome: Outcome) -> Pick:
    event = item.event
    subject = f"_{outcome.description}" if outcome.description else ""
    return Pick(
        id=f"{event.id}_{market.key}_{outcome.name}{subject}",
        event_id=event.id,
        game_date=game_date(event),
        sport=event.sport,
        home_team=event.home_team,
        away_team=event.away_team,
        market_type=market.key,
        bet_type=market_label(market.key),
        pick=pick_text(market, outcome),
        odds=format_american(outcome.price),
        point=outcome.point,
        research=item.research,
    )


def _market_rank(market: Market) -> int:
    if market.key in MARKET_PRIORITY:
        return MARKET_PRIORITY.index(market.key)
    return len(MARKET_PRIORITY)


def extract_picks(items: Sequence[ResearchedEvent]) -> list[Pick]:
    """At most one candidate per market per event, from the first bookmaker."""
    picks: list[Pick] = []
    for item in items:
        quote = item.event.primary_quote
        if quote is None:
            continue
        for market in sorted(quote.markets, key=_market_rank):
            if market.key == "h2h":
                chosen = choose_moneyline(market.outcomes)
            elif market.key == "spreads":
                chosen = choose_spread(market.outcomes)
            elif market.key == "totals":
                chosen = choose_total(market.outcomes, item.research or "")
            elif is_prop_market(market.key):
                chosen = market.outcomes[0] if market.outcomes else None
            else:
                continue
            if chosen is not None:
                picks.append(make_pick(item, market, chosen))
    return picks


def ranking_prompt(picks: Sequence[Pick], count: int, risk_level: str) -> str:
    lines = [
        f"Select the best {count} picks for a {risk_level} risk bettor from the candidates below.",
        "Use only the information shown. Respond with a JSON array of objects "
        '{"id": "<candidate id>", "confidence": 1-10, "reasoning": "<one sentence>"} '
        "ordered best first.",
        "",
        "CANDIDATES:",
    ]
    for pick in picks[:CANDIDATE_PROMPT_LIMIT]:
        context = ""
        if pick.research:
            context = " | context: " + " ".join(pick.research[:200].split())
        lines.append(
            f"- id={pick.id} | {pick.game_date} | {pick.game} | {pick.bet_type}: {pick.pick} "
            f"({pick.odds}){context}"
        )
    return "\n".join(lines)


def parse_ranking(text: str) -> list[dict[str, Any]]:
    """Ranked rows from the model reply; bare id strings are accepted too."""
    match = _JSON_ARRAY_RE.search(text)
    if match is None:
        return []
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning("pick ranking reply is not valid JSON")
        return []
    if not isinstance(payload, list):
        return []
    rows: list[dict[str, Any]] = []
    for entry in payload:
        if isinstance(entry, str):
            rows.append({"id": entry})
        elif isinstance(entry, dict) and isinstance(entry.get("id"), str):
            rows.append(entry)
    return rows


def apply_ranking(picks: Sequence[Pick], ranking: Sequence[dict[str, Any]]) -> list[Pick]:
    """Model order first, enriched with its confidence and reasoning; unranked follow."""
    by_id = {pick.id: pick for pick in picks}
    ordered: list[Pick] = []
    seen: set[str] = set()
    for row in ranking:
        pick = by_id.get(row["id"])
        if pick is None or pick.id in seen:
            continue
        seen.add(pick.id)
        ordered.append(
            replace(
                pick,
                confidence=safe_float(row.get("confidence")),
                reasoning=str(row.get("reasoning", "") or "").strip(),
            )
        )
    ordered.extend(pick for pick in picks if pick.id not in seen)
    return ordered


def conflict_free(picks: Sequence[Pick], limit: int) -> list[Pick]:
    accepted: list[Pick] = []
    for pick in picks:
        if len(accepted) >= limit:
            break
        if conflicts_with_any(pick.as_leg(), [item.as_leg() for item in accepted]):
            logger.debug("dropping conflicting pick %s", pick.id)
            continue
        accepted.append(pick)
    return accepted


def _plural(value: int) -> str:
    return "" if value == 1 else "s"


def _missing(options: Sequence[str], current: Sequence[str], take: int, fallback: str) -> str:
    available = [option for option in options if option not in current]
    return ", ".join(available[:take]) or fallback


def smart_alert(
    returned: int, requested: int, event_count: int, request: ParlayRequest
) -> SmartAlert | None:
    """Guidance when fewer picks than requested could be produced."""
    if returned >= requested:
        return None
    days = request.date_range_days
    sports = _missing(SUGGESTED_SPORTS, request.sports, 3, "All sports already selected")
    bet_types = _missing(
        SUGGESTED_BET_TYPES, request.bet_types, 2, "All major bet types selected"
    )
    if event_count == 1:
        return SmartAlert(
            type="limited_games",
            severity="warning",
            title=f"Only {event_count} game available",
            message=(
                f"Found only {returned} suggestions from {event_count} game. To get more picks:"
            ),
            suggestions=(
                f"📅 Expand date range to 3-7 days (currently {days} day{_plural(days)})",
                "🏈 Add more sports (try NBA, NHL, Soccer for more games)",
                "🎯 Add more bet types (add Player Props, Totals for more options)",
                "⚡ Note: Multiple bets from same game are filtered to avoid conflicts",
            ),
        )
    if event_count <= 3:
        return SmartAlert(
            type="limited_options",
            severity="info",
            title=f"Limited to {event_count} games",
            message=(
                f"Generated {returned}/{requested} suggestions from {event_count} games. "
                "For more variety:"
            ),
            suggestions=(
                f"📅 Extend date range (currently {days} day{_plural(days)})",
                f"🏈 Consider additional sports: {sports}",
                f"🎯 Add bet types: {bet_types}",
            ),
        )
    return SmartAlert(
        type="insufficient_data",
        severity="info",
        title=f"{requested - returned} fewer picks than requested",
        message=f"Generated {returned}/{requested} suggestions. Consider:",
        suggestions=(
            "📅 Increase date range for more games",
            f"🏈 Add sports: {sports}",
            "🎯 Expand bet types for more options per game",
        ),
    )


def suggest_picks(
    request: ParlayRequest,
    *,
    acquirer: OddsAcquirer,
    enricher: ResearchEnricher,
    generate_fn: GenerateFn,
) -> PickSuggestions:
    """Acquire every available event, extract candidates, rank and de-conflict them."""
    check_request(request)
    count = suggestion_count(request.num_legs)
    policy = risk_policy(request.risk_level)
    acquisition = acquirer.acquire(request.acquisition_request(ACQUIRE_ALL_LEGS))
    if acquisition.insufficient_data:
        raise InsufficientDataError(
            acquisition.warning or "No odds data available", retry_hint=NO_DATA_RETRY_HINT
        )
    researched = enricher.enrich(
        acquisition.events,
        num_legs=count,
        risk_level=policy.name,
        fast_mode=request.fast_mode,
    )
    filtered = filter_researched(researched, request.bet_types, policy.name)
    candidates = extract_picks(filtered)
    logger.info("extracted %s candidate picks from %s events", len(candidates), len(filtered))

    ranking: list[dict[str, Any]] = []
    if candidates:
        try:
            ranking = parse_ranking(generate_fn(ranking_prompt(candidates, count, policy.name)))
        except ProviderFetchError as exc:
            logger.warning("pick ranking failed; using candidate order: %s", exc)
    selected = conflict_free(apply_ranking(candidates, ranking), count)
    return PickSuggestions(
        suggestions=tuple(selected),
        requested=count,
        alert=smart_alert(len(selected), count, len(filtered), request),
        metadata={
            "total_events_analyzed": len(filtered),
            "total_picks_considered": len(candidates),
            "model_ranked": bool(ranking),
            "odds_source": acquisition.source,
            "risk_level": policy.name,
        },
    )
