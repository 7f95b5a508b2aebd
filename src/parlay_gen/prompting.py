"""Prompt assembly for parlay generation attempts."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from parlay_gen.catalog import is_prop_market
from parlay_gen.model_output import BEGIN_MARKER, END_MARKER
from parlay_gen.models import Market, ResearchedEvent
from parlay_gen.risk import RiskPolicy
from parlay_gen.time_utils import DISPLAY_ZONE

MAX_PROMPT_EVENTS = 10
MIN_PROMPT_EVENTS = 6
PROP_SAMPLE_SIZE = 5
RESEARCH_SNIPPET_LIMIT = 600

SYSTEM_PREAMBLE = "You are an expert sports betting analyst. Follow all rules exactly."

GROUNDING_RULES = """**CRITICAL: ZERO TOLERANCE FOR FABRICATED INFORMATION**

1. **PLAYER-TEAM VERIFICATION**: only mention a player when Context states which team they play for.
2. **NO INVENTED STATISTICS OR RANKINGS**: cite numbers only when Context provides them exactly.
3. **NO INJURY SPECULATION**: mention injuries only when Context confirms them.
4. **CONTEXT-ONLY**: if Context is silent on a topic, stay silent too.
5. **PLAYER PROPS MUST MATCH GAME TEAMS**: the player must play for one of that game's two teams."""

CONFLICT_RULES = (
    "NO opposing totals (Over and Under) in the same game",
    "NO opposing spread sides in the same game",
    "NO moneyline + spread on the same team",
    "NO duplicate exact bets",
)


@dataclass(frozen=True)
class PromptRequest:
    sports: tuple[str, ...]
    bet_types: tuple[str, ...]
    num_legs: int
    policy: RiskPolicy
    date_range_days: int = 1


def prompt_event_cap(num_legs: int) -> int:
    return min(max(num_legs, MIN_PROMPT_EVENTS), MAX_PROMPT_EVENTS)


def _format_point(point: float | None, signed: bool) -> str:
    if point is None or point == 0:
        return ""
    text = f"{point:g}"
    if signed and point > 0:
        text = f"+{text}"
    return f" {text}"


def format_market(market: Market) -> str:
    """One market line; props show a sample of outcomes keyed by participant."""
    if is_prop_market(market.key):
        samples = ", ".join(
            f"{outcome.description or outcome.name}{_format_point(outcome.point, False)}"
            f"({outcome.price})"
            for outcome in market.outcomes[:PROP_SAMPLE_SIZE]
        )
        extra = len(market.outcomes) - PROP_SAMPLE_SIZE
        more = f" +{extra} more" if extra > 0 else ""
        return f"{market.key}: {samples}{more}"
    lines = ", ".join(
        f"{outcome.name}{_format_point(outcome.point, True)}({outcome.price})"
        for outcome in market.outcomes
    )
    return f"{market.key}: {lines}"


def format_events(events: Sequence[ResearchedEvent], num_legs: int) -> str:
    if not events:
        return "NO ODDS DATA"
    blocks: list[str] = []
    for idx, item in enumerate(events[: prompt_event_cap(num_legs)], start=1):
        event = item.event
        local = event.commence_time.astimezone(DISPLAY_ZONE)
        game_date = f"{local.month}/{local.day}/{local.year}"
        quote = event.primary_quote
        if quote is None or not quote.markets:
            markets = "no markets"
        else:
            markets = "\n   ".join(format_market(market) for market in quote.markets)
        block = f"{idx}. DATE: {game_date} - {event.label}\n   {markets}"
        if item.research:
            snippet = " ".join(item.research[:RESEARCH_SNIPPET_LIMIT].split())
            if snippet:
                block += f"\n   Context: {snippet}..."
        for row in item.intelligence[:2]:
            summary = " ".join(str(row.get("summary", ""))[:200].split())
            if summary:
                block += f"\n   Intel ({row.get('search_type', 'news')}): {summary}"
        blocks.append(block)
    return "AVAILABLE GAMES:\n" + "\n\n".join(blocks)


def format_template(num_legs: int, policy: RiskPolicy) -> str:
    return f"""FORMAT:
**🎯 {num_legs}-Leg Parlay: [Title]**

**Legs:**
1. 📅 DATE: [MM/DD/YYYY]
   Game: [Away @ Home]
   Bet: [bet with line]
   Odds: [odds]
   Confidence: {policy.confidence_example}
   Reasoning: [data-driven analysis using only facts from Context]

**Combined Odds:** +XXX
**Payout on $100:** $XXX

{BEGIN_MARKER}
{{"parlay": {{"title": "[Title]", "legs": [{{"date": "MM/DD/YYYY", "game": "Away @ Home", \
"bet": "[bet]", "odds": "+100", "confidence": 7, "citations": []}}]}}, \
"lockParlay": {{"legs": []}}}}
{END_MARKER}"""


def calibration_text(policy: RiskPolicy) -> str:
    if not policy.calibration_bands:
        return ""
    bands = "; ".join(
        f"confidence {confidence}+ requires odds of {price} or shorter"
        for confidence, price in policy.calibration_bands
    )
    return (
        f"- PRICE POLICY: every leg must be {policy.heavy_favorite_max} or shorter.\n"
        f"- CALIBRATION: {bands}."
    )


def build_prompt(
    request: PromptRequest,
    events: Sequence[ResearchedEvent],
    *,
    attempt: int = 1,
    feedback: str = "",
) -> str:
    """Bounded prompt for one attempt; retries lead with the prior violations verbatim."""
    policy = request.policy
    retry = f"RETRY {attempt}: {feedback}\n\n" if attempt > 1 and feedback else ""
    rules = [
        f"- EXACTLY {request.num_legs} legs",
        f"- Bet types: {', '.join(request.bet_types)}",
        "- Use EXACT dates/odds from data",
        f"- Date range: {request.date_range_days} day(s)",
        "- No conflicts: " + "; ".join(CONFLICT_RULES),
        f"- Risk: {policy.name} ({policy.description}) Target combined odds {policy.target_range}",
        policy.confidence_rule(),
    ]
    calibration = calibration_text(policy)
    if calibration:
        rules.append(calibration)
    sections = [
        f"{retry}Create {request.num_legs}-leg parlay for {', '.join(request.sports)}.",
        "RULES:\n" + "\n".join(rules),
        GROUNDING_RULES,
        format_events(events, request.num_legs),
        format_template(request.num_legs, policy),
    ]
    return "\n\n".join(sections).strip()
