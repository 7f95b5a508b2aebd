"""Deterministic rewrites applied to model text before it reaches a user."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from parlay_gen.errors import InvalidInputError, InvalidOddsError
from parlay_gen.model_output import (
    BEGIN_MARKER,
    END_MARKER,
    LEG_START_RE,
    TextLeg,
    odds_from_bet_line,
    odds_from_line,
    parse_text_legs,
)
from parlay_gen.models import Leg
from parlay_gen.odds_math import combine_legs

logger = logging.getLogger(__name__)

COMBINED_ODDS_LABEL = "**Combined Odds:**"
PAYOUT_LABEL = "**Payout on $100:**"
LOCK_HEADER = "**🔒 BONUS LOCK PARLAY: Two High-Confidence Picks**"
LOCK_RATIONALE = (
    "**Why These Are Locks:** Highest confidence legs with solid research support "
    "and reasonable odds."
)
LOCK_SIZE = 2

_LOCK_HEADER_RE = re.compile(r"^\s*\*\*[^\n]*LOCK\s+PARLAY:", re.IGNORECASE)
_BLOCK_RE = re.compile(re.escape(BEGIN_MARKER) + r"[\s\S]*?" + re.escape(END_MARKER))
_OPEN_BLOCK_RE = re.compile(re.escape(BEGIN_MARKER) + r"[\s\S]*$")
_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*[\s\S]*?```")
_JSON_BLOB_RE = re.compile(r'\{\s*"parlay"[\s\S]*$')
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def _is_parlay_header(line: str) -> bool:
    if "🎯" in line and "-Leg Parlay:" in line:
        return True
    return "🔒" in line and "LOCK PARLAY:" in line


def correct_combined_odds(text: str) -> str:
    """Rewrite each parlay's combined odds and payout lines from its own leg odds.

    Leg odds come from the ``Odds:`` line or, failing that, the last parenthesized
    price on the ``Bet:`` line. A block starts at a parlay header and ends at
    ``---`` or the lock rationale line.
    """
    out: list[str] = []
    in_parlay = False
    leg_odds: list[str | None] = []

    def combined() -> tuple[str, int] | None:
        prices = [odds for odds in leg_odds if odds]
        if not prices:
            return None
        try:
            result = combine_legs(prices)
        except (InvalidInputError, InvalidOddsError) as exc:
            logger.warning("could not recompute combined odds: %s", exc)
            return None
        return result.combined_american, result.payout_on_100

    for line in text.split("\n"):
        stripped = line.strip()
        if _is_parlay_header(line):
            in_parlay = True
            leg_odds = []
            out.append(line)
            continue
        if in_parlay:
            if LEG_START_RE.match(line):
                leg_odds.append(None)
            elif stripped.startswith("Odds:") and leg_odds:
                parsed = odds_from_line(stripped)
                if parsed is not None:
                    leg_odds[-1] = parsed
            elif stripped.startswith("Bet:") and leg_odds and leg_odds[-1] is None:
                leg_odds[-1] = odds_from_bet_line(stripped)
            elif COMBINED_ODDS_LABEL in line:
                value = combined()
                if value is not None:
                    out.append(f"{COMBINED_ODDS_LABEL} {value[0]}")
                    continue
            elif PAYOUT_LABEL in line:
                value = combined()
                if value is not None:
                    out.append(f"{PAYOUT_LABEL} ${value[1]}")
                    continue
            elif "---" in line or "**Why These Are Locks:**" in line:
                in_parlay = False
                leg_odds = []
        out.append(line)
    return "\n".join(out)


def strip_structured_block(text: str) -> str:
    """Remove marker-delimited JSON (complete or unterminated) and fenced blobs."""
    cleaned = _BLOCK_RE.sub("", text)
    cleaned = _OPEN_BLOCK_RE.sub("", cleaned)
    cleaned = cleaned.replace(END_MARKER, "")
    cleaned = _FENCE_RE.sub("", cleaned)
    cleaned = _JSON_BLOB_RE.sub("", cleaned)
    return _BLANK_RUN_RE.sub("\n\n", cleaned).strip()


def remove_lock_sections(text: str) -> str:
    """Drop every lock parlay section, sub-headers and legs included.

    A section runs from its header to the next ``---`` line (dropped with it), the
    next parlay header, or the end of the text.
    """
    out: list[str] = []
    in_lock = False
    for line in text.split("\n"):
        if _LOCK_HEADER_RE.match(line):
            in_lock = True
            continue
        if in_lock:
            if line.strip() == "---":
                in_lock = False
                continue
            if not _is_parlay_header(line):
                continue
            in_lock = False
        out.append(line)
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(out)).strip()


def _confidence_text(value: float | None) -> str:
    if value is None:
        return "?"
    return f"{value:g}"


def select_lock_legs(legs: Sequence[Leg]) -> list[Leg]:
    """Two highest-confidence legs; ties keep input order."""
    if len(legs) < LOCK_SIZE:
        return []
    return sorted(legs, key=lambda leg: leg.confidence or 0.0, reverse=True)[:LOCK_SIZE]


def build_lock_section(legs: Sequence[Leg]) -> str | None:
    ranked = select_lock_legs(legs)
    if not ranked:
        return None
    body = "\n\n".join(
        f"{idx}. 📅 DATE: {leg.date}\n   Game: {leg.game}\n   Bet: {leg.bet}\n"
        f"   Odds: {leg.odds}\n   Confidence: {_confidence_text(leg.confidence)}/10"
        for idx, leg in enumerate(ranked, start=1)
    )
    return "\n".join([LOCK_HEADER, "", "**Legs:**", body, "", LOCK_RATIONALE])


def build_lock_section_from_text(text_legs: Sequence[TextLeg]) -> str | None:
    """Lock parlay assembled from raw leg lines when no structured legs exist."""
    if len(text_legs) < LOCK_SIZE:
        return None
    ranked = sorted(text_legs, key=lambda leg: leg.confidence or 0.0, reverse=True)[:LOCK_SIZE]
    body = "\n\n".join(
        f"{idx}. " + "\n   ".join([LEG_START_RE.sub("📅", leg.lines[0], count=1), *leg.lines[1:]])
        for idx, leg in enumerate(ranked, start=1)
    )
    return "\n".join([LOCK_HEADER, "", "**Legs:**", body, "", LOCK_RATIONALE])


def expansion_notice(event_count: int, num_legs: int, expanded_bet_types: Sequence[str]) -> str:
    """Disclosure appended when bet types beyond the user's selection were added."""
    plural = "" if event_count == 1 else "s"
    added = ", ".join(expanded_bet_types) if expanded_bet_types else "additional markets"
    return (
        "---\n\n⚠️ **SAME-GAME PARLAY NOTICE**\n\n"
        f"Due to limited games available ({event_count} game{plural}), additional bet types "
        f"({added}) were automatically included to reach {num_legs} legs. This parlay may "
        "include multiple bets from the same game(s), and same-game parlays have correlated "
        "outcomes.\n\n"
        "**Conflict Prevention Rules Active:**\n"
        "- ✅ No opposing totals (Over/Under)\n"
        "- ✅ No opposing spreads\n"
        "- ✅ No Moneyline + Spread on same team\n"
        "- ✅ No duplicate bets\n\n---"
    )


def finalize(
    text: str,
    *,
    structured_legs: Sequence[Leg] = (),
    market_expanded: bool = False,
    event_count: int = 0,
    num_legs: int = 0,
    expanded_bet_types: Sequence[str] = (),
) -> str:
    """Correct odds, strip machine block, normalize to one lock section, add notices."""
    corrected = correct_combined_odds(text)
    base = strip_structured_block(corrected)
    sanitized = remove_lock_sections(base)
    lock = build_lock_section(structured_legs)
    if lock is None:
        lock = build_lock_section_from_text(parse_text_legs(sanitized))
    final = f"{sanitized}\n\n{lock}" if lock else sanitized
    if market_expanded:
        final = f"{final}\n\n{expansion_notice(event_count, num_legs, expanded_bet_types)}"
    return final
