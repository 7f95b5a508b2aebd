"""Ordered validation rules applied to each generation attempt."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from parlay_gen.model_output import (
    ModelOutput,
    StructuredOutput,
    count_text_legs,
    output_legs,
)
from parlay_gen.models import Leg
from parlay_gen.odds_math import normalize_american_token
from parlay_gen.risk import RiskPolicy

STRICT_ODDS_RE = re.compile(r"^[+-]\d{2,5}$")
LEG_COUNT_TOLERANCE = 1
MAX_FEEDBACK_ITEMS = 6

_PAREN_RE = re.compile(r"\([^)]*\)")
_SIGNED_LINE_RE = re.compile(r"(?:^|\s)[+-]\d+(?:\.\d+)?(?=\s|$)")
_OVER_RE = re.compile(r"\bover\b")
_UNDER_RE = re.compile(r"\bunder\b")
_MONEYLINE_RE = re.compile(r"\b(?:moneyline|ml)\b")


@dataclass(frozen=True)
class RuleResult:
    name: str
    passed: bool
    reason: str = ""


@dataclass(frozen=True)
class Conflict:
    game: str
    bet1: str
    bet2: str
    kind: str


@dataclass(frozen=True)
class Verdict:
    """Aggregated rule outcomes for one attempt."""

    results: tuple[RuleResult, ...]
    leg_count: int
    structured: bool

    @property
    def accepted(self) -> bool:
        return all(result.passed for result in self.results)

    def failures(self) -> list[RuleResult]:
        return [result for result in self.results if not result.passed]

    def feedback(self) -> str:
        """Violation text handed verbatim to the next attempt's prompt."""
        return "\n".join(result.reason for result in self.failures() if result.reason)


def _bet_core(bet: str) -> str:
    """Lowercased bet text without parenthesized prices."""
    return " ".join(_PAREN_RE.sub(" ", bet.lower()).split())


def _first_word(text: str) -> str:
    parts = text.split(" ")
    return parts[0] if parts else ""


def _is_total(bet: str) -> bool:
    return bool(_OVER_RE.search(bet) or _UNDER_RE.search(bet))


def _is_spread(bet: str) -> bool:
    return "spread" in bet or (not _is_total(bet) and bool(_SIGNED_LINE_RE.search(bet)))


def _is_moneyline(bet: str) -> bool:
    return bool(_MONEYLINE_RE.search(bet))


def conflict_kind(bet1: str, bet2: str) -> str | None:
    """Why two bets on the same event contradict each other, or None."""
    first = _bet_core(bet1)
    second = _bet_core(bet2)
    if first == second:
        return "duplicate"
    if (_OVER_RE.search(first) and _UNDER_RE.search(second)) or (
        _UNDER_RE.search(first) and _OVER_RE.search(second)
    ):
        return "opposing-total"
    if _is_spread(first) and _is_spread(second):
        signs_differ = ("+" in first and "-" in second) or ("-" in first and "+" in second)
        if signs_differ and _first_word(first) != _first_word(second):
            return "opposing-spread"
    moneyline_and_spread = (_is_moneyline(first) and _is_spread(second)) or (
        _is_spread(first) and _is_moneyline(second)
    )
    if moneyline_and_spread and _first_word(first) == _first_word(second):
        return "moneyline-spread-same-team"
    return None


def find_conflicts(legs: Sequence[Leg]) -> list[Conflict]:
    """Pairwise conflicts between legs on the same event; other events never conflict."""
    conflicts: list[Conflict] = []
    for i, left in enumerate(legs):
        for right in legs[i + 1 :]:
            if left.game.strip().lower() != right.game.strip().lower():
                continue
            kind = conflict_kind(left.bet, right.bet)
            if kind is not None:
                conflicts.append(Conflict(game=left.game, bet1=left.bet, bet2=right.bet, kind=kind))
    return conflicts


def conflicts_with_any(candidate: Leg, accepted: Sequence[Leg]) -> bool:
    game = candidate.game.strip().lower()
    return any(
        leg.game.strip().lower() == game and conflict_kind(leg.bet, candidate.bet) is not None
        for leg in accepted
    )


def _price(odds: str) -> int | None:
    token = normalize_american_token(odds)
    return int(token) if token else None


def structured_leg_errors(raw_legs: Sequence[object], target: int) -> list[str]:
    """Field-level errors for a structured leg list, leg count within tolerance."""
    errors: list[str] = []
    if abs(len(raw_legs) - target) > LEG_COUNT_TOLERANCE:
        errors.append(f"legs length {len(raw_legs)} != expected {target}")
    for idx, raw in enumerate(raw_legs, start=1):
        if not isinstance(raw, dict):
            errors.append(f"leg {idx} missing object")
            continue
        for field in ("date", "game", "bet"):
            if not raw.get(field):
                errors.append(f"leg {idx} missing {field}")
        odds = raw.get("odds")
        if not odds or not STRICT_ODDS_RE.match(str(odds)):
            errors.append(f"leg {idx} invalid odds '{odds}'")
        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            errors.append(f"leg {idx} missing confidence")
    return errors


def check_structure(output: ModelOutput, target: int) -> tuple[RuleResult, int]:
    """Structured list passes on its own; otherwise the text leg count must be close."""
    text_count = count_text_legs(output.text)
    count_close = abs(text_count - target) <= LEG_COUNT_TOLERANCE
    if isinstance(output, StructuredOutput):
        errors = structured_leg_errors(output.raw_legs, target)
        if not errors or count_close:
            return RuleResult("structure", True), len(output.raw_legs)
        reason = "STRUCTURE: " + "; ".join(errors[:MAX_FEEDBACK_ITEMS])
        return RuleResult("structure", False, reason), len(output.raw_legs)
    if count_close:
        return RuleResult("structure", True), text_count
    reason = (
        f"STRUCTURE: found {text_count} legs, expected {target}; "
        "include the machine-readable leg block between the markers"
    )
    return RuleResult("structure", False, reason), text_count


def check_conflicts(legs: Sequence[Leg]) -> RuleResult:
    conflicts = find_conflicts(legs)
    if not conflicts:
        return RuleResult("conflicts", True)
    bullets = "\n".join(
        f'- {item.game}: "{item.bet1}" vs "{item.bet2}"' for item in conflicts[:MAX_FEEDBACK_ITEMS]
    )
    reason = (
        f"CONFLICTS DETECTED (fix these):\n{bullets}\n"
        "Rules: NO opposing sides in same game, NO same-team ML+Spread, NO duplicate exact bets."
    )
    return RuleResult("conflicts", False, reason)


def check_price_policy(legs: Sequence[Leg], policy: RiskPolicy) -> RuleResult:
    """Every leg must be at least as heavy a favorite as the tier allows."""
    limit = policy.heavy_favorite_max
    if limit is None:
        return RuleResult("price_policy", True)
    found: list[str] = []
    for leg in legs:
        price = _price(leg.odds)
        if price is None or price > limit:
            found.append(leg.odds or "?")
    if not found:
        return RuleResult("price_policy", True)
    reason = (
        f"LOW-RISK POLICY: {len(found)} leg(s) violated heavy-favorite rule "
        f"(found: {', '.join(found[:MAX_FEEDBACK_ITEMS])}). ACTION: Do NOT use ~-110 "
        "spreads/props. Convert to the same-side MONEYLINE or ATD with odds between -200 "
        "and -1000. Calibrate confidence to odds: (-110..-150 → 6-7/10), (-151..-200 → "
        "7-8/10), (-201..-400 → up to 8/10), (-401..-800 → 9/10). "
        f"Target combined {policy.target_range}."
    )
    return RuleResult("price_policy", False, reason)


def check_confidence_calibration(legs: Sequence[Leg], policy: RiskPolicy) -> RuleResult:
    """Stated confidence may not exceed what the leg's price supports."""
    if not policy.calibration_bands:
        return RuleResult("confidence_calibration", True)
    found: list[str] = []
    for leg in legs:
        if leg.confidence is None:
            continue
        price = _price(leg.odds)
        for min_confidence, max_price in policy.calibration_bands:
            if leg.confidence >= min_confidence:
                if price is None or price > max_price:
                    found.append(f"{leg.odds or '?'}@{leg.confidence:g}")
                break
    if not found:
        return RuleResult("confidence_calibration", True)
    reason = (
        f"CONFIDENCE MISMATCH: {len(found)} leg(s) had confidence too high for price "
        f"(found: {', '.join(found[:MAX_FEEDBACK_ITEMS])}). ACTION: Recalibrate confidence "
        "per odds bands or choose heavier favorites (ML/ATD). Do NOT justify picks solely "
        "by implied probability."
    )
    return RuleResult("confidence_calibration", False, reason)


def validate_output(output: ModelOutput, *, target_legs: int, policy: RiskPolicy) -> Verdict:
    """Run structure, conflict and tier policy rules in order and aggregate them."""
    structure, leg_count = check_structure(output, target_legs)
    legs = output_legs(output)
    results = [structure, check_conflicts(legs)]
    if policy.enforces_price_policy:
        results.append(check_price_policy(legs, policy))
        results.append(check_confidence_calibration(legs, policy))
    return Verdict(
        results=tuple(results),
        leg_count=leg_count,
        structured=isinstance(output, StructuredOutput),
    )
