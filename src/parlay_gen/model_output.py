"""Parsing of untrusted model output into structured or unstructured variants."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from parlay_gen.models import Leg
from parlay_gen.odds_math import normalize_american_token
from parlay_gen.util.parsing import safe_float

BEGIN_MARKER = "===BEGIN_PARLAY_JSON==="
END_MARKER = "===END_PARLAY_JSON==="

LEG_START_RE = re.compile(r"^\s*(\d+)\.\s*📅")
ODDS_LINE_RE = re.compile(r"Odds:\s*\(?([+-]?\d{2,5}|EVEN|EV|PK|PICK)\)?", re.IGNORECASE)
PAREN_ODDS_RE = re.compile(r"\(([+-]?\d{2,5}|EVEN|EV|PK|PICK)\)", re.IGNORECASE)
CONFIDENCE_RE = re.compile(r"Confidence:\s*(\d+(?:\.\d+)?)\s*/\s*10", re.IGNORECASE)
DATE_RE = re.compile(r"📅\s*(?:DATE:)?\s*(.+)$")


@dataclass(frozen=True)
class StructuredOutput:
    """Output carrying a parsable leg list between the sentinel markers."""

    text: str
    legs: tuple[Leg, ...]
    raw_legs: tuple[Any, ...]
    lock_legs: tuple[Leg, ...] = ()
    title: str = ""


@dataclass(frozen=True)
class UnstructuredOutput:
    """Free text only; downstream checks fall back to text heuristics."""

    text: str
    reason: str


ModelOutput = StructuredOutput | UnstructuredOutput


@dataclass(frozen=True)
class TextLeg:
    """A leg recovered from rendered text by line heuristics."""

    index: int
    lines: tuple[str, ...]
    date: str = ""
    game: str = ""
    bet: str = ""
    odds: str | None = None
    confidence: float | None = None

    def as_leg(self) -> Leg:
        return Leg(
            date=self.date,
            game=self.game,
            bet=self.bet,
            odds=self.odds or "",
            confidence=self.confidence,
        )


def extract_structured_block(text: str) -> str | None:
    """JSON text between the sentinel markers, or None when the block is incomplete."""
    start = text.find(BEGIN_MARKER)
    if start < 0:
        return None
    end = text.find(END_MARKER, start + len(BEGIN_MARKER))
    if end < 0:
        return None
    block = text[start + len(BEGIN_MARKER) : end].strip()
    if block.startswith("```"):
        block = re.sub(r"^```[a-zA-Z]*\s*", "", block)
        block = re.sub(r"\s*```$", "", block)
    return block


def _leg_from_raw(raw: Any) -> Leg | None:
    if not isinstance(raw, dict):
        return None
    odds_raw = str(raw.get("odds", "")).strip()
    citations = raw.get("citations", [])
    return Leg(
        date=str(raw.get("date", "")).strip(),
        game=str(raw.get("game", "")).strip(),
        bet=str(raw.get("bet", "")).strip(),
        odds=normalize_american_token(odds_raw) or odds_raw,
        confidence=_confidence(raw.get("confidence")),
        rationale=str(raw.get("reasoning", raw.get("rationale", "")) or "").strip(),
        citations=tuple(
            int(item) for item in citations if isinstance(item, int) and not isinstance(item, bool)
        )
        if isinstance(citations, list)
        else (),
    )


def _confidence(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def parse_model_output(text: str) -> ModelOutput:
    """Classify raw model text as structured (valid leg list) or unstructured."""
    block = extract_structured_block(text)
    if block is None:
        return UnstructuredOutput(text=text, reason="no structured leg block found")
    try:
        payload = json.loads(block)
    except json.JSONDecodeError as exc:
        return UnstructuredOutput(text=text, reason=f"structured block is not valid JSON: {exc}")
    if not isinstance(payload, dict):
        return UnstructuredOutput(text=text, reason="structured block is not an object")
    parlay = payload.get("parlay")
    raw_legs = parlay.get("legs") if isinstance(parlay, dict) else None
    if not isinstance(raw_legs, list):
        return UnstructuredOutput(text=text, reason="structured block has no leg list")
    legs = tuple(leg for leg in (_leg_from_raw(raw) for raw in raw_legs) if leg is not None)
    lock = payload.get("lockParlay")
    raw_lock = lock.get("legs") if isinstance(lock, dict) else None
    lock_legs = (
        tuple(leg for leg in (_leg_from_raw(raw) for raw in raw_lock) if leg is not None)
        if isinstance(raw_lock, list)
        else ()
    )
    title = str(parlay.get("title", "")).strip() if isinstance(parlay, dict) else ""
    return StructuredOutput(
        text=text,
        legs=legs,
        raw_legs=tuple(raw_legs),
        lock_legs=lock_legs,
        title=title,
    )


def count_text_legs(text: str) -> int:
    """Best-effort leg count from numbered ``N. 📅`` markers."""
    return sum(1 for line in text.split("\n") if LEG_START_RE.match(line))


def odds_from_line(line: str) -> str | None:
    match = ODDS_LINE_RE.search(line)
    return normalize_american_token(match.group(1)) if match else None


def odds_from_bet_line(line: str) -> str | None:
    """Last parenthesized price on a ``Bet:`` line, e.g. ``Over 47.5 (-110)``."""
    matches = PAREN_ODDS_RE.findall(line)
    return normalize_american_token(matches[-1]) if matches else None


def parse_text_legs(text: str) -> list[TextLeg]:
    """Recover numbered legs and their Game/Bet/Odds/Confidence lines from text."""
    legs: list[TextLeg] = []
    current: dict[str, Any] | None = None

    def flush() -> None:
        if current is not None:
            legs.append(
                TextLeg(
                    index=current["index"],
                    lines=tuple(current["lines"]),
                    date=current["date"],
                    game=current["game"],
                    bet=current["bet"],
                    odds=current["odds"],
                    confidence=current["confidence"],
                )
            )

    for line in text.split("\n"):
        start = LEG_START_RE.match(line)
        if start:
            flush()
            date_match = DATE_RE.search(line)
            current = {
                "index": int(start.group(1)),
                "lines": [line.strip()],
                "date": date_match.group(1).strip() if date_match else "",
                "game": "",
                "bet": "",
                "odds": None,
                "confidence": None,
            }
            continue
        if current is None:
            continue
        stripped = line.strip()
        if not stripped or stripped.startswith("**") or stripped == "---":
            flush()
            current = None
            continue
        current["lines"].append(stripped)
        if stripped.startswith("Game:"):
            current["game"] = stripped[len("Game:") :].strip()
        elif stripped.startswith("Bet:"):
            current["bet"] = stripped[len("Bet:") :].strip()
            if current["odds"] is None:
                current["odds"] = odds_from_bet_line(stripped)
        elif stripped.startswith("Odds:"):
            parsed = odds_from_line(stripped)
            if parsed is not None:
                current["odds"] = parsed
        confidence = CONFIDENCE_RE.search(stripped)
        if confidence:
            current["confidence"] = safe_float(confidence.group(1))
    flush()
    return legs


def output_legs(output: ModelOutput) -> list[Leg]:
    """Authoritative legs: the structured list when present, else text heuristics."""
    if isinstance(output, StructuredOutput) and output.legs:
        return list(output.legs)
    return [leg.as_leg() for leg in parse_text_legs(output.text)]
