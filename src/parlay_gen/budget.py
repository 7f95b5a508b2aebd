"""Monthly LLM spend summaries from the usage ledger."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from parlay_gen.util.parsing import safe_float, safe_int


def current_month_utc() -> str:
    """Return current UTC month as YYYY-MM."""
    return datetime.now(UTC).strftime("%Y-%m")


def _load_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    rows: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        item = json.loads(line)
        if isinstance(item, dict):
            rows.append(item)
    return rows


def usage_path(usage_dir: Path, month: str) -> Path:
    return usage_dir / f"usage-{month}.jsonl"


def read_llm_usage(usage_dir: Path, month: str) -> dict[str, Any]:
    """Summarize LLM usage for one month from the usage ledger."""
    path = usage_path(usage_dir, month)
    rows = _load_jsonl(path)
    total_cost_usd = 0.0
    total_input_tokens = 0
    total_output_tokens = 0
    for row in rows:
        total_cost_usd += safe_float(row.get("cost_usd")) or 0.0
        total_input_tokens += safe_int(row.get("input_tokens")) or 0
        total_output_tokens += safe_int(row.get("output_tokens")) or 0
    return {
        "month": month,
        "path": str(path),
        "request_count": len(rows),
        "total_cost_usd": round(total_cost_usd, 6),
        "total_input_tokens": total_input_tokens,
        "total_output_tokens": total_output_tokens,
    }


def llm_budget_status(usage_dir: Path, month: str, cap_usd: float) -> dict[str, Any]:
    """Build LLM budget status for the month."""
    usage = read_llm_usage(usage_dir, month)
    used = float(usage["total_cost_usd"])
    cap = max(0.0, cap_usd)
    return {
        "month": month,
        "used_usd": round(used, 6),
        "cap_usd": round(cap, 6),
        "remaining_usd": round(max(0.0, cap - used), 6),
        "cap_reached": used >= cap,
        "request_count": usage["request_count"],
    }
