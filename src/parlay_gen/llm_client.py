"""Budgeted OpenAI Responses API client for parlay and pick generation."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from parlay_gen.budget import current_month_utc, llm_budget_status, usage_path
from parlay_gen.errors import ProviderFetchError
from parlay_gen.settings import Settings
from parlay_gen.time_utils import utc_now_str

logger = logging.getLogger(__name__)

INPUT_RATE_PER_1M_USD = 0.15
OUTPUT_RATE_PER_1M_USD = 0.6
OPENAI_BASE_URL = "https://api.openai.com/v1"


class LLMClientError(ProviderFetchError):
    """Base error for model call failures."""


class MissingOpenAIKeyError(LLMClientError):
    """Raised when no OpenAI key is available."""


class LLMBudgetExceededError(LLMClientError):
    """Raised when the monthly LLM budget cap is exceeded."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model response carries no text."""


PostFn = Callable[[str, dict[str, str], dict[str, Any], float], dict[str, Any]]


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _extract_text(payload: dict[str, Any]) -> str:
    direct = payload.get("output_text")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()

    output = payload.get("output", [])
    if isinstance(output, list):
        pieces: list[str] = []
        for item in output:
            if not isinstance(item, dict):
                continue
            content = item.get("content", [])
            if not isinstance(content, list):
                continue
            for row in content:
                if not isinstance(row, dict):
                    continue
                text = row.get("text")
                if isinstance(text, str) and text.strip():
                    pieces.append(text.strip())
        if pieces:
            return "\n".join(pieces).strip()

    choices = payload.get("choices", [])
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message", {})
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str) and content.strip():
                    return content.strip()
    return ""


def _extract_usage(payload: dict[str, Any]) -> tuple[int, int]:
    usage = payload.get("usage", {})
    if not isinstance(usage, dict):
        return 0, 0
    input_tokens = _to_int(usage.get("input_tokens", usage.get("prompt_tokens", 0)))
    output_tokens = _to_int(usage.get("output_tokens", usage.get("completion_tokens", 0)))
    return input_tokens, output_tokens


def _estimate_cost_usd(input_tokens: int, output_tokens: int) -> float:
    input_cost = (input_tokens / 1_000_000.0) * INPUT_RATE_PER_1M_USD
    output_cost = (output_tokens / 1_000_000.0) * OUTPUT_RATE_PER_1M_USD
    return round(input_cost + output_cost, 6)


def _default_post(
    url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float
) -> dict[str, Any]:
    attempts = 3
    for attempt in range(1, attempts + 1):
        try:
            response = httpx.post(url, headers=headers, json=payload, timeout=timeout)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise LLMClientError("unexpected OpenAI response payload")
            return data
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in {429, 500, 502, 503, 504} and attempt < attempts:
                time.sleep(0.7 * attempt)
                continue
            detail = exc.response.text.strip()
            snippet = detail[-400:] if detail else ""
            raise LLMClientError(
                f"openai request failed: status={status} detail={snippet}"
            ) from exc
        except httpx.HTTPError as exc:
            retryable = isinstance(
                exc,
                (
                    httpx.ReadTimeout,
                    httpx.ConnectTimeout,
                    httpx.RemoteProtocolError,
                    httpx.ReadError,
                    httpx.ConnectError,
                ),
            )
            if retryable and attempt < attempts:
                time.sleep(0.7 * attempt)
                continue
            raise LLMClientError(f"openai request transport error: {exc}") from exc
        except ValueError as exc:
            raise LLMClientError("openai response is not JSON") from exc

    raise LLMClientError("openai request failed after retries")


def resolve_openai_api_key(settings: Settings) -> str:
    """Resolve key from the environment first, then settings."""
    env_key = os.environ.get("OPENAI_API_KEY", "").strip()
    if env_key:
        return env_key
    if settings.openai_api_key.strip():
        return settings.openai_api_key.strip()
    raise MissingOpenAIKeyError("missing OpenAI API key; set OPENAI_API_KEY")


class LLMClient:
    """Single prompt-in/text-out model calls with usage ledger and monthly cap."""

    def __init__(
        self,
        *,
        settings: Settings,
        data_root: Path,
        post_fn: PostFn | None = None,
    ) -> None:
        self.settings = settings
        self.data_root = data_root.resolve()
        self.post_fn = post_fn or _default_post
        self.cache_dir = self.data_root / "llm_cache"
        self.usage_dir = self.data_root / "llm_usage"
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.usage_dir.mkdir(parents=True, exist_ok=True)

    def _cache_key(self, *, task: str, model: str, prompt: str) -> str:
        serialized = json.dumps(
            {"task": task, "model": model, "prompt": prompt},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    def _append_usage(
        self,
        *,
        month: str,
        task: str,
        model: str,
        cache_key: str,
        cached: bool,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
    ) -> None:
        row = {
            "timestamp_utc": utc_now_str(),
            "task": task,
            "model": model,
            "cache_key": cache_key,
            "cached": cached,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": round(cost_usd, 6),
        }
        path = usage_path(self.usage_dir, month)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(row, sort_keys=True, ensure_ascii=True) + "\n")

    def complete(self, prompt: str, *, task: str, refresh: bool = True) -> dict[str, Any]:
        """Run one model call; a cached response is reused unless ``refresh`` is set."""
        model = self.settings.openai_model
        cache_key = self._cache_key(task=task, model=model, prompt=prompt)
        cache_path = self.cache_dir / f"{cache_key}.json"
        month = current_month_utc()

        if not refresh and cache_path.exists():
            cached_row = json.loads(cache_path.read_text(encoding="utf-8"))
            self._append_usage(
                month=month,
                task=task,
                model=model,
                cache_key=cache_key,
                cached=True,
                input_tokens=0,
                output_tokens=0,
                cost_usd=0.0,
            )
            return {
                "cache_key": cache_key,
                "cached": True,
                "text": str(cached_row.get("response_text", "")),
                "usage": cached_row.get("usage", {}),
            }

        budget = llm_budget_status(self.usage_dir, month, self.settings.llm_monthly_cap_usd)
        if budget["cap_reached"]:
            raise LLMBudgetExceededError(
                f"llm monthly cap reached: used={budget['used_usd']} cap={budget['cap_usd']}"
            )

        api_key = resolve_openai_api_key(self.settings)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        request_payload = {
            "model": model,
            "instructions": "You are an expert sports betting analyst. Follow all rules exactly.",
            "input": prompt,
            "max_output_tokens": self.settings.openai_max_output_tokens,
            "temperature": self.settings.openai_temperature,
        }
        started = time.perf_counter()
        raw = self.post_fn(
            f"{OPENAI_BASE_URL}/responses",
            headers,
            request_payload,
            max(20.0, float(self.settings.openai_timeout_s)),
        )
        text = _extract_text(raw)
        if not text:
            status = str(raw.get("status", "")).strip().lower()
            suffix = f" (status={status})" if status else ""
            raise LLMResponseFormatError(f"empty response text for task={task}{suffix}")

        input_tokens, output_tokens = _extract_usage(raw)
        cost_usd = _estimate_cost_usd(input_tokens, output_tokens)
        usage_row = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": cost_usd,
        }
        cache_path.write_text(
            json.dumps(
                {
                    "cache_key": cache_key,
                    "created_at_utc": utc_now_str(),
                    "task": task,
                    "model": model,
                    "response_text": text,
                    "usage": usage_row,
                },
                sort_keys=True,
                indent=2,
            )
            + "\n",
            encoding="utf-8",
        )
        self._append_usage(
            month=month,
            task=task,
            model=model,
            cache_key=cache_key,
            cached=False,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )
        logger.info(
            "model call task=%s chars=%s duration_ms=%s cost_usd=%s",
            task,
            len(text),
            int((time.perf_counter() - started) * 1000),
            cost_usd,
        )
        return {"cache_key": cache_key, "cached": False, "text": text, "usage": usage_row}
