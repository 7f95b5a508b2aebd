from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from parlay_gen.budget import current_month_utc, read_llm_usage, usage_path
from parlay_gen.llm_client import (
    LLMBudgetExceededError,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    MissingOpenAIKeyError,
    _default_post,
    _extract_text,
    resolve_openai_api_key,
)
from parlay_gen.settings import Settings


class FakePost:
    def __init__(self, response: dict[str, Any]) -> None:
        self.response = response
        self.calls: list[tuple[str, dict[str, str], dict[str, Any], float]] = []

    def __call__(
        self, url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float
    ) -> dict[str, Any]:
        self.calls.append((url, headers, payload, timeout))
        return self.response


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("PARLAY_GEN_OPENAI_API_KEY", raising=False)


def _client(tmp_path: Path, post: FakePost, **overrides: Any) -> LLMClient:
    values: dict[str, Any] = {"openai_api_key": "sk-test"}
    values.update(overrides)
    settings = Settings(_env_file=None, **values)
    return LLMClient(settings=settings, data_root=tmp_path, post_fn=post)


def test_complete_posts_prompt_and_records_usage(tmp_path: Path) -> None:
    post = FakePost(
        {"output_text": " parlay text ", "usage": {"input_tokens": 1000, "output_tokens": 500}}
    )
    client = _client(tmp_path, post)

    result = client.complete("prompt body", task="parlay")

    assert result["text"] == "parlay text"
    assert result["cached"] is False
    assert result["usage"]["cost_usd"] == pytest.approx(0.00045)
    url, headers, payload, timeout = post.calls[0]
    assert url == "https://api.openai.com/v1/responses"
    assert headers["Authorization"] == "Bearer sk-test"
    assert payload["input"] == "prompt body"
    assert payload["model"] == "gpt-4o-mini"
    assert timeout == 60.0
    usage = read_llm_usage(tmp_path / "llm_usage", current_month_utc())
    assert usage["request_count"] == 1
    assert usage["total_input_tokens"] == 1000


def test_cached_response_reused_without_refresh(tmp_path: Path) -> None:
    post = FakePost({"output_text": "first"})
    client = _client(tmp_path, post)

    client.complete("same prompt", task="parlay")
    again = client.complete("same prompt", task="parlay", refresh=False)

    assert again["cached"] is True
    assert again["text"] == "first"
    assert len(post.calls) == 1
    rows = usage_path(tmp_path / "llm_usage", current_month_utc()).read_text().splitlines()
    assert [json.loads(row)["cached"] for row in rows] == [False, True]


def test_refresh_bypasses_cache(tmp_path: Path) -> None:
    post = FakePost({"output_text": "text"})
    client = _client(tmp_path, post)

    client.complete("p", task="parlay")
    client.complete("p", task="parlay")

    assert len(post.calls) == 2


def test_budget_cap_blocks_calls(tmp_path: Path) -> None:
    usage_dir = tmp_path / "llm_usage"
    usage_dir.mkdir()
    usage_path(usage_dir, current_month_utc()).write_text(
        json.dumps({"cost_usd": 5.5, "input_tokens": 1, "output_tokens": 1}) + "\n"
    )
    post = FakePost({"output_text": "never"})

    with pytest.raises(LLMBudgetExceededError, match="llm monthly cap reached"):
        _client(tmp_path, post).complete("p", task="parlay")
    assert post.calls == []


def test_missing_key_raises(tmp_path: Path) -> None:
    with pytest.raises(MissingOpenAIKeyError):
        _client(tmp_path, FakePost({"output_text": "x"}), openai_api_key="").complete(
            "p", task="parlay"
        )


def test_environment_key_wins(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    assert resolve_openai_api_key(Settings(_env_file=None, openai_api_key="sk-file")) == "sk-env"


def test_empty_text_is_a_format_error(tmp_path: Path) -> None:
    client = _client(tmp_path, FakePost({"status": "incomplete", "output": []}))

    with pytest.raises(LLMResponseFormatError, match="task=picks \\(status=incomplete\\)"):
        client.complete("p", task="picks")


def test_extract_text_variants() -> None:
    assert _extract_text({"output": [{"content": [{"text": "a"}, {"text": "b"}]}]}) == "a\nb"
    assert _extract_text({"choices": [{"message": {"content": " c "}}]}) == "c"
    assert _extract_text({}) == ""


def test_default_post_retries_then_wraps_status(monkeypatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, **kwargs: Any) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503, text="overloaded", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    monkeypatch.setattr("parlay_gen.llm_client.time.sleep", lambda _: None)

    with pytest.raises(LLMClientError, match="status=503 detail=overloaded"):
        _default_post("https://api.openai.com/v1/responses", {}, {}, 20.0)
    assert calls["count"] == 3


def test_default_post_wraps_transport_errors(monkeypatch) -> None:
    def fake_post(url: str, **kwargs: Any) -> httpx.Response:
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(httpx, "post", fake_post)
    monkeypatch.setattr("parlay_gen.llm_client.time.sleep", lambda _: None)

    with pytest.raises(LLMClientError, match="transport error: refused"):
        _default_post("https://api.openai.com/v1/responses", {}, {}, 20.0)


def test_default_post_wraps_non_json_body(monkeypatch) -> None:
    def fake_post(url: str, **kwargs: Any) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)

    with pytest.raises(LLMClientError, match="not JSON"):
        _default_post("https://api.openai.com/v1/responses", {}, {}, 20.0)
