from pathlib import Path

from parlay_gen.settings import Settings

ENV_KEYS = (
    "ODDS_API_KEY",
    "SERPER_API_KEY",
    "OPENAI_API_KEY",
    "ODDS_ALLOW_LIVE_FETCH",
    "PARLAY_GEN_DATA_DIR",
    "PARLAY_GEN_RESEARCH_TOP_K",
    "PARLAY_GEN_OPENAI_MODEL",
)


def _clear(monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults(monkeypatch) -> None:
    _clear(monkeypatch)
    settings = Settings(_env_file=None)

    assert settings.odds_api_key == ""
    assert settings.odds_allow_live_fetch is False
    assert settings.odds_freshness_hours == 24.0
    assert settings.research_top_k == 25
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.llm_cache_enabled is False


def test_provider_keys_read_from_plain_env_names(monkeypatch) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv("ODDS_API_KEY", "odds-123")
    monkeypatch.setenv("SERPER_API_KEY", "serper-456")
    monkeypatch.setenv("ODDS_ALLOW_LIVE_FETCH", "true")

    settings = Settings(_env_file=None)

    assert settings.odds_api_key == "odds-123"
    assert settings.serper_api_key == "serper-456"
    assert settings.odds_allow_live_fetch is True


def test_prefixed_env_overrides(monkeypatch) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv("PARLAY_GEN_DATA_DIR", "/tmp/parlay")
    monkeypatch.setenv("PARLAY_GEN_RESEARCH_TOP_K", "5")

    settings = Settings(_env_file=None)

    assert settings.data_dir == "/tmp/parlay"
    assert settings.research_top_k == 5


def test_env_file_is_loaded(monkeypatch, tmp_path: Path) -> None:
    _clear(monkeypatch)
    env_file = tmp_path / ".env"
    env_file.write_text("ODDS_API_KEY=from-file\nPARLAY_GEN_OPENAI_MODEL=gpt-4o\n")

    settings = Settings(_env_file=env_file)

    assert settings.odds_api_key == "from-file"
    assert settings.openai_model == "gpt-4o"
