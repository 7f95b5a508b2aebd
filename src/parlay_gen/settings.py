"""Application settings for parlay-gen."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for provider access, caching and generation."""

    model_config = SettingsConfigDict(
        env_prefix="PARLAY_GEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    odds_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("ODDS_API_KEY", "PARLAY_GEN_ODDS_API_KEY"),
    )
    odds_api_base_url: str = "https://api.the-odds-api.com/v4"
    odds_api_timeout_s: float = 10.0
    odds_api_fast_timeout_s: float = 5.0
    odds_allow_live_fetch: bool = Field(
        default=False,
        validation_alias=AliasChoices("ODDS_ALLOW_LIVE_FETCH", "PARLAY_GEN_ODDS_ALLOW_LIVE_FETCH"),
    )
    odds_freshness_hours: float = 24.0
    odds_request_cache_ttl_s: float = 300.0
    odds_prop_workers: int = 3
    odds_prop_requests_per_minute: int = 120
    serper_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("SERPER_API_KEY", "PARLAY_GEN_SERPER_API_KEY"),
    )
    serper_base_url: str = "https://google.serper.dev"
    serper_timeout_s: float = 8.0
    serper_fast_timeout_s: float = 4.0
    research_cache_ttl_s: float = 1800.0
    research_top_k: int = 25
    research_batch_size: int = 10
    research_rate_warn_per_s: int = 250
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "PARLAY_GEN_OPENAI_API_KEY"),
    )
    openai_model: str = "gpt-4o-mini"
    openai_timeout_s: float = 60.0
    openai_temperature: float = 0.3
    openai_max_output_tokens: int = 2000
    llm_monthly_cap_usd: float = 5.0
    llm_cache_enabled: bool = False
    data_dir: str = "data/parlay_gen"
