"""End-to-end parlay generation: odds, research, filter, analysis, post-processing."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from parlay_gen.acquisition import AcquisitionRequest, AcquisitionResult, OddsAcquirer
from parlay_gen.cache import TTLCache
from parlay_gen.errors import (
    InsufficientDataError,
    InvalidInputError,
    InvalidOddsError,
    ProviderFetchError,
)
from parlay_gen.generation import GenerateFn, GenerationLoop, GenerationOutcome
from parlay_gen.llm_client import LLMClient
from parlay_gen.market_filter import filter_researched
from parlay_gen.model_output import StructuredOutput
from parlay_gen.models import Leg, NoOpportunities, ParlayResult
from parlay_gen.odds_client import OddsAPIClient
from parlay_gen.odds_math import ParlayOdds, combine_legs
from parlay_gen.odds_source import LiveOddsSource
from parlay_gen.postprocess import finalize, select_lock_legs
from parlay_gen.prompting import PromptRequest
from parlay_gen.research import ResearchEnricher
from parlay_gen.risk import risk_policy
from parlay_gen.search_client import SearchClient
from parlay_gen.settings import Settings
from parlay_gen.store import NewsCacheStore, OddsRowStore

logger = logging.getLogger(__name__)

NO_DATA_RETRY_HINT = (
    "Try a wider date range, another sport or bookmaker, or enable live odds fetching."
)


@dataclass(frozen=True)
class ParlayRequest:
    sports: tuple[str, ...]
    bet_types: tuple[str, ...]
    num_legs: int
    risk_level: str = "Medium"
    date_range_days: int = 1
    bookmaker: str = "DraftKings"
    fast_mode: bool = False

    def acquisition_request(self, num_legs: int | None = None) -> AcquisitionRequest:
        return AcquisitionRequest(
            sports=self.sports,
            bet_types=self.bet_types,
            num_legs=self.num_legs if num_legs is None else num_legs,
            date_range_days=self.date_range_days,
            bookmaker=self.bookmaker,
            fast_mode=self.fast_mode,
        )


def check_request(request: ParlayRequest) -> None:
    if not request.sports:
        raise InvalidInputError("at least one sport is required")
    if request.num_legs < 1:
        raise InvalidInputError(f"num_legs must be positive, got {request.num_legs}")
    if request.date_range_days < 1:
        raise InvalidInputError(f"date_range_days must be positive, got {request.date_range_days}")


def _ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def acquisition_metadata(acquisition: AcquisitionResult) -> dict[str, Any]:
    return {
        "odds_source": acquisition.source,
        "fallback_used": acquisition.fallback_used,
        "fallback_reason": acquisition.fallback_reason,
        "market_expanded": acquisition.market_expanded,
        "expanded_bet_types": acquisition.expanded_bet_types,
        "degraded_freshness": acquisition.degraded_freshness,
        "data_quality": acquisition.data_quality,
        "warning": acquisition.warning,
    }


def safe_combined(legs: list[Leg]) -> ParlayOdds | None:
    prices = [leg.odds for leg in legs if leg.odds]
    if not prices:
        return None
    try:
        return combine_legs(prices)
    except (InvalidInputError, InvalidOddsError) as exc:
        logger.warning("combined odds unavailable: %s", exc)
        return None


class ParlayPipeline:
    """Orchestrates one parlay request across acquisition, research and generation."""

    def __init__(
        self,
        *,
        acquirer: OddsAcquirer,
        enricher: ResearchEnricher,
        generate_fn: GenerateFn,
    ) -> None:
        self.acquirer = acquirer
        self.enricher = enricher
        self.generate_fn = generate_fn

    def generate(self, request: ParlayRequest) -> ParlayResult | NoOpportunities:
        check_request(request)
        try:
            return self._generate(request)
        except InsufficientDataError as exc:
            logger.warning("no opportunities: %s", exc)
            return NoOpportunities(message=str(exc), retry_hint=exc.retry_hint)

    def _generate(self, request: ParlayRequest) -> ParlayResult:
        started = time.perf_counter()
        timings: dict[str, int] = {}
        policy = risk_policy(request.risk_level)

        phase = time.perf_counter()
        acquisition = self.acquirer.acquire(request.acquisition_request())
        timings["odds_ms"] = _ms(phase)
        if acquisition.insufficient_data:
            raise InsufficientDataError(
                acquisition.warning or "No events available", retry_hint=NO_DATA_RETRY_HINT
            )

        phase = time.perf_counter()
        researched = self.enricher.enrich(
            acquisition.events,
            num_legs=request.num_legs,
            risk_level=policy.name,
            fast_mode=request.fast_mode,
        )
        timings["research_ms"] = _ms(phase)
        filtered = filter_researched(researched, acquisition.bet_types, policy.name)

        phase = time.perf_counter()
        prompt_request = PromptRequest(
            sports=request.sports,
            bet_types=acquisition.bet_types,
            num_legs=request.num_legs,
            policy=policy,
            date_range_days=request.date_range_days,
        )
        outcome = GenerationLoop(self.generate_fn).run(prompt_request, filtered)
        timings["analysis_ms"] = _ms(phase)
        if outcome.attempt is None:
            raise ProviderFetchError(f"model call failed: {outcome.error}")

        phase = time.perf_counter()
        attempt = outcome.attempt
        structured = (
            list(attempt.output.legs) if isinstance(attempt.output, StructuredOutput) else []
        )
        content = finalize(
            attempt.raw_output,
            structured_legs=structured,
            market_expanded=acquisition.market_expanded,
            event_count=len(acquisition.events),
            num_legs=request.num_legs,
            expanded_bet_types=acquisition.expanded_bet_types,
        )
        legs = list(attempt.legs)
        combined = safe_combined(legs)
        timings["post_processing_ms"] = _ms(phase)
        timings["total_ms"] = _ms(started)

        metadata = acquisition_metadata(acquisition)
        metadata.update(self._generation_metadata(outcome))
        metadata.update(
            {
                "researched_events": sum(1 for item in researched if item.has_research),
                "total_events": len(researched),
                "risk_level": policy.name,
                "timings": timings,
            }
        )
        logger.info(
            "parlay ready: legs=%s attempts=%s validated=%s source=%s total_ms=%s",
            len(legs),
            outcome.attempts,
            outcome.fully_validated,
            acquisition.source,
            timings["total_ms"],
        )
        return ParlayResult(
            content=content,
            legs=tuple(legs),
            lock_legs=tuple(select_lock_legs(structured or legs)),
            combined=combined,
            metadata=metadata,
        )

    @staticmethod
    def _generation_metadata(outcome: GenerationOutcome) -> dict[str, Any]:
        row: dict[str, Any] = {
            "attempts": outcome.attempts,
            "fully_validated": outcome.fully_validated,
        }
        if outcome.failure is not None:
            row["validation_failure"] = str(outcome.failure)
        if outcome.error is not None:
            row["model_error"] = outcome.error
        return row


@dataclass
class Components:
    """Long-lived collaborators shared by the parlay and pick flows."""

    settings: Settings
    acquirer: OddsAcquirer
    enricher: ResearchEnricher
    llm: LLMClient
    odds_client: OddsAPIClient | None = None

    def generate_fn(self, task: str) -> GenerateFn:
        refresh = not self.settings.llm_cache_enabled

        def run(prompt: str) -> str:
            return str(self.llm.complete(prompt, task=task, refresh=refresh)["text"])

        return run

    def close(self) -> None:
        if self.odds_client is not None:
            self.odds_client.close()


def build_components(settings: Settings, *, fast_mode: bool = False) -> Components:
    data_root = Path(settings.data_dir)
    store = OddsRowStore(data_root)
    odds_client: OddsAPIClient | None = None
    source: LiveOddsSource | None = None
    if settings.odds_allow_live_fetch:
        odds_client = OddsAPIClient(settings, fast_mode=fast_mode)
        source = LiveOddsSource(
            odds_client, cache=TTLCache(ttl_seconds=settings.odds_request_cache_ttl_s)
        )
    acquirer = OddsAcquirer(settings=settings, source=source, store=store)
    enricher = ResearchEnricher(
        settings=settings,
        search=SearchClient(settings),
        cache=TTLCache(ttl_seconds=settings.research_cache_ttl_s),
        news_store=NewsCacheStore(data_root),
    )
    llm = LLMClient(settings=settings, data_root=data_root)
    return Components(
        settings=settings,
        acquirer=acquirer,
        enricher=enricher,
        llm=llm,
        odds_client=odds_client,
    )


def build_pipeline(components: Components) -> ParlayPipeline:
    return ParlayPipeline(
        acquirer=components.acquirer,
        enricher=components.enricher,
        generate_fn=components.generate_fn("parlay"),
    )
