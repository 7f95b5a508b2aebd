"""Bounded generate-validate-retry loop."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from parlay_gen.errors import ProviderFetchError, ValidationExhausted
from parlay_gen.model_output import ModelOutput, output_legs, parse_model_output
from parlay_gen.models import Leg, ResearchedEvent
from parlay_gen.prompting import PromptRequest, build_prompt
from parlay_gen.validation import Verdict, validate_output

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], str]


class GenerationState(str, Enum):
    BUILD_PROMPT = "build_prompt"
    INVOKE_MODEL = "invoke_model"
    VALIDATE = "validate"
    ACCEPT = "accept"
    RETRY = "retry"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class GenerationAttempt:
    number: int
    prompt: str
    raw_output: str
    output: ModelOutput
    legs: tuple[Leg, ...]
    verdict: Verdict


@dataclass(frozen=True)
class GenerationOutcome:
    """Final attempt of a run, or the model error that ended it."""

    attempt: GenerationAttempt | None
    attempts: int
    fully_validated: bool
    failure: ValidationExhausted | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.attempt is not None


class GenerationLoop:
    """Drive BUILD_PROMPT -> INVOKE_MODEL -> VALIDATE until accepted or out of attempts.

    ``generate_fn`` receives one prompt and returns raw model text. Attempts run
    strictly one after another because each prompt depends on the last verdict.
    """

    def __init__(self, generate_fn: GenerateFn) -> None:
        self.generate_fn = generate_fn
        self.transitions: list[GenerationState] = []

    def _enter(self, state: GenerationState) -> None:
        self.transitions.append(state)
        logger.debug("generation state -> %s", state.value)

    def run(
        self, request: PromptRequest, events: Sequence[ResearchedEvent]
    ) -> GenerationOutcome:
        policy = request.policy
        max_attempts = max(1, policy.max_attempts)
        feedback = ""
        last: GenerationAttempt | None = None
        self.transitions = []

        for number in range(1, max_attempts + 1):
            self._enter(GenerationState.BUILD_PROMPT)
            prompt = build_prompt(request, events, attempt=number, feedback=feedback)

            self._enter(GenerationState.INVOKE_MODEL)
            try:
                raw = self.generate_fn(prompt)
            except ProviderFetchError as exc:
                logger.error("model call failed on attempt %s: %s", number, exc)
                return GenerationOutcome(
                    attempt=last,
                    attempts=number,
                    fully_validated=False,
                    error=str(exc),
                )

            self._enter(GenerationState.VALIDATE)
            output = parse_model_output(raw)
            verdict = validate_output(output, target_legs=request.num_legs, policy=policy)
            last = GenerationAttempt(
                number=number,
                prompt=prompt,
                raw_output=raw,
                output=output,
                legs=tuple(output_legs(output)),
                verdict=verdict,
            )
            if verdict.accepted:
                self._enter(GenerationState.ACCEPT)
                logger.info("attempt %s accepted with %s legs", number, verdict.leg_count)
                return GenerationOutcome(attempt=last, attempts=number, fully_validated=True)

            feedback = verdict.feedback()
            failed = ", ".join(result.name for result in verdict.failures())
            if number < max_attempts:
                self._enter(GenerationState.RETRY)
                logger.info("attempt %s failed %s; retrying", number, failed)

        self._enter(GenerationState.EXHAUSTED)
        failure = ValidationExhausted(
            f"no clean attempt after {max_attempts} tries; last failures: {feedback}"
        )
        logger.warning("%s", failure)
        return GenerationOutcome(
            attempt=last,
            attempts=max_attempts,
            fully_validated=False,
            failure=failure,
        )
