"""
Model fallback with retry/backoff, as a small explicit state machine.

RetryState only decides what happens next (retry the same model after a
delay, move to the next model, or give up); the async driver below does the
waiting. Swapping the driver for a thread- or callback-based one needs no
change to the state machine.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from agents.generation.config import RetryConfig, get_config
from agents.generation.exceptions import (
    ConfigurationError,
    ProviderError,
    TerminalProviderError,
    TransientProviderError,
    classify_provider_error,
    get_retry_delay,
)
from setup_logging_optimized import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryPhase(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryState:
    """Attempt bookkeeping across an ordered model list."""
    models: Sequence[str]
    policy: RetryConfig
    model_index: int = 0
    attempt: int = 1
    phase: RetryPhase = RetryPhase.ATTEMPTING
    delay: float = 0.0
    last_error: Optional[ProviderError] = None
    history: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.models:
            self.phase = RetryPhase.FAILED
            self.last_error = TerminalProviderError("No models configured", status=500)

    @property
    def current_model(self) -> str:
        return self.models[self.model_index]

    @property
    def has_next_model(self) -> bool:
        return self.model_index + 1 < len(self.models)

    def succeed(self) -> None:
        self.phase = RetryPhase.SUCCEEDED

    def fail(self, error: Exception) -> RetryPhase:
        """Classify `error` and move to WAITING, ATTEMPTING (next model) or FAILED."""
        classified = classify_provider_error(error)
        self.last_error = classified
        self.history.append(f"{self.current_model}#{self.attempt}: {type(classified).__name__}")

        if isinstance(classified, TransientProviderError) and self.attempt < self.policy.max_attempts_per_model:
            self.delay = get_retry_delay(
                self.attempt,
                base_delay=self.policy.base_delay,
                max_delay=self.policy.max_delay,
                max_jitter=self.policy.max_jitter,
            )
            self.attempt += 1
            self.phase = RetryPhase.WAITING
            return self.phase

        if isinstance(classified, TerminalProviderError) and classified.aborts_all_models:
            self.phase = RetryPhase.FAILED
            return self.phase

        if self.has_next_model:
            self.model_index += 1
            self.attempt = 1
            self.delay = 0.0
            self.phase = RetryPhase.ATTEMPTING
            return self.phase

        self.phase = RetryPhase.FAILED
        return self.phase

    def resume(self) -> None:
        """WAITING -> ATTEMPTING once the delay has elapsed."""
        if self.phase == RetryPhase.WAITING:
            self.phase = RetryPhase.ATTEMPTING


RetryCallback = Callable[[RetryState], None]


async def run_with_model_fallback(
    operation: Callable[[str], Awaitable[T]],
    models: Sequence[str],
    policy: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """Call `operation(model)` over `models` until one succeeds.

    Raises the classified last error (a ProviderError subclass) when every
    model is exhausted, or a ContentBlockedError straight away.
    """
    policy = policy or get_config().retry
    state = RetryState(models=list(models), policy=policy)

    while state.phase != RetryPhase.FAILED:
        model = state.current_model
        try:
            result = await operation(model)
        except (asyncio.CancelledError, ConfigurationError):
            raise
        except Exception as e:
            classified = classify_provider_error(e)
            if not isinstance(classified, (TransientProviderError, TerminalProviderError)):
                # Blocked content is a real answer; trying another model won't change it
                raise classified
            phase = state.fail(classified)
            if phase == RetryPhase.WAITING:
                logger.warning(
                    f"{model} failed with a transient error (attempt {state.attempt - 1}/"
                    f"{policy.max_attempts_per_model}); retrying in {state.delay:.2f}s"
                )
                if on_retry:
                    on_retry(state)
                await sleep(state.delay)
                state.resume()
            elif phase == RetryPhase.ATTEMPTING:
                logger.warning(f"{model} failed ({classified.message[:120]}); falling back to {state.current_model}")
                if on_retry:
                    on_retry(state)
            continue
        state.succeed()
        if state.model_index or state.attempt > 1:
            logger.info(f"Succeeded with {model} after {len(state.history)} failed attempts")
        return result

    logger.error(f"All models failed: {', '.join(state.history) or 'none attempted'}")
    raise state.last_error


async def run_with_deadline(
    operation: Callable[[str], Awaitable[T]],
    models: Sequence[str],
    policy: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """run_with_model_fallback bounded by the overall provider deadline."""
    policy = policy or get_config().retry
    try:
        return await asyncio.wait_for(
            run_with_model_fallback(operation, models, policy, sleep=sleep, on_retry=on_retry),
            timeout=policy.deadline_seconds,
        )
    except asyncio.TimeoutError as e:
        raise TransientProviderError(
            f"Provider did not answer within {policy.deadline_seconds:.0f}s",
            status=504,
            cause=e,
        )
