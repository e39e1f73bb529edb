"""
Tests for provider error classification and the model fallback state machine.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from agents.generation.config import RetryConfig
from agents.generation.exceptions import (
    AssetResolutionError,
    ContentBlockedError,
    MissingConfigError,
    ProviderResponseError,
    QuotaExceededError,
    TerminalProviderError,
    TransientProviderError,
    classify_provider_error,
    describe_error,
    get_retry_delay,
    is_retryable,
)
from agents.generation.retry import RetryPhase, RetryState, run_with_deadline, run_with_model_fallback


class SdkError(Exception):
    """Stand-in for an SDK exception carrying an HTTP status."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class TestClassification:
    """Mapping arbitrary errors onto the provider taxonomy."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_statuses_are_transient(self, status):
        assert isinstance(classify_provider_error(SdkError("boom", status)), TransientProviderError)

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_other_statuses_are_terminal(self, status):
        classified = classify_provider_error(SdkError("nope", status))
        assert isinstance(classified, TerminalProviderError)
        assert classified.status == status

    def test_json_error_body_is_unwrapped(self):
        body = json.dumps({'error': {'code': 429, 'message': 'Resource exhausted', 'status': 'RESOURCE_EXHAUSTED'}})
        classified = classify_provider_error(Exception(body))
        assert isinstance(classified, TransientProviderError)
        assert classified.is_rate_limit
        assert classified.message == 'Resource exhausted'

    def test_overload_message_is_transient(self):
        assert is_retryable(Exception("The model is overloaded. Please try again later."))

    def test_unknown_error_is_terminal_500(self):
        classified = classify_provider_error(ValueError("bad"))
        assert isinstance(classified, TerminalProviderError)
        assert classified.status == 500

    def test_credential_errors_abort_all_models(self):
        assert classify_provider_error(SdkError("denied", 403)).aborts_all_models
        assert not classify_provider_error(SdkError("bad request", 400)).aborts_all_models

    def test_retry_delay_doubles_up_to_cap(self):
        delays = [get_retry_delay(n, max_jitter=0.0) for n in range(1, 5)]
        assert delays == [0.8, 1.6, 3.2, 3.2]

    def test_retry_delay_jitter_is_bounded(self):
        for _ in range(20):
            assert 0.8 <= get_retry_delay(1) <= 0.8 + 0.35


class TestDescribeError:
    """User-facing messages never leak provider text."""

    def test_quota_messages(self):
        assert "5 generations" in describe_error(QuotaExceededError('generations', 5))
        assert "20 images" in describe_error(QuotaExceededError('images', 20))

    def test_provider_messages(self):
        assert "heavy load" in describe_error(TransientProviderError("upstream text", status=503))
        assert "quota" in describe_error(TransientProviderError("upstream text", status=429))
        assert "billing" in describe_error(TerminalProviderError("upstream text", status=401))
        assert "unusable" in describe_error(ProviderResponseError("upstream text"))
        assert "safety" in describe_error(ContentBlockedError("SAFETY"))

    def test_other_messages(self):
        assert "API key" in describe_error(MissingConfigError("missing"))
        assert "image could not be loaded" in describe_error(AssetResolutionError("x"))
        assert "unexpected" in describe_error(RuntimeError("x"))


class TestRetryState:
    """Transitions of the retry state machine."""

    def test_transient_waits_then_moves_on(self, retry_config):
        state = RetryState(models=['a', 'b'], policy=retry_config)

        assert state.fail(TransientProviderError("busy", status=503)) == RetryPhase.WAITING
        assert state.delay == pytest.approx(0.8)
        state.resume()
        assert state.phase == RetryPhase.ATTEMPTING
        assert state.attempt == 2

        state.fail(TransientProviderError("busy", status=503))
        state.resume()
        assert state.fail(TransientProviderError("busy", status=503)) == RetryPhase.ATTEMPTING
        assert (state.current_model, state.attempt) == ('b', 1)

    def test_terminal_skips_to_next_model(self, retry_config):
        state = RetryState(models=['a', 'b'], policy=retry_config)
        assert state.fail(TerminalProviderError("bad", status=400)) == RetryPhase.ATTEMPTING
        assert state.current_model == 'b'

    def test_credentials_fail_everything(self, retry_config):
        state = RetryState(models=['a', 'b'], policy=retry_config)
        assert state.fail(TerminalProviderError("denied", status=401)) == RetryPhase.FAILED

    def test_no_models_starts_failed(self, retry_config):
        state = RetryState(models=[], policy=retry_config)
        assert state.phase == RetryPhase.FAILED
        assert isinstance(state.last_error, TerminalProviderError)


class TestModelFallback:
    """run_with_model_fallback / run_with_deadline."""

    @pytest.mark.asyncio
    async def test_first_success_returns_immediately(self, retry_config):
        operation = AsyncMock(return_value='ok')
        sleep = AsyncMock()

        assert await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=sleep) == 'ok'
        operation.assert_awaited_once_with('a')
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_errors_retry_with_backoff_then_fall_back(self, retry_config):
        busy = SdkError("busy", 503)
        operation = AsyncMock(side_effect=[busy, busy, busy, 'from b'])
        sleep = AsyncMock()
        retries = []

        result = await run_with_model_fallback(
            operation, ['a', 'b'], retry_config, sleep=sleep, on_retry=lambda s: retries.append(s.current_model),
        )

        assert result == 'from b'
        assert [call.args[0] for call in operation.await_args_list] == ['a', 'a', 'a', 'b']
        assert [call.args[0] for call in sleep.await_args_list] == [pytest.approx(0.8), pytest.approx(1.6)]
        assert retries == ['a', 'a', 'b']

    @pytest.mark.asyncio
    async def test_terminal_error_moves_on_without_waiting(self, retry_config):
        operation = AsyncMock(side_effect=[SdkError("bad", 400), 'ok'])
        sleep = AsyncMock()

        assert await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=sleep) == 'ok'
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credential_error_stops_all_models(self, retry_config):
        operation = AsyncMock(side_effect=SdkError("denied", 401))

        with pytest.raises(TerminalProviderError) as exc_info:
            await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=AsyncMock())

        assert exc_info.value.status == 401
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_models_raise_last_error(self, retry_config):
        operation = AsyncMock(side_effect=SdkError("bad", 400))

        with pytest.raises(TerminalProviderError):
            await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=AsyncMock())
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_blocked_content_is_not_retried(self, retry_config):
        operation = AsyncMock(side_effect=ContentBlockedError("SAFETY"))

        with pytest.raises(ContentBlockedError):
            await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=AsyncMock())
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_configuration_propagates(self, retry_config):
        operation = AsyncMock(side_effect=MissingConfigError("no key"))

        with pytest.raises(MissingConfigError):
            await run_with_model_fallback(operation, ['a', 'b'], retry_config, sleep=AsyncMock())
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_deadline_becomes_gateway_timeout(self):
        policy = RetryConfig(max_attempts_per_model=1, base_delay=0.0, max_delay=0.0, max_jitter=0.0,
                             deadline_seconds=0.05)

        async def slow(model):
            await asyncio.sleep(1)

        with pytest.raises(TransientProviderError) as exc_info:
            await run_with_deadline(slow, ['a'], policy)
        assert exc_info.value.status == 504
