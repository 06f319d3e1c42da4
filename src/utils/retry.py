"""Bounded-timeout, bounded-retry wrapper for external provider calls.

Every call to an embedding provider, vector index, or LLM goes through
:func:`call_with_retry`.  Each attempt is wrapped in ``asyncio.wait_for``
so no call site can block indefinitely; transient failures
(:class:`ProviderTimeoutError`, :class:`ProviderUnavailableError`) are
retried with exponential backoff via tenacity.  Once attempts are
exhausted the last transient error is re-raised so the caller can convert
it into its component-specific outcome.

Non-transient errors (e.g. :class:`InvalidConfigurationError`,
:class:`LLMError`) propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.utils.errors import ProviderTimeoutError, ProviderUnavailableError
from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)

TRANSIENT_ERRORS = (ProviderTimeoutError, ProviderUnavailableError)


@dataclass(frozen=True)
class RetryPolicy:
    """Timeout and retry limits applied to one external call site.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one.
    timeout_seconds:
        Per-attempt timeout.
    base_delay:
        Initial backoff in seconds; doubles after each failed attempt.
    max_delay:
        Upper bound on a single backoff sleep.
    """

    max_attempts: int = 3
    timeout_seconds: float = 30.0
    base_delay: float = 0.5
    max_delay: float = 8.0


async def call_with_retry(
    fn: Callable[[], Awaitable[_T]],
    *,
    policy: RetryPolicy,
    operation: str,
    provider_name: str | None = None,
) -> _T:
    """Await ``fn()`` under *policy*, retrying transient provider errors.

    Parameters
    ----------
    fn:
        Zero-argument factory returning a fresh awaitable per attempt.
    policy:
        Timeout and retry limits.
    operation:
        Short label used in log events (e.g. ``"embed"``, ``"generate"``).
    provider_name:
        Provider identifier attached to timeout errors and log events.

    Raises
    ------
    ProviderTimeoutError, ProviderUnavailableError
        When every attempt failed transiently.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        _logger.warning(
            "provider_call_retry",
            operation=operation,
            provider=provider_name,
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            error=str(exc),
        )

    async def _attempt() -> _T:
        try:
            return await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                message=f"{operation} timed out after {policy.timeout_seconds}s",
                provider_name=provider_name,
            ) from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await _attempt()
    # AsyncRetrying with reraise=True either returns above or raises.
    raise ProviderUnavailableError(  # pragma: no cover
        message=f"{operation} exhausted retries",
        provider_name=provider_name,
    )
