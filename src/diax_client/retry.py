"""Bounded retry for transient fetch failures, built on tenacity."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from diax_core.exceptions import is_transient

T = TypeVar("T")

logger = structlog.get_logger()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    budget: int = 2,
    wait_seconds: float = 1.0,
    label: str = "fetch",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying transient failures up to ``budget`` times.

    Only errors classified by ``is_transient`` are retried, each after a
    fixed ``wait_seconds`` pause. Any other error, or the last transient one
    once the budget is spent, propagates unchanged.
    """
    total = budget + 1

    def _log_failure(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return
        error = outcome.exception()
        logger.warning(
            "fetch_attempt_failed",
            label=label,
            attempt=retry_state.attempt_number,
            total=total,
            error=str(error),
            transient=is_transient(error) if error is not None else False,
        )

    def _log_retry(retry_state: RetryCallState) -> None:
        logger.info(
            "fetch_retry",
            label=label,
            next_attempt=retry_state.attempt_number + 1,
            wait_seconds=wait_seconds,
        )

    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(total),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception(is_transient),
        after=_log_failure,
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(operation)
