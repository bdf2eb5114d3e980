"""Bounded exponential backoff for calls to external services."""
from typing import Tuple, Type

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cardano_rag import config

logger = structlog.get_logger()


def _log_retry(operation: str, attempts: int):
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retrying_after_failure",
            operation=operation,
            attempt=retry_state.attempt_number,
            max_attempts=attempts,
            sleep_seconds=round(retry_state.next_action.sleep, 2)
            if retry_state.next_action else None,
            error=str(error),
        )

    return before_sleep


def async_retrying(
    operation: str,
    retry_on: Tuple[Type[BaseException], ...],
    attempts: int = None,
    initial_delay: float = None,
    max_delay: float = None,
) -> AsyncRetrying:
    """Build a retry controller for an async call.

    Usage::

        async for attempt in async_retrying("embed", (EmbeddingProviderUnavailable,)):
            with attempt:
                result = await call()

    Args:
        operation: Name used in log events
        retry_on: Exception types that are worth another attempt
        attempts: Total attempts including the first (default from config)
        initial_delay: First backoff delay in seconds (default from config)
        max_delay: Upper bound for a single delay (default from config)

    Returns:
        AsyncRetrying that re-raises the last error once attempts run out
    """
    attempts = config.RETRY_ATTEMPTS if attempts is None else attempts
    initial_delay = config.RETRY_INITIAL_DELAY if initial_delay is None else initial_delay
    max_delay = config.RETRY_MAX_DELAY if max_delay is None else max_delay

    return AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry(operation, attempts),
        reraise=True,
    )
