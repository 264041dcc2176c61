"""
Infrastructure Layer: Retry Helper
Fixed-delay retries for remote reads, shared by every component that talks to the ledger.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

logger = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (asyncio.TimeoutError, ConnectionError, OSError)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    detail = ""
    if outcome is not None:
        detail = str(outcome.exception()) if outcome.failed else repr(outcome.result())
    logger.warning(
        "remote_call_retry",
        call=getattr(retry_state.fn, "__name__", str(retry_state.fn)),
        attempt=retry_state.attempt_number,
        detail=detail,
    )


def _last_outcome(retry_state: RetryCallState) -> Any:
    # re-raises the last exception, or hands back the last unwanted result
    if retry_state.outcome is None:
        return None
    return retry_state.outcome.result()


async def call_with_retry(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: int = 3,
    delay: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    retry_if: Optional[Callable[[Any], bool]] = None,
    **kwargs: Any,
) -> T:
    """
    Awaits fn(*args, **kwargs) up to `attempts` times, `delay` seconds apart.
    Exceptions of `retry_on` and results matching `retry_if` trigger another attempt.
    When attempts run out the last exception propagates, or the last result is returned.
    """
    condition = retry_if_exception_type(retry_on)
    if retry_if is not None:
        condition = condition | retry_if_result(retry_if)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(max(0.0, delay)),
        retry=condition,
        before_sleep=_log_before_sleep,
        retry_error_callback=_last_outcome,
        reraise=True,
    )
    return await retrying(fn, *args, **kwargs)
