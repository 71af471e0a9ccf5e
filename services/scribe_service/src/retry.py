import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import openai
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ..common.sanitize import safe_error_message
from .logging import jlog
from .schemas import RetryConfig

T = TypeVar("T")

JITTER_RATIO = 0.3


def status_code_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_error(exc: BaseException) -> bool:
    """429/5xx, dropped connections and timeouts retry; everything else fails fast."""
    # Caller-level timeout or abort: stop now
    if isinstance(exc, asyncio.CancelledError):
        return False
    explicit = getattr(exc, "retryable", None)
    if explicit is not None:
        return bool(explicit)

    status = status_code_of(exc)
    if status is not None:
        return status == 429 or 500 <= status < 600

    if isinstance(exc, (httpx.TransportError, openai.APIConnectionError, ConnectionError)):
        return True

    message = str(exc).lower()
    return "timeout" in message or "timed out" in message


class wait_backoff_jitter(wait_base):
    """min(initial * multiplier**k + jitter, max) with jitter in [0, 0.3 * base)."""

    def __init__(self, config: RetryConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()

    def delay_ms(self, failed_attempt: int) -> float:
        base = self.config.initial_delay_ms * (self.config.backoff_multiplier ** failed_attempt)
        jitter = self.rng.random() * JITTER_RATIO * base
        return min(base + jitter, float(self.config.max_delay_ms))

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_ms(retry_state.attempt_number - 1) / 1000.0


class RetryExecutor:
    """Runs an async operation with bounded exponential backoff.

    Sleeps suspend only the calling task, so concurrent operations keep
    independent backoff clocks.
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    def _log_retry(self, name: str, config: RetryConfig):
        def before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            jlog(
                event="retry_scheduled",
                severity="WARNING",
                operation=name,
                attempt=rs.attempt_number,
                max_attempts=config.max_retries + 1,
                delay_ms=int((rs.next_action.sleep if rs.next_action else 0) * 1000),
                status_code=status_code_of(exc) if exc else None,
                error=safe_error_message(exc) if exc else None,
            )
        return before_sleep

    async def run(self, operation: Callable[[], Awaitable[T]], name: str, config: RetryConfig) -> T:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            wait=wait_backoff_jitter(config, self._rng),
            stop=stop_after_attempt(config.max_retries + 1),
            sleep=self._sleep,
            reraise=True,
            before_sleep=self._log_retry(name, config),
        ):
            with attempt:
                result = await operation()
        return result
