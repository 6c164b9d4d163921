"""
Rate-limited gateway for provider calls.

Every completion/embedding call in the pipeline goes through one shared
ProviderGateway instance, which enforces:

- bounded concurrency (at most `max_concurrent` calls in flight, FIFO beyond that)
- minimum spacing between call starts, across all callers
- exponential backoff on RateLimitError (other errors propagate immediately)

Queue state (waiting tickets, running count, last start time) is only ever
mutated by the gateway itself, under its condition lock. Clock and sleep are
injectable so pacing can be tested without real waiting.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from bitacora.config import Config

from .provider import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderGateway:
    def __init__(
        self,
        max_concurrent: int = 2,
        min_delay: float = 1.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            max_concurrent: Calls allowed in flight at once
            min_delay: Seconds required between two call starts
            max_retries: Extra attempts after a rate-limited call
            base_delay: Seconds used as the backoff base
            max_delay: Upper bound for a single backoff wait, in seconds
            clock: Monotonic time source (seconds)
            sleep: Blocking wait function (seconds)
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_delay = min_delay
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._sleep = sleep

        self._cond = threading.Condition()
        self._waiting: deque[object] = deque()
        self._running = 0
        self._last_start: Optional[float] = None

    @classmethod
    def from_config(cls, **overrides) -> "ProviderGateway":
        params = dict(
            max_concurrent=Config.GATEWAY_MAX_CONCURRENT,
            min_delay=Config.GATEWAY_MIN_DELAY_MS / 1000.0,
            max_retries=Config.GATEWAY_MAX_RETRIES,
            base_delay=Config.GATEWAY_BASE_DELAY_MS / 1000.0,
            max_delay=Config.GATEWAY_MAX_DELAY_MS / 1000.0,
        )
        params.update(overrides)
        return cls(**params)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._running

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._waiting)

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run `fn(*args, **kwargs)` inside a paced slot, retrying on rate limits."""
        self._acquire()
        try:
            return self._retry_with_backoff(fn, *args, **kwargs)
        finally:
            self._release()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1`: base * 2^attempt * (attempt + 1), capped."""
        return min(self.base_delay * (2 ** attempt) * (attempt + 1), self.max_delay)

    def _acquire(self) -> None:
        ticket = object()
        with self._cond:
            self._waiting.append(ticket)
            while self._waiting[0] is not ticket or self._running >= self.max_concurrent:
                self._cond.wait()

            self._waiting.popleft()
            self._running += 1

            # Reserve our start time so the next ticket spaces itself after it.
            now = self._clock()
            start = now
            if self._last_start is not None:
                start = max(now, self._last_start + self.min_delay)
            self._last_start = start
            self._cond.notify_all()

        wait = start - now
        if wait > 0:
            self._sleep(wait)

    def _release(self) -> None:
        with self._cond:
            self._running -= 1
            self._cond.notify_all()

    def _retry_with_backoff(self, fn: Callable[..., T], *args, **kwargs) -> T:
        retrying = Retrying(
            retry=retry_if_exception_type(RateLimitError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=lambda state: self.backoff_delay(state.attempt_number - 1),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "Rate limit hit (attempt %d/%d). Retrying in %.1fs",
            retry_state.attempt_number,
            self.max_retries + 1,
            retry_state.next_action.sleep,
        )
