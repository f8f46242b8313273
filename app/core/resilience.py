"""
Timeouts, retries, request deduplication and rate limiting for outbound calls.
"""

import contextvars
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from app.core.errors import TimeoutError, is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 15.0
MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0

# Shared pool for bounded calls; abandoned calls keep running until the client gives up
_timeout_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="bounded-call")


def with_timeout(fn: Callable[[], T], timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 operation: str = "Request") -> T:
    """
    Run fn and raise TimeoutError if it has not returned after timeout_seconds.

    fn runs in a copy of the caller's context so the request id follows it into
    the worker. The clock starts once a worker picks the call up; waiting for a
    free worker is bounded separately by the same duration.
    """
    started = threading.Event()
    ctx = contextvars.copy_context()

    def run() -> T:
        started.set()
        return ctx.run(fn)

    future = _timeout_executor.submit(run)
    try:
        if not started.wait(timeout_seconds):
            raise FutureTimeoutError()
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        future.cancel()
        raise TimeoutError(operation, int(timeout_seconds * 1000))


def with_retry(
    fn: Callable[[], T],
    retries: int = MAX_RETRIES,
    base_delay: float = RETRY_DELAY_SECONDS,
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    operation: str = "Request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn up to retries + 1 times.

    Each attempt is bounded by timeout_seconds (None disables the bound). Only
    retryable errors are retried, waiting base_delay * 2**attempt between attempts.
    The last error is raised once attempts are exhausted.
    """
    last_error: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            if timeout_seconds is None:
                return fn()
            return with_timeout(fn, timeout_seconds, operation)
        except Exception as e:
            last_error = e
            if attempt == retries or not is_retryable_error(e):
                break
            delay = base_delay * (2 ** attempt)
            logger.warning(f"{operation} failed (attempt {attempt + 1}/{retries + 1}), retrying in {delay:.1f}s: {e}")
            sleep(delay)
    raise last_error


class RequestDeduplicator:
    """Collapse concurrent calls sharing a key into a single execution."""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Dict[Any, Future] = {}

    def run(self, key: Any, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future

        if not owner:
            return future.result()

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def pending_keys(self) -> List[Any]:
        with self._lock:
            return list(self._in_flight.keys())

    def clear(self) -> None:
        with self._lock:
            self._in_flight.clear()


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    retry_after: Optional[int] = None


class FixedWindowRateLimiter:
    """
    Fixed-window limiter keyed by caller.

    The window opens with the first request for a key; once more than
    window_seconds have passed the count starts over.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 60,
                 clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, List[float]] = {}  # key -> [window_start, count]

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window[0] > self.window_seconds:
                window = [now, 0]
                self._windows[key] = window
            reset_at = window[0] + self.window_seconds
            if window[1] >= self.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    limit=self.max_requests,
                    retry_after=max(1, int(reset_at - now + 0.999)),
                )
            window[1] += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - int(window[1]),
                reset_at=reset_at,
                limit=self.max_requests,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._windows.clear()


def rate_limit_key(identifier: str, institution_id: Optional[str] = None) -> str:
    return f"{institution_id or 'global'}:{identifier}"


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers
