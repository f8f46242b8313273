"""Unit tests for timeouts, retries, deduplication and the rate limiter"""

import threading
import time
import pytest
from app.core.errors import NetworkError, TimeoutError, ValidationError
from app.core.request_context import _request_id, get_request_id
from app.core.resilience import (
    FixedWindowRateLimiter, RequestDeduplicator, rate_limit_headers, rate_limit_key, with_retry, with_timeout,
)


def test_with_timeout_returns_result():
    assert with_timeout(lambda: 42, 1) == 42


def test_with_timeout_rejects_slow_calls():
    with pytest.raises(TimeoutError) as exc_info:
        with_timeout(lambda: time.sleep(0.5), 0.05, "Slow query")
    assert exc_info.value.operation == "Slow query"
    assert exc_info.value.timeout_ms == 50


def test_with_retry_retries_retryable_errors():
    calls = []
    delays = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("connection reset")
        return "ok"

    assert with_retry(flaky, retries=3, base_delay=1, timeout_seconds=None, sleep=delays.append) == "ok"
    assert len(calls) == 3
    assert delays == [1, 2]


def test_with_retry_gives_up_after_retries():
    calls = []

    def always_down():
        calls.append(1)
        raise NetworkError()

    with pytest.raises(NetworkError):
        with_retry(always_down, retries=2, base_delay=0, timeout_seconds=None, sleep=lambda s: None)
    assert len(calls) == 3


def test_with_retry_does_not_retry_client_errors():
    calls = []

    def invalid():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        with_retry(invalid, retries=3, timeout_seconds=None, sleep=lambda s: None)
    assert len(calls) == 1


def test_deduplicator_collapses_concurrent_calls():
    dedup = RequestDeduplicator()
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = []

    def load():
        calls.append(1)
        started.set()
        release.wait(2)
        return "data"

    owner = threading.Thread(target=lambda: results.append(dedup.run("key", load)))
    owner.start()
    started.wait(2)
    follower = threading.Thread(target=lambda: results.append(dedup.run("key", load)))
    follower.start()
    time.sleep(0.05)
    release.set()
    owner.join(2)
    follower.join(2)

    assert calls == [1]
    assert results == ["data", "data"]
    assert dedup.pending_keys() == []


def test_deduplicator_propagates_errors_and_clears_key():
    dedup = RequestDeduplicator()

    def fail():
        raise NetworkError()

    with pytest.raises(NetworkError):
        dedup.run("key", fail)
    assert dedup.run("key", lambda: "second") == "second"


def test_rate_limiter_allow_deny_reset():
    now = [1000.0]
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])

    first = limiter.check("inst-1:whatsapp")
    second = limiter.check("inst-1:whatsapp")
    third = limiter.check("inst-1:whatsapp")

    assert first.allowed and first.remaining == 1
    assert second.allowed and second.remaining == 0
    assert not third.allowed
    assert third.retry_after == 60

    # Other keys have their own window
    assert limiter.check("inst-2:whatsapp").allowed

    now[0] += 61
    assert limiter.check("inst-1:whatsapp").allowed


def test_rate_limiter_manual_reset():
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)
    limiter.check("k")
    assert not limiter.check("k").allowed
    limiter.reset("k")
    assert limiter.check("k").allowed


def test_rate_limit_helpers():
    assert rate_limit_key("whatsapp", "inst-1") == "inst-1:whatsapp"
    assert rate_limit_key("whatsapp") == "global:whatsapp"

    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=lambda: 100.0)
    limiter.check("k")
    headers = rate_limit_headers(limiter.check("k"))
    assert headers["X-RateLimit-Limit"] == "1"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert headers["X-RateLimit-Reset"] == "160"
    assert headers["Retry-After"] == "60"


def test_with_timeout_carries_request_id_into_worker():
    token = _request_id.set("req-42")
    try:
        assert with_timeout(get_request_id, 1) == "req-42"
    finally:
        _request_id.reset(token)
