import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from rib.services.rate_limiter import (
    Decision,
    RateLimitConfigError,
    RateLimitRule,
    Scope,
    SlidingWindowLimiter,
)


def make_limiter(enabled=True, **overrides):
    rules = {
        Scope.CREATE_THREAD: RateLimitRule(1, 300.0),
        Scope.CREATE_REPLY: RateLimitRule(10, 60.0),
        Scope.UPLOAD_FILE: RateLimitRule(5, 3600.0),
    }
    rules.update(overrides)
    return SlidingWindowLimiter(rules, enabled=enabled)


def test_reply_scenario_limit_then_recover():
    limiter = make_limiter()

    for _ in range(10):
        assert limiter.admit(Scope.CREATE_REPLY, "A", now=0.0) is Decision.ALLOWED

    assert limiter.admit(Scope.CREATE_REPLY, "A", now=5.0) is Decision.DENIED
    assert limiter.admit(Scope.CREATE_REPLY, "A", now=61.0) is Decision.ALLOWED


def test_limit_plus_one_within_window_is_denied():
    limiter = make_limiter(**{Scope.UPLOAD_FILE: RateLimitRule(3, 10.0)})

    decisions = [limiter.admit(Scope.UPLOAD_FILE, "1.2.3.4", now=t) for t in (0.0, 1.0, 2.0, 3.0)]

    assert decisions == [Decision.ALLOWED, Decision.ALLOWED, Decision.ALLOWED, Decision.DENIED]


def test_capacity_frees_when_earliest_ages_out():
    limiter = make_limiter(**{Scope.CREATE_REPLY: RateLimitRule(2, 60.0)})
    limiter.admit(Scope.CREATE_REPLY, "A", now=0.0)
    limiter.admit(Scope.CREATE_REPLY, "A", now=30.0)

    assert limiter.admit(Scope.CREATE_REPLY, "A", now=59.0) is Decision.DENIED
    assert limiter.admit(Scope.CREATE_REPLY, "A", now=60.0) is Decision.ALLOWED
    # 30.0 and 60.0 are still inside the window
    assert limiter.admit(Scope.CREATE_REPLY, "A", now=61.0) is Decision.DENIED


def test_denied_calls_are_not_recorded():
    limiter = make_limiter()
    limiter.admit(Scope.CREATE_THREAD, "A", now=0.0)
    for t in range(1, 300, 10):
        assert limiter.admit(Scope.CREATE_THREAD, "A", now=float(t)) is Decision.DENIED

    assert limiter.admit(Scope.CREATE_THREAD, "A", now=300.0) is Decision.ALLOWED


def test_keys_are_independent():
    limiter = make_limiter()

    assert limiter.admit(Scope.CREATE_THREAD, "A", now=0.0).allowed
    assert limiter.admit(Scope.CREATE_THREAD, "B", now=0.0).allowed
    assert limiter.admit(Scope.CREATE_REPLY, "A", now=0.0).allowed
    assert not limiter.admit(Scope.CREATE_THREAD, "A", now=1.0).allowed
    assert not limiter.admit(Scope.CREATE_THREAD, "B", now=1.0).allowed


def test_accepts_scope_names():
    limiter = make_limiter()

    assert limiter.admit("create-thread", "A", now=0.0) is Decision.ALLOWED
    assert limiter.admit(Scope.CREATE_THREAD, "A", now=1.0) is Decision.DENIED


def test_bypass_allows_everything_without_bookkeeping():
    limiter = make_limiter(enabled=False)

    for i in range(1000):
        assert limiter.admit(Scope.CREATE_THREAD, f"client-{i % 7}", now=float(i)) is Decision.ALLOWED

    assert limiter.tracked_keys() == 0


def test_sweep_drops_expired_keys():
    limiter = make_limiter()
    limiter.admit(Scope.CREATE_REPLY, "A", now=0.0)
    limiter.admit(Scope.CREATE_REPLY, "B", now=50.0)

    assert limiter.sweep(now=70.0) == 1
    assert limiter.tracked_keys() == 1


def test_opportunistic_sweep():
    rules = {scope: RateLimitRule(1, 10.0) for scope in Scope}
    limiter = SlidingWindowLimiter(rules, shards=1, sweep_every=1)
    for i in range(50):
        limiter.admit(Scope.CREATE_REPLY, f"client-{i}", now=float(i * 100))

    assert limiter.tracked_keys() == 1


def test_missing_rule_is_a_config_error():
    with pytest.raises(RateLimitConfigError):
        SlidingWindowLimiter({Scope.CREATE_THREAD: RateLimitRule(1, 1.0)})


def test_concurrent_same_key_never_over_admits():
    limiter = make_limiter(**{Scope.CREATE_REPLY: RateLimitRule(50, 60.0)})
    barrier = threading.Barrier(8)

    def hammer(_):
        barrier.wait(timeout=5)
        return [limiter.admit(Scope.CREATE_REPLY, "A", now=1.0) for _ in range(25)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = [d for batch in pool.map(hammer, range(8)) for d in batch]

    assert results.count(Decision.ALLOWED) == 50
    assert results.count(Decision.DENIED) == 150
