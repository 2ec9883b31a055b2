"""Retry policy: bounded exponential backoff."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from webhook_service.services.retry import RetryPolicy


def test_default_schedule():
    policy = RetryPolicy()
    delays = [policy.delay_for(n).total_seconds() for n in range(1, 9)]
    assert delays == [30, 60, 120, 240, 480, 960, 1920, 3600]


def test_delay_is_non_decreasing_and_capped():
    policy = RetryPolicy(base_delay_seconds=5, max_delay_seconds=100)
    previous = timedelta(0)
    for attempts in range(1, 200):
        delay = policy.delay_for(attempts)
        assert delay >= previous
        assert delay <= timedelta(seconds=100)
        previous = delay


def test_attempts_below_one_use_base_delay():
    policy = RetryPolicy()
    assert policy.delay_for(0) == timedelta(seconds=30)
    assert policy.delay_for(-3) == timedelta(seconds=30)


def test_next_retry_at_is_in_the_future():
    policy = RetryPolicy()
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert policy.next_retry_at(2, now) == now + timedelta(seconds=60)


def test_is_exhausted():
    policy = RetryPolicy(max_attempts=3)
    assert not policy.is_exhausted(2)
    assert policy.is_exhausted(3)
    assert policy.is_exhausted(4)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_delay_seconds": 0},
        {"base_delay_seconds": 10, "max_delay_seconds": 5},
        {"max_attempts": 0},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_from_settings(monkeypatch):
    from webhook_service.settings import settings

    monkeypatch.setattr(settings, "webhook_max_attempts", 7)
    monkeypatch.setattr(settings, "webhook_retry_base_seconds", 2.0)
    monkeypatch.setattr(settings, "webhook_retry_max_seconds", 20.0)
    policy = RetryPolicy.from_settings(settings)
    assert policy == RetryPolicy(base_delay_seconds=2.0, max_delay_seconds=20.0, max_attempts=7)
