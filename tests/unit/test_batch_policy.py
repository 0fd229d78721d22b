"""
Unit tests for the batch formation policy
"""

import time

import pytest

from zerosync.consensus.batch_policy import BatchPolicy


def test_size_trigger():
    policy = BatchPolicy({"batch_size": 3, "batch_timeout": 0})

    assert not policy.should_fire(2)
    assert policy.should_fire(3)
    assert policy.should_fire(10)


def test_empty_pool_never_fires():
    policy = BatchPolicy({"batch_size": 3, "batch_timeout": 1})
    time.sleep(0.01)

    assert not policy.should_fire(0)
    assert not policy.should_fire(0, timer_expired=True)


def test_timer_trigger():
    policy = BatchPolicy({"batch_size": 100, "batch_timeout": 50})

    assert not policy.should_fire(1)
    time.sleep(0.06)
    assert policy.is_timer_expired()
    assert policy.should_fire(1)

    policy.mark_checked()
    assert not policy.is_timer_expired()


def test_zero_timeout_disables_timer():
    policy = BatchPolicy({"batch_size": 5, "batch_timeout": 0})

    assert not policy.timer_enabled
    assert policy.wait_interval() is None
    assert not policy.is_timer_expired(now=time.time() + 3600)
    assert not policy.should_fire(1)


def test_wait_interval_in_seconds():
    assert BatchPolicy({"batch_size": 1, "batch_timeout": 2500}).wait_interval() == 2.5


@pytest.mark.parametrize("config", [
    {"batch_size": 0},
    {"batch_size": -2},
    {"batch_size": "3"},
    {"batch_size": True},
    {"batch_size": 3, "batch_timeout": -1},
])
def test_invalid_configuration(config):
    with pytest.raises(ValueError):
        BatchPolicy(config)
