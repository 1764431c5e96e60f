"""Tests for spawn retry strategies."""

import errno

from forkqueue.core.errors import SpawnError, TransientSpawnError
from forkqueue.execution.retry import ConstantBackoff, RetryStrategy


class TestConstantBackoff:
    def test_is_a_strategy(self):
        assert isinstance(ConstantBackoff(), RetryStrategy)

    def test_defaults(self):
        strategy = ConstantBackoff()
        assert strategy.max_retries == 10
        assert strategy.delay == 5.0

    def test_constant_delay(self):
        strategy = ConstantBackoff(delay=2.5)
        assert [strategy.next_delay(n) for n in range(4)] == [2.5, 2.5, 2.5, 2.5]

    def test_bounded(self):
        strategy = ConstantBackoff(max_retries=2)
        assert strategy.should_retry(0) is True
        assert strategy.should_retry(1) is True
        assert strategy.should_retry(2) is False

    def test_transient_error_retried(self):
        strategy = ConstantBackoff(max_retries=1)
        assert strategy.should_retry(0, TransientSpawnError("later")) is True
        assert strategy.should_retry(0, OSError(errno.EAGAIN, "again")) is True

    def test_permanent_error_never_retried(self):
        strategy = ConstantBackoff(max_retries=10)
        assert strategy.should_retry(0, SpawnError("denied")) is False
        assert strategy.should_retry(0, OSError(errno.EPERM, "denied")) is False

    def test_zero_retries(self):
        assert ConstantBackoff(max_retries=0).should_retry(0, TransientSpawnError("x")) is False
