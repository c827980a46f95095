"""
Tests for bounded retry of backend calls
"""

import threading

import pytest

from medproof.exceptions import LedgerError, NotFoundError, StorageError
from medproof.utils.retry import RetryPolicy, call_with_retry


class FlakyOperation:
    """Fails with the given errors before returning a value"""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestRetryPolicy:

    def test_backoff_is_bounded(self):
        policy = RetryPolicy(attempts=5, base_delay=0.1, max_delay=0.3)

        assert [policy.delay_for(i) for i in range(4)] == [0.1, 0.2, 0.3, 0.3]

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)


class TestCallWithRetry:
    """Test which failures are retried"""

    def setup_method(self):
        self.policy = RetryPolicy(attempts=3, base_delay=0.01, max_delay=0.05)
        self.sleeps = []

    def test_transient_failures_retried(self):
        operation = FlakyOperation(StorageError(transient=True), StorageError(transient=True))

        result = call_with_retry(operation, self.policy, StorageError, "store.get",
                                 sleep=self.sleeps.append)

        assert result == "ok"
        assert operation.calls == 3
        assert self.sleeps == [0.01, 0.02]

    def test_exhaustion_raises_last_error(self):
        operation = FlakyOperation(*[LedgerError("down", transient=True) for _ in range(3)])

        with pytest.raises(LedgerError) as exc_info:
            call_with_retry(operation, self.policy, LedgerError, "ledger.get",
                            sleep=self.sleeps.append)

        assert exc_info.value.transient
        assert operation.calls == 3

    def test_permanent_failure_not_retried(self):
        operation = FlakyOperation(StorageError("corrupt", transient=False))

        with pytest.raises(StorageError):
            call_with_retry(operation, self.policy, StorageError, "store.get",
                            sleep=self.sleeps.append)

        assert operation.calls == 1
        assert self.sleeps == []

    def test_not_found_not_retried(self):
        operation = FlakyOperation(NotFoundError("content", "bafkreimissing"))

        with pytest.raises(NotFoundError):
            call_with_retry(operation, self.policy, StorageError, "store.get",
                            sleep=self.sleeps.append)

        assert operation.calls == 1

    def test_cancellation(self):
        """A set cancel event stops further attempts"""
        cancel = threading.Event()
        cancel.set()
        operation = FlakyOperation()

        with pytest.raises(StorageError) as exc_info:
            call_with_retry(operation, self.policy, StorageError, "store.put", cancel_event=cancel)

        assert exc_info.value.details["reason"] == "cancelled"
        assert operation.calls == 0

    def test_deadline(self):
        """Backoff that would overrun the deadline ends retries early"""
        policy = RetryPolicy(attempts=5, base_delay=10.0, max_delay=10.0, timeout=1.0)
        operation = FlakyOperation(*[StorageError(transient=True) for _ in range(5)])

        with pytest.raises(StorageError):
            call_with_retry(operation, policy, StorageError, "store.get", sleep=self.sleeps.append)

        assert operation.calls == 1
        assert self.sleeps == []

    def test_no_attempts_raises_component_error(self):
        """A policy emptied after construction still fails with the component error"""
        policy = RetryPolicy(attempts=1)
        policy.attempts = 0
        operation = FlakyOperation()

        with pytest.raises(LedgerError) as exc_info:
            call_with_retry(operation, policy, LedgerError, "ledger.anchor")

        assert exc_info.value.details["reason"] == "no_attempts"
        assert operation.calls == 0
