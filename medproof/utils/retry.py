"""
Bounded retry for calls into the content store and ledger.

Only errors flagged ``transient`` are retried; lookups that fail
deterministically (unknown address, duplicate anchor) surface immediately.
"""

import threading
import time
from typing import Callable, Optional, Type, TypeVar

import structlog

from ..exceptions import BackendError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff bounded by attempt count and an overall deadline"""

    def __init__(
        self,
        attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
        timeout: Optional[float] = 30.0,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            timeout=config.operation_timeout_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)"""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    error_cls: Type[BackendError],
    op_name: str,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation``, retrying transient backend failures.

    Args:
        operation: Zero-argument callable performing one remote call
        policy: Attempts, backoff and deadline
        error_cls: StorageError or LedgerError, raised on exhaustion/cancel
        op_name: Name used in logs
        cancel_event: Set by the caller to abandon further attempts
        sleep: Injection point for tests

    Returns:
        The operation's result

    Raises:
        The last transient error once attempts or the deadline run out,
        ``error_cls`` if cancelled, and any non-transient error unchanged.
    """
    deadline = time.monotonic() + policy.timeout if policy.timeout else None
    last_error: Optional[BackendError] = None

    for attempt in range(policy.attempts):
        if cancel_event is not None and cancel_event.is_set():
            raise error_cls(f"{op_name} cancelled", reason="cancelled")

        try:
            return operation()
        except BackendError as e:
            if not e.transient:
                raise
            last_error = e

        if attempt == policy.attempts - 1:
            break

        delay = policy.delay_for(attempt)
        if deadline is not None and time.monotonic() + delay > deadline:
            logger.warning("Retry deadline exceeded", operation=op_name, attempt=attempt + 1)
            break

        logger.info("Retrying transient failure", operation=op_name,
                    attempt=attempt + 1, delay=delay, error=str(last_error))

        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise error_cls(f"{op_name} cancelled", reason="cancelled")
        else:
            sleep(delay)

    logger.error("Retries exhausted", operation=op_name, error=str(last_error))
    if last_error is None:
        raise error_cls(f"{op_name} was not attempted", reason="no_attempts")
    raise last_error
