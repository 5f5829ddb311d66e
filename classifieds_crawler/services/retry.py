"""
Bounded retry around isolated worker invocations.

A unit of work moves through ``PENDING -> ATTEMPTING`` and ends either
``SUCCEEDED`` or, once every attempt has failed, ``EXHAUSTED``. Exhaustion is
reported as a value; it is never raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from classifieds_crawler.services.delay import DelayPolicy
from classifieds_crawler.utils.logging import get_business_logger


logger = get_business_logger('worker')


class UnitState(Enum):
    """Lifecycle of a unit of work under retry."""
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class RetryOutcome:
    """Terminal result of running a unit under the retry protocol."""
    state: UnitState
    attempts: int
    payload: Any = None
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is UnitState.SUCCEEDED


class RetryProtocol:
    """Runs a task through an executor until it succeeds or attempts run out."""

    def __init__(self, executor, delay_policy: DelayPolicy, max_attempts: int = 5):
        """
        Initialize retry protocol.

        Args:
            executor: Object with ``execute(task, timeout=None) -> WorkerResult``
            delay_policy: Policy used to wait between attempts
            max_attempts: Maximum number of attempts per unit (>= 1)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.executor = executor
        self.delay_policy = delay_policy
        self.max_attempts = max_attempts

    def run(self, task: Any, timeout: Optional[float] = None,
            max_attempts: Optional[int] = None) -> RetryOutcome:
        """
        Execute ``task`` with retries.

        Every attempt gets a fresh worker. Failed attempts are followed by a
        delay, except the last one.
        """
        limit = max_attempts or self.max_attempts
        address = getattr(task, 'address', task)
        state = UnitState.PENDING
        errors: List[str] = []
        attempts = 0

        while attempts < limit:
            state = UnitState.ATTEMPTING
            attempts += 1

            try:
                result = self.executor.execute(task, timeout=timeout)
            except Exception as e:
                # An executor fault is one more failed attempt
                errors.append(f"{type(e).__name__}: {e}")
                logger.error(f"Executor error on {address}: {e}")
            else:
                if result.success:
                    state = UnitState.SUCCEEDED
                    if attempts > 1:
                        logger.info(f"{address} succeeded on attempt {attempts}/{limit}")
                    return RetryOutcome(state, attempts, result.payload, errors)
                errors.append(result.error or "unknown failure")
                logger.warning(f"Attempt {attempts}/{limit} failed for {address}: {result.error}")

            if attempts < limit:
                self.delay_policy.wait()

        state = UnitState.EXHAUSTED
        logger.error(f"Giving up on {address} after {attempts} attempts")
        return RetryOutcome(state, attempts, None, errors)
