"""
Randomized politeness delay between page fetches.
"""

import random
import time
from typing import Callable, Optional

from classifieds_crawler.utils.errors import ConfigurationError
from classifieds_crawler.utils.logging import get_logger


class DelayPolicy:
    """Waits a uniformly random duration within ``[min_delay, max_delay]``."""

    def __init__(self,
                 min_delay: float = 5.0,
                 max_delay: float = 8.0,
                 sleep: Callable[[float], None] = time.sleep,
                 rng: Optional[random.Random] = None):
        """
        Initialize delay policy.

        Args:
            min_delay: Lower bound in seconds
            max_delay: Upper bound in seconds
            sleep: Function used to wait (injectable for tests)
            rng: Random source (injectable for tests)

        Raises:
            ConfigurationError: If the bounds are negative or inverted
        """
        if min_delay < 0 or max_delay < 0:
            raise ConfigurationError(
                "Delay bounds must be non-negative",
                {"min_delay": min_delay, "max_delay": max_delay}
            )
        if min_delay > max_delay:
            raise ConfigurationError(
                "min_delay must not exceed max_delay",
                {"min_delay": min_delay, "max_delay": max_delay}
            )

        self.min_delay = min_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.logger = get_logger(__name__)

    @classmethod
    def from_config(cls, crawler_config, **kwargs) -> "DelayPolicy":
        return cls(crawler_config.min_delay, crawler_config.max_delay, **kwargs)

    def next_delay(self) -> float:
        """Draw the next delay without waiting."""
        return self._rng.uniform(self.min_delay, self.max_delay)

    def wait(self) -> float:
        """Sleep for a freshly drawn delay and return it."""
        delay = self.next_delay()
        self.logger.debug(f"Waiting {delay:.2f}s")
        self._sleep(delay)
        return delay
