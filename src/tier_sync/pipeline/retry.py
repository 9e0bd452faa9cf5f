"""
Bounded retry with exponential backoff for connectivity failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from tier_sync.errors import ConnectivityError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and backoff schedule."""
    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func``, retrying on :class:`ConnectivityError`.

    Other exceptions propagate immediately. After the last attempt the final
    ConnectivityError is re-raised.
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            return func()
        except ConnectivityError as e:
            if attempt >= policy.attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            wait = policy.delay(attempt)
            logger.warning(
                f"[Attempt {attempt}/{policy.attempts}] {description} failed: {e}. "
                f"Retrying in {wait:.1f}s"
            )
            sleep(wait)
    raise ConnectivityError(f"{description}: no attempts configured")


def wait_for_service(
    probe: Callable[[], bool],
    attempts: int = 30,
    interval: float = 2.0,
    description: str = "service",
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> None:
    """
    Poll ``probe`` until it returns True.

    Raises:
        ConnectivityError: probe still failing after ``attempts`` polls
    """
    for attempt in range(1, attempts + 1):
        if on_attempt:
            on_attempt(attempt)
        if probe():
            logger.info(f"{description} ready after {attempt} attempt(s)")
            return
        if attempt < attempts:
            logger.debug(f"Waiting for {description} (attempt {attempt}/{attempts})")
            sleep(interval)

    raise ConnectivityError(f"{description} not ready after {attempts} attempts", target=description)
