# SPDX-License-Identifier: Apache-2.0

"""
Retry helper for optimistic-concurrency conflicts.

Only ``ConcurrentModification`` is retried; every other error propagates on
the first attempt.
"""

import logging
import time
from typing import Callable, TypeVar

from .errors import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 0.05,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run an operation, re-running it on version conflicts.

    The operation must reload its state on every call. Delays grow
    exponentially between attempts.

    Raises:
        ConcurrentModification: if every attempt conflicted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except ConcurrentModification as e:
            if attempt >= max_attempts:
                logger.error(
                    f"Giving up after {attempt} conflicting attempts",
                    extra={"extra_fields": {"attempts": attempt, "details": e.details}}
                )
                raise

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Version conflict, retrying in {delay:.3f}s",
                extra={"extra_fields": {"attempt": attempt, "max_attempts": max_attempts, "details": e.details}}
            )
            sleep(delay)
