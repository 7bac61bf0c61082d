"""Bounded polling for conditions that become true eventually."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def wait_until(
    predicate: Callable[[], bool],
    interval: float = 0.5,
    timeout: float = 15.0,
    *,
    description: str = "condition",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll *predicate* until it returns truthy or *timeout* elapses.

    A predicate that raises counts as "not ready yet". Once the deadline
    has passed no further success is reported, even if an attempt that
    started before the deadline would have succeeded.

    Args:
        predicate: Zero-argument check.
        interval: Seconds between attempts.
        timeout: Total seconds to wait.
        description: Label used in logs and the timeout message.
        clock: Monotonic time source.
        sleep: Sleep function.

    Raises:
        TimeoutError: If the predicate never held within *timeout*. The
            last predicate exception, if any, is chained as the cause.
    """
    start = clock()
    deadline = start + timeout
    last_error: Optional[BaseException] = None
    attempts = 0

    while True:
        attempts += 1
        try:
            ready = bool(predicate())
        except Exception as exc:
            logger.debug("%s not ready (attempt %d): %s", description, attempts, exc)
            last_error = exc
            ready = False

        now = clock()
        if ready and now <= deadline:
            logger.debug("%s ready after %.2fs (%d attempts)", description, now - start, attempts)
            return
        if now >= deadline:
            break

        sleep(min(interval, deadline - now))

    raise TimeoutError(
        f"{description} not ready within {timeout:g}s ({attempts} attempts)"
    ) from last_error
