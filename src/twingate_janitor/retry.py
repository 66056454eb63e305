"""!
@brief Bounded polling/retry helper.
@details One configurable loop used for every wait in the project: registry
re-checks after install/uninstall, adapter health polling, and endpoint
reachability. Each call site supplies its own attempt count and interval.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from . import logging_ext

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """!
    @brief Final value of a retried operation and how many attempts it took.
    """

    value: T | None
    attempts: int
    succeeded: bool


def retry(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    interval: float,
    is_success: Callable[[T], bool] = bool,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """!
    @brief Call ``operation`` until ``is_success`` accepts its value.
    @details Sleeps ``interval`` seconds between attempts (never after the
    last one). Exceptions raised by ``operation`` propagate; callers wrap
    flaky probes themselves.
    @param operation Zero-argument callable producing a value.
    @param max_attempts Upper bound on calls; values below one are treated as one.
    @param interval Seconds to wait between attempts.
    @param is_success Predicate applied to each value.
    @param label Name used in debug logging.
    @param sleep Sleep function, replaceable in tests.
    @returns :class:`RetryResult` carrying the last observed value.
    """

    human_logger = logging_ext.get_human_logger()
    total = max(1, int(max_attempts))
    value: T | None = None

    for attempt in range(1, total + 1):
        value = operation()
        if is_success(value):
            return RetryResult(value=value, attempts=attempt, succeeded=True)
        human_logger.debug("%s not satisfied (attempt %d/%d)", label, attempt, total)
        if attempt < total and interval > 0:
            sleep(interval)

    return RetryResult(value=value, attempts=total, succeeded=False)


def attempts_for(timeout_seconds: float, interval_seconds: float) -> int:
    """!
    @brief Convert a timeout/interval pair into an attempt count.
    """

    if interval_seconds <= 0:
        return 1
    return max(1, math.ceil(timeout_seconds / interval_seconds))


__all__ = ["RetryResult", "attempts_for", "retry"]
