from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

READ_ATTEMPTS = 3
DEFAULT_READ_WAIT = wait_exponential(multiplier=1, min=1, max=10)


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def intersection(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> timedelta:
    overlap = min(a_end, b_end) - max(a_start, b_start)
    return overlap if overlap > timedelta(0) else timedelta(0)


def same_interval(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime, tolerance: timedelta
) -> bool:
    return abs(a_start - b_start) <= tolerance and abs(a_end - b_end) <= tolerance


def read_retrying(is_transient: Callable[[BaseException], bool], wait: Optional[wait_base] = None) -> Retrying:
    # Only for idempotent reads; mutations must surface their first failure.
    return Retrying(
        stop=stop_after_attempt(READ_ATTEMPTS),
        wait=wait if wait is not None else DEFAULT_READ_WAIT,
        retry=retry_if_exception(is_transient),
        reraise=True,
    )
