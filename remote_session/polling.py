"""Sleep-based polling used by every blocking wait on a channel.

The transport gives no "wait for text" or "wait for close" primitive, so all
waits check a condition, sleep for an interval and try again. Sleeping is done
on a :class:`threading.Event` so another thread can cancel the wait; a
cancelled wait simply returns, it never raises.
"""
import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger('remote_session.polling')

NO_TIMEOUT = -1


class PollOutcome(Enum):
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    EXHAUSTED = "exhausted"  # max_attempts used up
    CANCELLED = "cancelled"

    def __bool__(self) -> bool:
        return self is PollOutcome.SATISFIED


def poll_until(condition: Callable[[], bool], interval_ms: int,
               timeout_ms: int = NO_TIMEOUT,
               max_attempts: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None) -> PollOutcome:
    """Poll ``condition`` until it is true, the deadline passes, attempts run out, or the wait is cancelled.

    Args:
        condition: Zero-argument callable checked before every sleep
        interval_ms: Sleep between checks, in milliseconds
        timeout_ms: Wall-clock limit measured from entry; -1 means no limit
        max_attempts: Maximum number of checks; None means no limit
        cancel_event: Event that aborts the wait when set
    """
    if timeout_ms is not None and timeout_ms < NO_TIMEOUT:
        raise ValueError(f"timeout_ms must be -1 or non-negative, got {timeout_ms}")

    cancel_event = cancel_event or threading.Event()
    interval = max(interval_ms, 0) / 1000.0
    deadline = None
    if timeout_ms is not None and timeout_ms != NO_TIMEOUT:
        deadline = time.monotonic() + timeout_ms / 1000.0

    attempts = 0
    while True:
        if condition():
            return PollOutcome.SATISFIED
        attempts += 1
        if deadline is not None and time.monotonic() >= deadline:
            return PollOutcome.TIMED_OUT
        if max_attempts is not None and attempts >= max_attempts:
            return PollOutcome.EXHAUSTED
        if cancel_event.wait(interval):
            logger.debug(f"[POLL_CANCELLED] Wait cancelled after {attempts} checks")
            return PollOutcome.CANCELLED
