"""Deadline-bounded polling for asynchronous lead count changes.

Builds and bulk deletes complete server-side with no callback; the only
signal is the account's lead count. ``poll_until_count_equals`` reads it
on a fixed interval until it matches a target or the budget runs out.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PollState(enum.Enum):
    POLLING = "polling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"


class Clock:
    """Wall-clock source for poll loops; swap in a virtual clock in tests."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


SYSTEM_CLOCK = Clock()


def poll_until_count_equals(
    read_count: Callable[[], int],
    target: int,
    timeout_seconds: float,
    label: str,
    emit: Optional[Callable[[str], None]] = None,
    clock: Clock = SYSTEM_CLOCK,
    interval_seconds: float = 5.0,
) -> PollState:
    """Poll ``read_count`` until it returns ``target`` or the budget elapses.

    Args:
        read_count: Zero-arg callable returning the live lead count
        target: Count that signals completion
        timeout_seconds: Budget measured from the first read
        label: Diagnostic tag for progress lines (e.g. "build:90210")
        emit: Receives one progress line per read
        clock: Time source (monotonic + sleep)
        interval_seconds: Fixed sleep between reads, no backoff

    Returns:
        PollState.CONVERGED or PollState.TIMED_OUT

    Errors raised by ``read_count`` propagate unchanged.
    """
    start = clock.monotonic()
    state = PollState.POLLING
    attempts = 0

    while state is PollState.POLLING:
        current = read_count()
        attempts += 1
        if emit:
            emit(f"[Poll {label}] current={current}, target={target}")

        if current == target:
            state = PollState.CONVERGED
        elif clock.monotonic() - start > timeout_seconds:
            state = PollState.TIMED_OUT
        else:
            clock.sleep(interval_seconds)

    logger.info(
        "Poll %s finished: state=%s attempts=%d elapsed=%.1fs",
        label,
        state.value,
        attempts,
        clock.monotonic() - start,
    )
    return state
