"""
Consistency Primitives - commit-wait on top of the interval clock.

wait_until_after(clock, t)
    Blocks until a fresh reading proves t is in the past, i.e. until
    earliest() > t. Every iteration re-queries the daemon, because its
    error estimate can change between readings.

consistent_operation(clock, prepare, commit)
    Two-phase helper for externally consistent operations:

        prepare()          acquire what the operation needs
        t = local now      the operation's timestamp
        commit(t)          record the operation as occurring at t
        wait_until_after(t)

    Success must not be revealed to any outside observer until
    consistent_operation returns. Once it has, every later operation
    anywhere gets a timestamp after t.

Cancellation:
    Both accept a threading.Event and/or a timeout in seconds. Either
    one ends the wait with WaitCancelledError before the next query is
    issued.
"""

import logging
import threading
import time
from typing import Callable, Optional

from ..errors import WaitCancelledError
from ..interfaces.tracking import NS_PER_SECOND, Reading

logger = logging.getLogger(__name__)

PrepareFunc = Callable[[], None]
CommitFunc = Callable[[int], None]


def wait_until_after(
    clock,
    target_ns: int,
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> Reading:
    """
    Block until the clock is sure the current time is after target_ns.

    Do not compare time.time_ns() against target_ns instead of calling
    this: the raw local clock ignores uncertainty.

    Args:
        clock: IntervalClock (anything with get() -> Reading)
        target_ns: Instant to wait out, epoch nanoseconds
        cancel: Event that abandons the wait when set
        timeout: Seconds before the wait is abandoned

    Returns:
        The Reading whose earliest() is after target_ns

    Raises:
        WaitCancelledError: cancel was set or timeout elapsed first
        TransportError, DecodeError, DaemonReplyError: from the clock
    """
    if cancel is None:
        cancel = threading.Event()
    deadline = None if timeout is None else time.monotonic() + timeout
    iterations = 0

    while True:
        if cancel.is_set():
            raise WaitCancelledError(WaitCancelledError.CANCELLED, target_ns)
        if deadline is not None and time.monotonic() >= deadline:
            raise WaitCancelledError(WaitCancelledError.DEADLINE, target_ns)

        reading = clock.get()
        iterations += 1
        earliest = reading.earliest()
        if earliest > target_ns:
            logger.debug(f"Target {target_ns} passed after {iterations} reading(s)")
            return reading

        delay = (target_ns - earliest) / NS_PER_SECOND
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())
            if delay >= remaining:
                # sleeping out the gap would cross the deadline; no further query
                if cancel.wait(remaining):
                    raise WaitCancelledError(WaitCancelledError.CANCELLED, target_ns)
                raise WaitCancelledError(WaitCancelledError.DEADLINE, target_ns)
        if cancel.wait(delay):
            raise WaitCancelledError(WaitCancelledError.CANCELLED, target_ns)


def consistent_operation(
    clock,
    prepare: PrepareFunc,
    commit: CommitFunc,
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> int:
    """
    Execute an externally consistent operation in two parts.

    prepare() takes no arguments and signals failure by raising; it
    should acquire resources (files, locks) and clean up after itself
    on failure. If it raises, commit is not called and no timestamp is
    issued.

    commit(t) records the operation as having occurred at t (epoch
    nanoseconds) and signals failure by raising. If it raises, the
    commit-wait is skipped.

    Otherwise the uncertainty around t is waited out and t returned.

    Returns:
        t, the operation's externally consistent timestamp

    Raises:
        Whatever prepare or commit raise, unchanged
        WaitCancelledError: the commit-wait was cancelled; the operation
            was committed at t but must not be reported as visible
    """
    prepare()

    t = clock.local_now_ns()
    commit(t)

    wait_until_after(clock, t, cancel=cancel, timeout=timeout)
    logger.debug(f"Consistent operation committed at {t}")
    return t
