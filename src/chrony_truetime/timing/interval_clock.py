"""
Interval Clock - TrueTime-style readings from chronyd.

Each get() queries the daemon once, captures the local clock right after
the reply arrives, applies the daemon's correction and attaches the
derived epsilon:

    now      = local + correction
    earliest = now - epsilon
    latest   = now + epsilon
"""

import logging
import time
from typing import Callable, Optional

from ..interfaces.tracking import Reading, TrackingResponse
from .uncertainty import derive

logger = logging.getLogger(__name__)


class IntervalClock:
    """
    Interval clock on top of a transport Session.

    The local time source is injectable so tests can pin "now".
    """

    def __init__(self, session, time_source: Callable[[], int] = time.time_ns):
        """
        Args:
            session: Anything with a query() -> TrackingResponse method
            time_source: Local clock in epoch nanoseconds
        """
        self.session = session
        self.time_source = time_source
        self.last_tracking: Optional[TrackingResponse] = None
        self.last_reading: Optional[Reading] = None

    def local_now_ns(self) -> int:
        """Raw local clock, no daemon round trip."""
        return self.time_source()

    def get(self) -> Reading:
        """
        Query the daemon and return a corrected Reading.

        Raises whatever the session raises (TransportError, DecodeError,
        DaemonReplyError).
        """
        tracking = self.session.query()
        local_ns = self.time_source()

        correction_ns, epsilon_ns = derive(tracking)
        reading = Reading(
            now_ns=local_ns + correction_ns,
            uncertainty_ns=epsilon_ns,
            uncorrected_ns=local_ns,
            correction_ns=correction_ns,
        )

        self.last_tracking = tracking
        self.last_reading = reading
        logger.debug(
            f"Reading: now={reading.now_ns} eps={epsilon_ns / 1e6:.3f}ms "
            f"correction={correction_ns / 1e6:+.3f}ms"
        )
        return reading
