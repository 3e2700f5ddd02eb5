"""
chrony-truetime: TrueTime-style interval clock backed by chronyd

This package turns the local chronyd's error estimates into a clock that
returns an interval instead of a point: a corrected timestamp together
with an epsilon bounding its error. On top of that interval it provides
the commit-wait primitives used for external consistency.

Architecture:
    application → consistency → interval clock → uncertainty model
                → C&M codec / UDP session → chronyd (127.0.0.1:323)

The package is a LIBRARY, not a consensus system. It provides:
    1. Readings: now ± epsilon, with earliest()/latest()
    2. wait_until_after(t): block until t is certainly past
    3. consistent_operation(prepare, commit): two-phase commit-wait

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import TrueTimeClient
from .consistency.primitives import consistent_operation, wait_until_after
from .errors import (
    ConnectError,
    DaemonReplyError,
    DecodeError,
    SyncNotAchievedError,
    TransportError,
    TrueTimeError,
    WaitCancelledError,
)
from .interfaces.tracking import Reading, TrackingResponse
from .timing.interval_clock import IntervalClock
from .transport.session import Session

__all__ = [
    "TrueTimeClient",
    "Session",
    "IntervalClock",
    "Reading",
    "TrackingResponse",
    "wait_until_after",
    "consistent_operation",
    "TrueTimeError",
    "ConnectError",
    "TransportError",
    "DecodeError",
    "DaemonReplyError",
    "SyncNotAchievedError",
    "WaitCancelledError",
    "__version__",
]
