"""
Exception hierarchy for chrony-truetime.

Every error raised by the library derives from TrueTimeError so callers
can catch the whole family, while still telling apart "the daemon is
unreachable" (TransportError) from "we stopped waiting by our own
deadline" (WaitCancelledError).
"""

from typing import Optional


class TrueTimeError(Exception):
    """Base class for all chrony-truetime errors."""


class ConnectError(TrueTimeError):
    """Address resolution or socket setup failed while opening a session."""


class TransportError(TrueTimeError):
    """A tracking request could not be completed over UDP."""


class EmptyReadError(TransportError):
    """The daemon's address delivered a zero-length datagram."""


class ShortReadError(TransportError):
    """A datagram from the daemon was shorter than a tracking reply."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"short read: expected {expected} bytes, got {got} bytes")
        self.expected = expected
        self.got = got


class TransportTimeoutError(TransportError):
    """No matching reply arrived before the per-request deadline."""


class DecodeError(TrueTimeError):
    """A buffer could not be decoded as a tracking reply."""


class DaemonReplyError(TrueTimeError):
    """The daemon answered, but not with a successful tracking reply."""

    def __init__(self, message: str, status: int = 0, reply: int = 0):
        super().__init__(message)
        self.status = status
        self.reply = reply


class SyncNotAchievedError(TrueTimeError):
    """The readiness gate gave up before the daemon reported usable sync."""


class WaitCancelledError(TrueTimeError):
    """
    A commit-wait was abandoned before the target instant was verified.

    Attributes:
        reason: "cancelled" when the cancel event fired, "deadline" when
                the timeout ran out
    """

    CANCELLED = "cancelled"
    DEADLINE = "deadline"

    def __init__(self, reason: str = CANCELLED, target_ns: Optional[int] = None):
        message = f"wait {reason}"
        if target_ns is not None:
            message += f" before target {target_ns}"
        super().__init__(message)
        self.reason = reason
        self.target_ns = target_ns
