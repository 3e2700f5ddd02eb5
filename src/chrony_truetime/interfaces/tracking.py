"""
Tracking Data Models

These dataclasses define the contract between chrony-truetime and its
consumers. A TrackingResponse is the decoded form of the daemon's reply
to a tracking request; a Reading is the interval-clock value handed to
applications.

All timestamps are integer nanoseconds since the Unix epoch and all
durations are integer nanoseconds, so arithmetic on them is exact.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional
import ipaddress
import json

NS_PER_SECOND = 1_000_000_000


def ns_to_datetime(ns: int) -> datetime:
    """Convert epoch nanoseconds to an aware UTC datetime (microsecond resolution)."""
    seconds, remainder = divmod(ns, NS_PER_SECOND)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=remainder // 1000
    )


def seconds_to_ns(seconds: float) -> int:
    """Convert float seconds to integer nanoseconds, truncating toward zero."""
    return int(seconds * NS_PER_SECOND)


class AddressFamily(IntEnum):
    """Address family tag of the daemon's IPAddr record."""
    UNSPEC = 0   # No peer selected (not synchronised)
    INET4 = 1
    INET6 = 2
    ID = 3       # Reference clock identifier, not a network address


class LeapStatus(IntEnum):
    """Leap-second indicator reported by the daemon."""
    NORMAL = 0
    INSERT_SECOND = 1
    DELETE_SECOND = 2
    UNSYNCHRONISED = 3


@dataclass
class IPAddr:
    """Peer address record: 16 address bytes, a family tag and padding."""
    addr: bytes = b'\x00' * 16
    family: int = AddressFamily.UNSPEC
    padding: int = 0

    @property
    def ip(self) -> Optional[str]:
        """Printable address, or None when the record holds no IP."""
        if self.family == AddressFamily.INET4:
            return str(ipaddress.IPv4Address(self.addr[:4]))
        if self.family == AddressFamily.INET6:
            return str(ipaddress.IPv6Address(self.addr[:16]))
        return None


@dataclass
class RefTime:
    """Reference time as sent on the wire: 64-bit seconds split high/low, plus nanoseconds."""
    sec_high: int = 0
    sec_low: int = 0
    nsec: int = 0

    @property
    def seconds(self) -> int:
        return (self.sec_high << 32) + self.sec_low

    @property
    def ns(self) -> int:
        return self.seconds * NS_PER_SECOND + self.nsec

    def to_datetime(self) -> datetime:
        return ns_to_datetime(self.ns)


@dataclass
class TrackingResponse:
    """
    Decoded reply to a tracking request.

    Header fields mirror the C&M reply header; the compact-float fields
    are already converted to Python floats (seconds, or ppm where named).
    """
    # Header
    version: int = 0
    pkt_type: int = 0
    command: int = 0
    reply: int = 0
    status: int = 0
    sequence: int = 0

    # Tracking payload
    ref_id: int = 0
    addr: IPAddr = field(default_factory=IPAddr)
    stratum: int = 0
    leap_status: int = LeapStatus.NORMAL
    ref_time: RefTime = field(default_factory=RefTime)
    current_correction: float = 0.0   # seconds, local clock slow (+) / fast (-)
    last_offset: float = 0.0
    rms_offset: float = 0.0
    freq_ppm: float = 0.0
    resid_freq_ppm: float = 0.0
    skew_ppm: float = 0.0
    root_delay: float = 0.0
    root_dispersion: float = 0.0
    last_update_interval: float = 0.0

    @property
    def ref_id_name(self) -> str:
        return f"{self.ref_id:08X}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data['addr'] = {'ip': self.addr.ip, 'family': int(self.addr.family)}
        data['ref_id'] = self.ref_id_name
        data['ref_time'] = self.ref_time.to_datetime().isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class Reading:
    """
    An interval-clock reading: a corrected timestamp and the radius of
    the interval around it that contains true time.

    earliest() never overstates how far time has advanced, so ordering
    decisions must use it rather than now_ns.
    """
    now_ns: int               # corrected timestamp
    uncertainty_ns: int       # epsilon, never negative
    uncorrected_ns: int = 0   # local clock before correction
    correction_ns: int = 0    # correction applied to uncorrected_ns

    def earliest(self) -> int:
        return self.now_ns - self.uncertainty_ns

    def latest(self) -> int:
        return self.now_ns + self.uncertainty_ns

    def after(self, t_ns: int) -> bool:
        """True if t_ns has definitely passed."""
        return self.earliest() > t_ns

    def before(self, t_ns: int) -> bool:
        """True if t_ns has definitely not arrived yet."""
        return self.latest() < t_ns

    @property
    def now(self) -> datetime:
        return ns_to_datetime(self.now_ns)

    def to_dict(self) -> dict:
        return {
            'now_ns': self.now_ns,
            'now': self.now.isoformat(),
            'uncertainty_ns': self.uncertainty_ns,
            'earliest_ns': self.earliest(),
            'latest_ns': self.latest(),
            'correction_ns': self.correction_ns,
        }
