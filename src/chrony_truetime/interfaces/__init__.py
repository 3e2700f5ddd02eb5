"""Data contracts - decoded tracking replies and interval-clock readings."""

from .tracking import (
    AddressFamily,
    IPAddr,
    LeapStatus,
    Reading,
    RefTime,
    TrackingResponse,
)

__all__ = ['AddressFamily', 'IPAddr', 'LeapStatus', 'Reading', 'RefTime', 'TrackingResponse']
