"""Timing - uncertainty model and interval clock."""

from .interval_clock import IntervalClock
from .uncertainty import Uncertainty, derive

__all__ = ['IntervalClock', 'Uncertainty', 'derive']
