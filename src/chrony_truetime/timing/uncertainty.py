"""
Uncertainty Model

Turns the daemon's tracking fields into the two numbers the interval
clock needs:

    correction  = current_correction
        Added to a raw local timestamp to get the daemon's best estimate
        of true time.

    epsilon     = root_dispersion + root_delay / 2
        Radius of the interval around the corrected estimate. Half the
        round-trip delay to the reference bounds path asymmetry, the
        dispersion bounds accumulated skew. The correction is not added
        to epsilon: it has already been applied to the point estimate.
        A malformed reply whose sum is negative clamps to zero.

Reference:
- https://listengine.tuxfamily.org/chrony.tuxfamily.org/chrony-users/2017/08/msg00014.html
"""

from typing import NamedTuple

from ..interfaces.tracking import TrackingResponse, seconds_to_ns


class Uncertainty(NamedTuple):
    """Signed correction and non-negative error bound, both in nanoseconds."""
    correction_ns: int
    epsilon_ns: int


def correction_ns(tracking: TrackingResponse) -> int:
    return seconds_to_ns(tracking.current_correction)


def epsilon_ns(tracking: TrackingResponse) -> int:
    seconds = max(0.0, tracking.root_dispersion + 0.5 * tracking.root_delay)
    return seconds_to_ns(seconds)


def derive(tracking: TrackingResponse) -> Uncertainty:
    """Derive the clock correction and epsilon from a tracking reply."""
    return Uncertainty(correction_ns(tracking), epsilon_ns(tracking))
