"""Initial time allocation."""

from pathgen.timing.segment_times import (
    TimeEstimationMethod,
    estimate_segment_times,
    nfabian_time,
    velocity_ramp_time,
)

__all__ = [
    "TimeEstimationMethod",
    "estimate_segment_times",
    "nfabian_time",
    "velocity_ramp_time",
]
