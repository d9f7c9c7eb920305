"""Heuristic initial segment durations from waypoint geometry."""

import logging
from enum import Enum, auto
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from pathgen.core.errors import ConfigurationError
from pathgen.core.vertex import Vertex

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_TIME = 0.1
DEFAULT_NFABIAN_CONSTANT = 6.5


class TimeEstimationMethod(Enum):
    """Heuristic used to turn a displacement into a duration."""
    VELOCITY_RAMP = auto()  # trapezoidal v/a profile, scaled by the tuning constant
    NFABIAN = auto()        # 2d/v (1 + c v/a exp(-2d/v))


def velocity_ramp_time(distance: float, v_max: float, a_max: float) -> float:
    """
    Rest-to-rest time of a trapezoidal velocity profile.

    If the distance is too short to reach v_max the profile is triangular:
    t = 2 sqrt(d / a). Otherwise t = v/a + d/v.
    """
    acceleration_time = v_max / a_max
    acceleration_distance = 0.5 * v_max * acceleration_time
    if distance < 2.0 * acceleration_distance:
        return 2.0 * np.sqrt(distance / a_max)
    return 2.0 * acceleration_time + (distance - 2.0 * acceleration_distance) / v_max


def nfabian_time(distance: float, v_max: float, a_max: float, constant: float) -> float:
    """Fabian's estimate, inflating short segments where acceleration dominates."""
    t = distance / v_max * 2.0
    return t * (1.0 + constant * v_max / a_max * np.exp(-t))


def estimate_segment_times(
    vertices: Sequence[Vertex],
    v_max: float,
    a_max: float,
    tuning_constant: Optional[float] = None,
    method: TimeEstimationMethod = TimeEstimationMethod.VELOCITY_RAMP,
    minimum_time: float = DEFAULT_MINIMUM_TIME,
) -> NDArray:
    """
    One strictly positive duration per segment.

    The heuristic tends to underestimate the time needed once higher
    derivatives must stay continuous, so the tuning constant inflates it.
    The result is a starting point for refinement, not a hard limit.

    Args:
        vertices: Ordered vertices, each with a position constraint
        v_max: Maximum velocity
        a_max: Maximum acceleration
        tuning_constant: Multiplier for VELOCITY_RAMP (default 1.0) or the
            exponential constant for NFABIAN (default 6.5)
        method: Estimation heuristic
        minimum_time: Floor applied to every duration (covers zero displacement)

    Returns:
        Durations (V-1,)
    """
    if len(vertices) < 2:
        raise ConfigurationError(f"At least two vertices are needed, got {len(vertices)}")
    if v_max <= 0.0 or a_max <= 0.0:
        raise ConfigurationError(f"v_max and a_max must be positive, got {v_max}, {a_max}")
    if minimum_time <= 0.0:
        raise ConfigurationError(f"minimum_time must be positive, got {minimum_time}")
    if tuning_constant is None:
        tuning_constant = (
            1.0 if method is TimeEstimationMethod.VELOCITY_RAMP else DEFAULT_NFABIAN_CONSTANT
        )
    if tuning_constant <= 0.0:
        raise ConfigurationError(f"tuning_constant must be positive, got {tuning_constant}")

    positions = [v.position for v in vertices]
    times = np.zeros(len(vertices) - 1)
    for i in range(len(times)):
        distance = float(np.linalg.norm(positions[i + 1] - positions[i]))
        if method is TimeEstimationMethod.VELOCITY_RAMP:
            t = tuning_constant * velocity_ramp_time(distance, v_max, a_max)
        else:
            t = nfabian_time(distance, v_max, a_max, tuning_constant)
        times[i] = max(minimum_time, t)

    logger.debug("Estimated segment times (%s): %s", method.name, times)
    return times
