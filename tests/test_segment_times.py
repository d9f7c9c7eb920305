"""Tests for heuristic segment time estimation."""

import numpy as np
import pytest

from pathgen.core.errors import ConfigurationError
from pathgen.core.vertex import Vertex, vertices_from_positions
from pathgen.timing import TimeEstimationMethod, estimate_segment_times
from pathgen.timing.segment_times import nfabian_time, velocity_ramp_time


def _scenario_vertices():
    return vertices_from_positions(
        [[0.0, 0.0, 1.0], [1.0, 2.0, 3.0], [2.0, 1.0, 5.0]], 4
    )


def test_velocity_ramp_trapezoidal():
    """d = 3 with v = a = 2: ramps cover 2 units in 2 s, cruise 1 unit in 0.5 s."""
    assert velocity_ramp_time(3.0, 2.0, 2.0) == pytest.approx(2.5)


def test_velocity_ramp_triangular():
    """d = 0.5 never reaches v_max: t = 2 sqrt(d / a) = 1."""
    assert velocity_ramp_time(0.5, 2.0, 2.0) == pytest.approx(1.0)


def test_velocity_ramp_continuous_at_switch():
    """At d = v²/a both branches give 2 v / a."""
    assert velocity_ramp_time(2.0, 2.0, 2.0) == pytest.approx(2.0)
    assert velocity_ramp_time(2.0 - 1e-12, 2.0, 2.0) == pytest.approx(2.0)


def test_estimate_scenario():
    times = estimate_segment_times(_scenario_vertices(), 2.0, 2.0)

    expected = [2.5, 2.0 + (np.sqrt(6.0) - 2.0) / 2.0]
    assert times.shape == (2,)
    assert np.allclose(times, expected)
    assert np.all(times > 0.0)


def test_tuning_constant_scales_velocity_ramp():
    base = estimate_segment_times(_scenario_vertices(), 2.0, 2.0)
    inflated = estimate_segment_times(_scenario_vertices(), 2.0, 2.0, tuning_constant=1.5)

    assert np.allclose(inflated, 1.5 * base)


def test_nfabian():
    vertices = _scenario_vertices()
    times = estimate_segment_times(vertices, 2.0, 2.0, method=TimeEstimationMethod.NFABIAN)

    t = 2.0 * 3.0 / 2.0
    assert times[0] == pytest.approx(t * (1.0 + 6.5 * np.exp(-t)))
    assert times[1] == pytest.approx(nfabian_time(np.sqrt(6.0), 2.0, 2.0, 6.5))


def test_zero_displacement_gets_minimum_time():
    vertices = [Vertex(2).add_constraint(0, [1.0, 1.0]) for _ in range(2)]

    times = estimate_segment_times(vertices, 1.0, 1.0)
    assert times[0] == pytest.approx(0.1)

    times = estimate_segment_times(vertices, 1.0, 1.0, minimum_time=0.5)
    assert times[0] == pytest.approx(0.5)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"v_max": 0.0, "a_max": 1.0},
        {"v_max": 1.0, "a_max": -1.0},
        {"v_max": 1.0, "a_max": 1.0, "tuning_constant": 0.0},
        {"v_max": 1.0, "a_max": 1.0, "minimum_time": 0.0},
    ],
)
def test_invalid_arguments(kwargs):
    with pytest.raises(ConfigurationError):
        estimate_segment_times(_scenario_vertices(), **kwargs)


def test_needs_two_vertices():
    with pytest.raises(ConfigurationError):
        estimate_segment_times(_scenario_vertices()[:1], 1.0, 1.0)
