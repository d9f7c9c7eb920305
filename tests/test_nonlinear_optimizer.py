"""
Tests for nonlinear refinement of segment times.

Uses the three-waypoint minimum-snap scenario throughout. A stub minimizer
stands in for scipy where the test is about bookkeeping rather than search.
"""

import logging

import numpy as np
import pytest

from pathgen.algebra import DenseBackend
from pathgen.core.derivatives import DerivativeOrder
from pathgen.core.errors import ConfigurationError
from pathgen.core.vertex import vertices_from_positions
from pathgen.optimization import (
    ConstraintAggregation,
    LinearOptimizer,
    MaximumMagnitudeConstraint,
    MinimizeResult,
    NonlinearOptimizationParameters,
    NonlinearOptimizer,
    OptimizationMode,
    optimize_segments,
    solve_segments,
)
from pathgen.optimization.constraints import soft_penalty
from pathgen.sampling import Trajectory
from pathgen.timing import estimate_segment_times

N = 10


class StubMinimizer:
    """Returns the starting point without searching."""

    def __init__(self):
        self.calls = 0

    def minimize(self, objective, x0, initial_step):
        self.calls += 1
        return MinimizeResult(
            x=np.array(x0, dtype=float),
            fun=objective(x0),
            converged=False,
            iterations=0,
            evaluations=1,
            message="stub",
        )


class CholeskyFailingBackend(DenseBackend):
    """Dense backend whose Cholesky always fails, forcing least squares."""

    def cho_factor(self, A):
        raise np.linalg.LinAlgError("not positive definite")


def _scenario():
    vertices = vertices_from_positions(
        [[0.0, 0.0, 1.0], [1.0, 2.0, 3.0], [2.0, 1.0, 5.0]], DerivativeOrder.SNAP
    )
    return vertices, estimate_segment_times(vertices, 2.0, 2.0)


def _optimizer(parameters=None, minimizer=None):
    vertices, durations = _scenario()
    opt = NonlinearOptimizer(3, N, parameters=parameters, minimizer=minimizer)
    opt.setup_from_vertices(vertices, durations, DerivativeOrder.SNAP)
    return opt


def _max_velocity(segments):
    return Trajectory(segments).compute_max_magnitude(DerivativeOrder.VELOCITY)[1]


def test_loose_bounds_are_reported_satisfied():
    opt = _optimizer()
    opt.add_maximum_magnitude_constraint(DerivativeOrder.VELOCITY, 1e6)
    opt.add_maximum_magnitude_constraint(DerivativeOrder.ACCELERATION, 1e6)

    result = opt.optimize()

    assert result.constraints_satisfied
    assert not result.times_scaled
    assert len(result.constraint_reports) == 2
    assert result.objective <= result.initial_objective
    assert np.all(result.durations > 0.0)
    assert result.evaluations > 0


def test_restart_from_refined_times_stays_put():
    """A second run started at the first run's durations is already near optimal."""
    vertices, durations = _scenario()
    first = optimize_segments(vertices, durations, DerivativeOrder.SNAP, N)

    second = optimize_segments(vertices, first.durations, DerivativeOrder.SNAP, N)

    linear = LinearOptimizer(3, N)
    linear.setup_from_vertices(vertices, first.durations, DerivativeOrder.SNAP)
    linear.solve_linear()
    cost = linear.compute_cost()
    objective = cost + 500.0 * float(np.sum(first.durations))

    assert first.converged
    assert second.converged
    assert np.allclose(second.durations, first.durations, rtol=0.1)
    assert second.initial_objective == pytest.approx(objective, rel=1e-9)
    assert second.objective <= objective * (1.0 + 1e-12)
    assert second.objective >= objective * (1.0 - 1e-2)
    assert second.cost == pytest.approx(cost, rel=0.5)


def test_tight_velocity_bound_slows_trajectory():
    parameters = NonlinearOptimizationParameters(time_penalty=10.0)
    opt = _optimizer(parameters)
    initial_velocity = _max_velocity(opt.get_initial_segments())
    opt.add_maximum_magnitude_constraint(DerivativeOrder.VELOCITY, 0.5 * initial_velocity)

    result = opt.optimize()

    assert result.objective < result.initial_objective
    assert _max_velocity(result.segments) < initial_velocity
    assert result.constraint_reports[0].max_magnitude < initial_velocity


def test_infeasible_bound_is_reported_not_raised():
    """A fixed start velocity of 3 can never meet |v| <= 1."""
    vertices, durations = _scenario()
    vertices[0].add_constraint(DerivativeOrder.VELOCITY, [3.0, 0.0, 0.0])
    opt = NonlinearOptimizer(3, N, NonlinearOptimizationParameters(max_iterations=20))
    opt.setup_from_vertices(vertices, durations, DerivativeOrder.SNAP)
    opt.add_maximum_magnitude_constraint(DerivativeOrder.VELOCITY, 1.0)

    result = opt.optimize()

    assert not result.constraints_satisfied
    report = result.constraint_reports[0]
    assert report.max_magnitude >= 3.0 - 1e-9
    assert report.relative_excess > 0.0
    assert np.allclose(result.segments[0].evaluate(0.0, 1), [3.0, 0.0, 0.0])
    assert not result.times_scaled


def _fast_scenario():
    vertices, _ = _scenario()
    return vertices, estimate_segment_times(vertices, 4.0, 10.0)


def test_meetable_bounds_are_met_with_defaults():
    vertices, durations = _fast_scenario()

    result = optimize_segments(
        vertices,
        durations,
        DerivativeOrder.SNAP,
        N,
        constraints=[(DerivativeOrder.VELOCITY, 1.0), (DerivativeOrder.ACCELERATION, 1.0)],
    )

    assert result.constraints_satisfied
    trajectory = Trajectory(result.segments)
    for derivative in (DerivativeOrder.VELOCITY, DerivativeOrder.ACCELERATION):
        assert trajectory.compute_max_magnitude(derivative)[1] <= 1.0 + 1e-3
    assert result.objective <= result.initial_objective
    assert np.allclose(trajectory.evaluate(trajectory.total_duration), [2.0, 1.0, 5.0], atol=1e-6)


def test_penalty_alone_keeps_violation_small():
    vertices, durations = _fast_scenario()
    parameters = NonlinearOptimizationParameters(scale_to_meet_constraints=False)

    result = optimize_segments(
        vertices,
        durations,
        DerivativeOrder.SNAP,
        N,
        parameters,
        constraints=[(DerivativeOrder.VELOCITY, 1.0), (DerivativeOrder.ACCELERATION, 1.0)],
    )

    assert not result.times_scaled
    for report in result.constraint_reports:
        assert report.relative_excess < 0.1


def test_penalty_scales_with_penalty_free_objective():
    plain = _optimizer()
    opt = _optimizer()
    peak = _max_velocity(opt.get_initial_segments())
    opt.add_maximum_magnitude_constraint(DerivativeOrder.VELOCITY, 0.9 * peak)
    x0 = opt.initial_parameters()
    p = opt.parameters

    base = plain.objective(x0)
    excess = opt.constraints[0].relative_excess(
        opt.get_initial_segments(), p.constraint_sampling_interval, p.constraint_aggregation
    )
    penalty = soft_penalty(excess, p.soft_constraint_weight, p.soft_constraint_sharpness)

    assert excess > 0.0
    assert opt.objective(x0) == pytest.approx(base * (1.0 + penalty), rel=1e-9)


def test_stretch_restores_violated_bounds():
    """With no search at all, a uniform stretch alone meets the bounds."""
    opt = _optimizer(minimizer=StubMinimizer())
    peak = _max_velocity(opt.get_initial_segments())
    opt.add_maximum_magnitude_constraint(DerivativeOrder.VELOCITY, 0.8 * peak)

    result = opt.optimize()

    assert result.times_scaled
    assert result.constraints_satisfied
    assert result.objective <= result.initial_objective
    assert np.allclose(result.durations, 1.25 * _scenario()[1], rtol=1e-6)
    assert _max_velocity(result.segments) == pytest.approx(0.8 * peak, rel=1e-3)


def test_least_squares_fallback_is_summarized_once(caplog):
    vertices, durations = _scenario()
    opt = NonlinearOptimizer(
        3, N, NonlinearOptimizationParameters(max_iterations=5), backend=CholeskyFailingBackend()
    )
    with caplog.at_level(logging.WARNING, logger="pathgen"):
        opt.setup_from_vertices(vertices, durations, DerivativeOrder.SNAP)
    assert "Initial linear solve used least squares" in caplog.text
    caplog.clear()

    with caplog.at_level(logging.WARNING, logger="pathgen"):
        result = opt.optimize()

    assert result.evaluations > 1
    summaries = [r for r in caplog.records if "linear solves" in r.getMessage()]
    assert len(summaries) == 1
    assert summaries[0].name == "pathgen.optimization.nonlinear"
    assert not [r for r in caplog.records if r.name == "pathgen.optimization.linear"]


def test_stub_minimizer_is_a_no_op(caplog):
    vertices, durations = _scenario()
    stub = StubMinimizer()
    opt = _optimizer(minimizer=stub)

    with caplog.at_level(logging.WARNING, logger="pathgen.optimization.nonlinear"):
        result = opt.optimize()

    assert stub.calls == 1
    assert not result.converged
    assert result.message == "stub"
    assert "did not converge" in caplog.text
    assert np.allclose(result.durations, durations)
    assert result.objective == pytest.approx(result.initial_objective)

    initial = solve_segments(vertices, durations, DerivativeOrder.SNAP, N)
    for a, b in zip(result.segments, initial):
        assert np.allclose(a.coefficients, b.coefficients)


def test_result_unpacks():
    opt = _optimizer(minimizer=StubMinimizer())

    segments, converged = opt.optimize()

    assert len(segments) == 2
    assert converged is False
    assert opt.get_segments()[0] is segments[0]
    assert len(opt.get_trajectory()) == 2


def test_joint_mode_keeps_vertex_constraints():
    parameters = NonlinearOptimizationParameters(
        mode=OptimizationMode.TIME_AND_FREE_DERIVATIVES, max_iterations=10
    )
    vertices, _ = _scenario()
    opt = _optimizer(parameters)

    x0 = opt.initial_parameters()
    assert x0.shape == (2 + 3 * opt.linear.n_free,)

    result = opt.optimize()

    assert result.objective <= result.initial_objective
    segments = result.segments
    for k, value in vertices[0].constraints.items():
        assert np.allclose(segments[0].evaluate(0.0, k), value, atol=1e-8)
    for k, value in vertices[2].constraints.items():
        assert np.allclose(segments[1].evaluate(segments[1].duration, k), value, atol=1e-6)
    for k in range(N // 2):
        assert np.allclose(
            segments[0].evaluate(segments[0].duration, k),
            segments[1].evaluate(0.0, k),
            rtol=1e-6,
            atol=1e-6,
        )


def test_objective_is_infinite_outside_duration_range():
    opt = _optimizer()
    x0 = opt.initial_parameters()

    assert np.isfinite(opt.objective(x0))
    assert opt.objective(x0 + 100.0) == np.inf
    assert opt.objective(x0 - 100.0) == np.inf


def test_objective_adds_time_penalty():
    no_penalty = _optimizer(NonlinearOptimizationParameters(time_penalty=0.0))
    with_penalty = _optimizer(NonlinearOptimizationParameters(time_penalty=2.0))
    x0 = no_penalty.initial_parameters()

    difference = with_penalty.objective(x0) - no_penalty.objective(x0)

    assert difference == pytest.approx(2.0 * float(np.sum(np.exp(x0))))


def test_optimize_requires_setup():
    with pytest.raises(RuntimeError):
        NonlinearOptimizer(3, N).optimize()


def test_optimize_segments_functional():
    vertices, durations = _scenario()

    result = optimize_segments(
        vertices,
        durations,
        DerivativeOrder.SNAP,
        N,
        NonlinearOptimizationParameters(max_iterations=50),
        constraints=[(DerivativeOrder.VELOCITY, 1e6)],
    )

    assert len(result.constraint_reports) == 1
    assert result.constraints_satisfied
    with pytest.raises(ConfigurationError):
        optimize_segments(vertices[:1], [], DerivativeOrder.SNAP, N)


@pytest.mark.parametrize("aggregation", list(ConstraintAggregation))
def test_relative_excess(aggregation):
    vertices, durations = _scenario()
    segments = solve_segments(vertices, durations, DerivativeOrder.SNAP, N)
    peak = _max_velocity(segments)

    loose = MaximumMagnitudeConstraint(1, 10.0 * peak)
    tight = MaximumMagnitudeConstraint(1, 0.5 * peak)

    assert loose.relative_excess(segments, 0.01, aggregation) <= 0.0
    assert tight.relative_excess(segments, 0.01, aggregation) > 0.0
    if aggregation is ConstraintAggregation.MAXIMUM:
        assert tight.relative_excess(segments, 0.01, aggregation) == pytest.approx(1.0, rel=1e-3)


def test_constraint_validation():
    with pytest.raises(ConfigurationError):
        MaximumMagnitudeConstraint(0, 1.0)
    with pytest.raises(ConfigurationError):
        MaximumMagnitudeConstraint(1, 0.0)
    assert str(MaximumMagnitudeConstraint(2, 3.0)) == "|acceleration| <= 3"


def test_soft_penalty():
    assert soft_penalty(-1.0, 100.0, 10.0) == 0.0
    assert soft_penalty(0.0, 100.0, 10.0) == 0.0
    assert 0.0 < soft_penalty(0.01, 100.0, 10.0) < soft_penalty(0.1, 100.0, 10.0)
    assert np.isfinite(soft_penalty(1e6, 100.0, 10.0))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_iterations": 0},
        {"f_rel": 0.0},
        {"time_penalty": -1.0},
        {"max_duration_ratio": 1.0},
        {"algorithm": "BOBYQA"},
        {"mode": "time"},
    ],
)
def test_parameter_validation(kwargs):
    with pytest.raises(ConfigurationError):
        NonlinearOptimizationParameters(**kwargs)
