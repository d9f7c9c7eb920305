"""Nonlinear refinement of segment times (and free derivatives)."""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray, ArrayLike

from pathgen.algebra.protocols import LinearAlgebraBackend
from pathgen.core.derivatives import DerivativeLike
from pathgen.core.errors import ConfigurationError, DegenerateInputError
from pathgen.core.segment import Segment
from pathgen.core.vertex import Vertex
from pathgen.optimization.constraints import (
    ConstraintReport,
    MaximumMagnitudeConstraint,
    make_constraint,
    soft_penalty,
)
from pathgen.optimization.linear import LinearOptimizer
from pathgen.optimization.minimizer import Minimizer, ScipyMinimizer
from pathgen.optimization.parameters import NonlinearOptimizationParameters, OptimizationMode

logger = logging.getLogger(__name__)

MAX_SCALING_ROUNDS = 5


@dataclass(eq=False)
class NonlinearResult:
    """
    Refined segments plus how the refinement went.

    Unpacks as ``segments, converged = result``.
    """

    segments: list[Segment]
    durations: NDArray
    converged: bool
    objective: float
    initial_objective: float
    cost: float
    iterations: int
    evaluations: int
    message: str
    constraint_reports: list[ConstraintReport] = field(default_factory=list)
    times_scaled: bool = False  # durations were stretched uniformly after the search

    @property
    def constraints_satisfied(self) -> bool:
        return all(r.satisfied for r in self.constraint_reports)

    @property
    def total_duration(self) -> float:
        return float(np.sum(self.durations))

    def __iter__(self) -> Iterator[Union[list[Segment], bool]]:
        yield self.segments
        yield self.converged


class NonlinearOptimizer:
    """
    Outer loop around LinearOptimizer.

    Minimizes  cost(T, d_p) + time_penalty Σ T_k + Σ soft penalties
    over log-durations x (T = exp(x), so T stays positive) and, in
    TIME_AND_FREE_DERIVATIVES mode, the free derivatives as well.
    """

    def __init__(
        self,
        dimension: int,
        polynomial_order: int,
        parameters: Optional[NonlinearOptimizationParameters] = None,
        minimizer: Optional[Minimizer] = None,
        backend: Optional[LinearAlgebraBackend] = None,
    ):
        """
        Initialize nonlinear optimizer.

        Args:
            dimension: Spatial dimension D
            polynomial_order: Number of coefficients N per polynomial (even)
            parameters: Optimization knobs (defaults if not provided)
            minimizer: Local minimizer (scipy, configured from parameters, if not provided)
            backend: Linear algebra backend for the inner solve
        """
        self.parameters = parameters if parameters is not None else NonlinearOptimizationParameters()
        self.linear = LinearOptimizer(
            dimension, polynomial_order, backend=backend, fallback_log_level=logging.DEBUG
        )
        if minimizer is None:
            minimizer = ScipyMinimizer(
                method=self.parameters.algorithm,
                max_iterations=self.parameters.max_iterations,
                f_rel=self.parameters.f_rel,
                x_rel=self.parameters.x_rel,
            )
        self.minimizer = minimizer
        self.constraints: list[MaximumMagnitudeConstraint] = []

        self._initial_durations: Optional[NDArray] = None
        self._initial_segments: Optional[list[Segment]] = None
        self._initial_free: Optional[NDArray] = None
        self._result: Optional[NonlinearResult] = None
        self._penalty_scale = 1.0
        self._fallbacks = 0

    @property
    def dimension(self) -> int:
        return self.linear.dimension

    @property
    def N(self) -> int:
        return self.linear.N

    def setup_from_vertices(
        self,
        vertices: Sequence[Vertex],
        durations: ArrayLike,
        derivative_to_optimize: DerivativeLike,
    ) -> None:
        """
        Validate input and solve the linear problem at the initial durations.

        The soft constraint penalties are scaled by the penalty-free
        objective found here, so soft_constraint_weight is relative to the
        size of the problem rather than absolute.
        """
        self.linear.setup_from_vertices(vertices, durations, derivative_to_optimize)
        self._initial_durations = self.linear.get_segment_durations()
        self._initial_segments = self.linear.solve_linear()
        self._initial_free = self.linear.get_free_derivatives()
        self._result = None

        report = self.linear.solve_report
        if report is not None and report.used_least_squares:
            logger.warning(
                "Initial linear solve used least squares (cond=%.3g)", report.condition_number
            )
        scale = self.linear.compute_cost() + self.parameters.time_penalty * float(
            np.sum(self._initial_durations)
        )
        self._penalty_scale = scale if np.isfinite(scale) and scale > 0.0 else 1.0

    def add_maximum_magnitude_constraint(
        self,
        derivative: DerivativeLike,
        bound: float,
        dimensions: Optional[Sequence[int]] = None,
    ) -> None:
        """Register |d^k p / dt^k| <= bound as a soft constraint."""
        self.constraints.append(make_constraint(derivative, bound, dimensions))

    def solve_linear(self) -> list[Segment]:
        """Linear solution at the initial durations."""
        return self.get_initial_segments()

    def get_initial_segments(self) -> list[Segment]:
        self._require_setup()
        assert self._initial_segments is not None
        return list(self._initial_segments)

    def get_segments(self) -> list[Segment]:
        """Refined segments after optimize(), initial ones before."""
        if self._result is not None:
            return list(self._result.segments)
        return self.get_initial_segments()

    def get_trajectory(self) -> "Trajectory":
        from pathgen.sampling.trajectory import Trajectory

        return Trajectory(self.get_segments())

    @property
    def result(self) -> Optional[NonlinearResult]:
        return self._result

    def initial_parameters(self) -> NDArray:
        """Flat starting vector: log-durations, then free derivatives if optimized."""
        self._require_setup()
        assert self._initial_durations is not None and self._initial_free is not None
        x = np.log(self._initial_durations)
        if self.parameters.mode is OptimizationMode.TIME_AND_FREE_DERIVATIVES:
            x = np.concatenate((x, self._initial_free.ravel()))
        return x

    def initial_steps(self, x0: NDArray) -> NDArray:
        """Per-parameter first step: relative in T, scaled by magnitude for derivatives."""
        n = self._segment_count
        steps = np.full(x0.shape, self.parameters.initial_stepsize_rel)
        steps[n:] *= np.maximum(1.0, np.abs(x0[n:]))
        return steps

    def objective(self, x: NDArray) -> float:
        """
        Total objective at a parameter vector; +inf for degenerate iterates.

        Side effect: the inner LinearOptimizer holds the segments for x.
        """
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            try:
                durations, cost = self._apply(x)
                penalty = self._constraint_penalty(self.linear.get_segments())
            except (ValueError, np.linalg.LinAlgError) as exc:
                logger.debug("Degenerate iterate %s: %s", x, exc)
                return np.inf
            total = cost + self.parameters.time_penalty * float(np.sum(durations)) + penalty
        return float(total) if np.isfinite(total) else np.inf

    def optimize(self) -> NonlinearResult:
        """
        Run the refinement.

        Never raises for nonconvergence or infeasible bounds: the best iterate
        is returned with converged=False or failing constraint reports.
        """
        self._require_setup()
        self._fallbacks = 0
        x0 = self.initial_parameters()
        f0 = self.objective(x0)
        outcome = self.minimizer.minimize(self.objective, x0, self.initial_steps(x0))

        x_best = np.asarray(outcome.x, dtype=float)
        f_best = self.objective(x_best)
        if not f_best <= f0:
            x_best, f_best = x0, self.objective(x0)
        reports = self._reports()

        times_scaled = False
        if (
            self.parameters.scale_to_meet_constraints
            and self.parameters.mode is OptimizationMode.TIME
            and not all(r.satisfied for r in reports)
        ):
            scaled = self._scale_to_meet_constraints(x_best, reports, f0)
            if scaled is None:
                self.objective(x_best)
            else:
                x_best, f_best, reports = scaled
                times_scaled = True

        if self._fallbacks:
            logger.warning(
                "Least-squares fallback used in %d linear solves during optimization",
                self._fallbacks,
            )

        segments = self.linear.get_segments()
        durations = self.linear.get_segment_durations()
        self._result = NonlinearResult(
            segments=segments,
            durations=durations,
            converged=outcome.converged,
            objective=f_best,
            initial_objective=f0,
            cost=self.linear.compute_cost(),
            iterations=outcome.iterations,
            evaluations=outcome.evaluations,
            message=outcome.message,
            constraint_reports=reports,
            times_scaled=times_scaled,
        )

        logger.info(
            "Nonlinear optimization (%s) %s after %d iterations, %d evaluations: "
            "objective %.6g -> %.6g, total time %.4f -> %.4f",
            self.parameters.mode.name,
            "converged" if outcome.converged else "stopped",
            outcome.iterations,
            outcome.evaluations,
            f0,
            f_best,
            float(np.sum(self._initial_durations)),
            self._result.total_duration,
        )
        if not outcome.converged:
            logger.warning("Nonlinear optimization did not converge: %s", outcome.message)
        for report in reports:
            if not report.satisfied:
                logger.warning(
                    "Constraint on derivative %d violated: max %.4g > bound %.4g",
                    report.derivative,
                    report.max_magnitude,
                    report.bound,
                )
        return self._result

    @property
    def _segment_count(self) -> int:
        assert self._initial_durations is not None
        return self._initial_durations.size

    def _apply(self, x: NDArray) -> tuple[NDArray, float]:
        """Load x into the inner optimizer; returns (durations, cost)."""
        assert self._initial_durations is not None
        n = self._segment_count
        durations = np.exp(np.asarray(x[:n], dtype=float))
        ratio = durations / self._initial_durations
        limit = self.parameters.max_duration_ratio
        if np.any(~np.isfinite(ratio)) or np.any(ratio > limit) or np.any(ratio < 1.0 / limit):
            raise DegenerateInputError(f"Durations {durations} left the admissible range")

        self.linear.update_segment_durations(durations)
        if self.parameters.mode is OptimizationMode.TIME:
            self.linear.solve_linear()
            report = self.linear.solve_report
            if report is not None and report.used_least_squares:
                self._fallbacks += 1
        else:
            self.linear.set_free_derivatives(x[n:])
        return durations, self.linear.compute_cost()

    def _reports(self) -> list[ConstraintReport]:
        segments = self.linear.get_segments()
        return [c.report(segments, self.parameters.constraint_tolerance) for c in self.constraints]

    def _scale_to_meet_constraints(
        self, x: NDArray, reports: list[ConstraintReport], f_limit: float
    ) -> Optional[tuple[NDArray, float, list[ConstraintReport]]]:
        """
        Stretch all durations by a common factor until every bound holds.

        Stretching by f divides derivative k by f**k when only positions are
        fixed, so one round usually suffices; fixed higher derivatives can
        need more. Gives up (returns None) when the worst ratio stops
        shrinking, the durations leave the admissible range, or the stretched
        objective exceeds f_limit.
        """
        n = self._segment_count
        worst = max(r.max_magnitude / r.bound for r in reports)
        start = np.array(x, dtype=float)
        x = start.copy()
        for _ in range(MAX_SCALING_ROUNDS):
            factor = max(
                (r.max_magnitude / r.bound) ** (1.0 / r.derivative)
                for r in reports
                if not r.satisfied
            )
            x[:n] += np.log(factor)
            f = self.objective(x)
            if not np.isfinite(f):
                return None
            reports = self._reports()
            if all(r.satisfied for r in reports):
                if not f <= f_limit:
                    return None
                logger.info(
                    "Stretched segment times by %.4g to meet constraints",
                    float(np.exp(x[0] - start[0])),
                )
                return x, f, reports
            ratio = max(r.max_magnitude / r.bound for r in reports)
            if not ratio < worst:
                return None
            worst = ratio
        return None

    def _constraint_penalty(self, segments: Sequence[Segment]) -> float:
        p = self.parameters
        return self._penalty_scale * sum(
            soft_penalty(
                c.relative_excess(segments, p.constraint_sampling_interval, p.constraint_aggregation),
                p.soft_constraint_weight,
                p.soft_constraint_sharpness,
            )
            for c in self.constraints
        )

    def _require_setup(self) -> None:
        if self._initial_segments is None:
            raise RuntimeError("setup_from_vertices() has not been called")


def optimize_segments(
    vertices: Sequence[Vertex],
    initial_durations: ArrayLike,
    derivative_to_optimize: DerivativeLike,
    polynomial_order: int,
    parameters: Optional[NonlinearOptimizationParameters] = None,
    constraints: Sequence[tuple[DerivativeLike, float]] = (),
) -> NonlinearResult:
    """Functional form: setup, register (derivative, bound) pairs, optimize."""
    if len(vertices) < 2:
        raise ConfigurationError(f"At least two vertices are needed, got {len(vertices)}")
    optimizer = NonlinearOptimizer(vertices[0].dimension, polynomial_order, parameters)
    optimizer.setup_from_vertices(vertices, initial_durations, derivative_to_optimize)
    for derivative, bound in constraints:
        optimizer.add_maximum_magnitude_constraint(derivative, bound)
    return optimizer.optimize()
