"""Linear and nonlinear trajectory optimization."""

from pathgen.optimization.constraints import ConstraintReport, MaximumMagnitudeConstraint
from pathgen.optimization.linear import LinearOptimizer, LinearSolveReport, solve_segments
from pathgen.optimization.minimizer import Minimizer, MinimizeResult, ScipyMinimizer
from pathgen.optimization.nonlinear import NonlinearOptimizer, NonlinearResult, optimize_segments
from pathgen.optimization.parameters import (
    ConstraintAggregation,
    NonlinearOptimizationParameters,
    OptimizationMode,
)

__all__ = [
    "ConstraintReport",
    "MaximumMagnitudeConstraint",
    "LinearOptimizer",
    "LinearSolveReport",
    "solve_segments",
    "Minimizer",
    "MinimizeResult",
    "ScipyMinimizer",
    "NonlinearOptimizer",
    "NonlinearResult",
    "optimize_segments",
    "ConstraintAggregation",
    "NonlinearOptimizationParameters",
    "OptimizationMode",
]
