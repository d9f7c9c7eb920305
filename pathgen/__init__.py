"""
Pathgen: minimum-derivative polynomial trajectories through waypoints.

This library generates smooth piecewise-polynomial paths with support for:
- Per-waypoint derivative constraints (fixed or free)
- Heuristic initial segment time allocation
- Closed-form minimum-derivative solves (e.g. minimum snap)
- Nonlinear refinement of segment times under soft magnitude constraints
- Time-indexed evaluation and bulk sampling
"""

__version__ = "0.1.0"

from pathgen.core.derivatives import DerivativeOrder
from pathgen.core.errors import ConfigurationError, DegenerateInputError, SamplingDomainError
from pathgen.core.polynomial import Polynomial
from pathgen.core.segment import Segment
from pathgen.core.vertex import Vertex, vertices_from_positions
from pathgen.optimization.linear import LinearOptimizer, solve_segments
from pathgen.optimization.nonlinear import NonlinearOptimizer, NonlinearResult
from pathgen.optimization.parameters import (
    ConstraintAggregation,
    NonlinearOptimizationParameters,
    OptimizationMode,
)
from pathgen.sampling.trajectory import Trajectory
from pathgen.timing.segment_times import TimeEstimationMethod, estimate_segment_times

__all__ = [
    "DerivativeOrder",
    "ConfigurationError",
    "DegenerateInputError",
    "SamplingDomainError",
    "Polynomial",
    "Segment",
    "Vertex",
    "vertices_from_positions",
    "LinearOptimizer",
    "solve_segments",
    "NonlinearOptimizer",
    "NonlinearResult",
    "ConstraintAggregation",
    "NonlinearOptimizationParameters",
    "OptimizationMode",
    "Trajectory",
    "TimeEstimationMethod",
    "estimate_segment_times",
]
