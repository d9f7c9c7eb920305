"""Derivative-magnitude inequality constraints and their soft penalty."""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.integrate import trapezoid

from pathgen.core.derivatives import DerivativeLike, as_derivative, derivative_name
from pathgen.core.errors import ConfigurationError
from pathgen.core.segment import Segment, sample_times
from pathgen.optimization.parameters import ConstraintAggregation

# exp() argument cap; keeps the penalty finite for wild iterates
_MAX_EXPONENT = 50.0


@dataclass(frozen=True)
class MaximumMagnitudeConstraint:
    """|d^k p / dt^k| <= bound everywhere on the trajectory."""

    derivative: int
    bound: float
    dimensions: Optional[tuple[int, ...]] = None  # None: all dimensions

    def __post_init__(self) -> None:
        k = as_derivative(self.derivative)
        if k < 1:
            raise ConfigurationError("Magnitude constraints apply to derivatives of order >= 1")
        if not np.isfinite(self.bound) or self.bound <= 0.0:
            raise ConfigurationError(f"Constraint bound must be positive, got {self.bound}")
        object.__setattr__(self, "derivative", k)
        object.__setattr__(self, "bound", float(self.bound))
        if self.dimensions is not None:
            object.__setattr__(self, "dimensions", tuple(int(d) for d in self.dimensions))

    def relative_excess(
        self,
        segments: Sequence[Segment],
        sampling_interval: float,
        aggregation: ConstraintAggregation,
    ) -> float:
        """
        Sampled violation relative to the bound.

        MAXIMUM: max_t (|f(t)| - bound) / bound, negative when satisfied.
        INTEGRAL: (1 / T_total) ∫ max(|f(t)| - bound, 0) / bound dt, zero when satisfied.
        """
        if aggregation is ConstraintAggregation.MAXIMUM:
            peak = max(
                np.max(s.magnitude(sample_times(s.duration, sampling_interval),
                                   self.derivative, self.dimensions))
                for s in segments
            )
            return float((peak - self.bound) / self.bound)

        integral = 0.0
        total = 0.0
        for s in segments:
            t = sample_times(s.duration, sampling_interval)
            excess = np.maximum(s.magnitude(t, self.derivative, self.dimensions) - self.bound, 0.0)
            integral += trapezoid(excess / self.bound, t)
            total += s.duration
        return float(integral / total)

    def report(self, segments: Sequence[Segment], tolerance: float) -> "ConstraintReport":
        """Exact (root-based) maximum magnitude against the bound."""
        peak = max(s.max_magnitude(self.derivative, self.dimensions)[1] for s in segments)
        excess = (peak - self.bound) / self.bound
        return ConstraintReport(
            derivative=self.derivative,
            bound=self.bound,
            max_magnitude=peak,
            relative_excess=excess,
            satisfied=bool(excess <= tolerance),
        )

    def __str__(self) -> str:
        return f"|{derivative_name(self.derivative)}| <= {self.bound:g}"


@dataclass
class ConstraintReport:
    """Outcome of one inequality constraint on a final trajectory."""

    derivative: int
    bound: float
    max_magnitude: float
    relative_excess: float
    satisfied: bool


def soft_penalty(excess: float, weight: float, sharpness: float) -> float:
    """
    weight (exp(k v) - 1 - k v) for v > 0, zero otherwise.

    Continuous with a continuous slope at v = 0 and exponential growth past it.
    """
    if excess <= 0.0:
        return 0.0
    z = min(sharpness * excess, _MAX_EXPONENT)
    return weight * (np.exp(z) - 1.0 - z)


def make_constraint(
    derivative: DerivativeLike, bound: float, dimensions: Optional[Sequence[int]] = None
) -> MaximumMagnitudeConstraint:
    return MaximumMagnitudeConstraint(
        as_derivative(derivative),
        bound,
        None if dimensions is None else tuple(dimensions),
    )
