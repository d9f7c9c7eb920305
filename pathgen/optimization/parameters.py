"""Configuration of the nonlinear refinement."""

from dataclasses import dataclass
from enum import Enum, auto

from pathgen.core.errors import ConfigurationError


class OptimizationMode(Enum):
    """Which variables the outer optimizer moves."""
    TIME = auto()                       # durations; free derivatives re-solved each step
    TIME_AND_FREE_DERIVATIVES = auto()  # durations and free derivatives jointly


class ConstraintAggregation(Enum):
    """How sampled excess over a bound turns into one number per constraint."""
    MAXIMUM = auto()   # largest relative excess over all samples
    INTEGRAL = auto()  # time-averaged positive relative excess


SUPPORTED_ALGORITHMS = ("Powell", "Nelder-Mead", "L-BFGS-B")


@dataclass
class NonlinearOptimizationParameters:
    """Knobs of NonlinearOptimizer; validated on construction."""

    max_iterations: int = 3000
    f_rel: float = 0.05               # relative objective change to stop at
    x_rel: float = 0.1                # relative parameter change to stop at
    time_penalty: float = 500.0       # weight on Σ T_k
    initial_stepsize_rel: float = 0.1
    constraint_tolerance: float = 1e-3  # relative slack for calling a bound satisfied
    soft_constraint_weight: float = 100.0  # relative to the penalty-free objective at the start
    soft_constraint_sharpness: float = 10.0
    constraint_sampling_interval: float = 0.01
    constraint_aggregation: ConstraintAggregation = ConstraintAggregation.MAXIMUM
    mode: OptimizationMode = OptimizationMode.TIME
    algorithm: str = "Powell"
    max_duration_ratio: float = 1e3   # iterates outside [T0 / r, T0 r] evaluate to +inf
    scale_to_meet_constraints: bool = True  # TIME mode: stretch durations if a bound is still violated

    def __post_init__(self) -> None:
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        for name in ("f_rel", "x_rel", "initial_stepsize_rel",
                     "constraint_sampling_interval", "soft_constraint_sharpness"):
            if not getattr(self, name) > 0.0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("time_penalty", "constraint_tolerance", "soft_constraint_weight"):
            if not getattr(self, name) >= 0.0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if not self.max_duration_ratio > 1.0:
            raise ConfigurationError(
                f"max_duration_ratio must exceed 1, got {self.max_duration_ratio}"
            )
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported algorithm {self.algorithm!r}; choose from {SUPPORTED_ALGORITHMS}"
            )
        if not isinstance(self.mode, OptimizationMode):
            raise ConfigurationError(f"mode must be an OptimizationMode, got {self.mode!r}")
        if not isinstance(self.constraint_aggregation, ConstraintAggregation):
            raise ConfigurationError(
                f"constraint_aggregation must be a ConstraintAggregation, "
                f"got {self.constraint_aggregation!r}"
            )
