"""Piecewise-polynomial trajectory with time-indexed evaluation."""

import logging
from functools import cached_property
from typing import Iterable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from pathgen.core.derivatives import DerivativeLike, DerivativeOrder, as_derivative
from pathgen.core.errors import ConfigurationError, SamplingDomainError
from pathgen.core.segment import Segment
from pathgen.sampling.samples import TrajectorySamples, sample_count

logger = logging.getLogger(__name__)


class Trajectory:
    """
    Ordered segments on the contiguous time domain [0, Σ T_k].

    Read-only after construction; concurrent reads are safe.
    """

    def __init__(self, segments: Iterable[Segment]):
        segments = tuple(segments)
        if not segments:
            raise ConfigurationError("Trajectory needs at least one segment")
        first = segments[0]
        for i, segment in enumerate(segments):
            if segment.D != first.D or segment.N != first.N:
                raise ConfigurationError(
                    f"Segment {i} has (D={segment.D}, N={segment.N}), "
                    f"expected (D={first.D}, N={first.N})"
                )
        self._segments = segments

    @property
    def segments(self) -> tuple[Segment, ...]:
        return self._segments

    @cached_property
    def dimension(self) -> int:
        return self._segments[0].D

    @cached_property
    def polynomial_order(self) -> int:
        return self._segments[0].N

    @property
    def segment_count(self) -> int:
        return len(self._segments)

    @cached_property
    def durations(self) -> NDArray:
        T = np.array([s.duration for s in self._segments])
        T.setflags(write=False)
        return T

    @cached_property
    def start_times(self) -> NDArray:
        """Cumulative start time of each segment; monotonic."""
        starts = np.concatenate(([0.0], np.cumsum(self.durations)[:-1]))
        starts.setflags(write=False)
        return starts

    @cached_property
    def total_duration(self) -> float:
        return float(np.sum(self.durations))

    @property
    def min_time(self) -> float:
        return 0.0

    @property
    def max_time(self) -> float:
        return self.total_duration

    def segment_index(self, t: float) -> int:
        """Owning segment of time t (t is assumed inside the domain)."""
        index = int(np.searchsorted(self.start_times, t, side="right")) - 1
        return min(max(index, 0), self.segment_count - 1)

    def evaluate(
        self, t: float, derivative: DerivativeLike = DerivativeOrder.POSITION, clamp: bool = False
    ) -> NDArray:
        """
        Value of the k-th derivative at trajectory time t, shape (D,).

        Raises:
            SamplingDomainError: t outside [0, total_duration] and clamp is False
        """
        t = self._check_time(float(t), clamp)
        i = self.segment_index(t)
        return self._segments[i].evaluate(t - self.start_times[i], derivative)

    def evaluate_many(
        self,
        times: NDArray,
        derivative: DerivativeLike = DerivativeOrder.POSITION,
        clamp: bool = False,
    ) -> NDArray:
        """Vectorized evaluate over an array of times, shape (n, D)."""
        times = np.asarray(times, dtype=float).ravel()
        k = as_derivative(derivative)
        if clamp:
            times = np.clip(times, 0.0, self.total_duration)
        elif times.size and (times.min() < 0.0 or times.max() > self.total_duration):
            raise SamplingDomainError(
                f"Times [{times.min()}, {times.max()}] leave the domain "
                f"[0, {self.total_duration}]"
            )
        indices = np.searchsorted(self.start_times, times, side="right") - 1
        indices = np.clip(indices, 0, self.segment_count - 1)
        values = np.zeros((times.size, self.dimension))
        for i in np.unique(indices):
            mask = indices == i
            values[mask] = self._segments[i].evaluate(times[mask] - self.start_times[i], k)
        return values

    def evaluate_range(
        self,
        t_start: float,
        t_end: float,
        dt: float,
        derivative: DerivativeLike = DerivativeOrder.POSITION,
        clamp: bool = False,
    ) -> tuple[NDArray, NDArray]:
        """
        Samples at t_start, t_start + dt, ... not exceeding t_end.

        Returns:
            times: (n,) strictly increasing, n = floor((t_end - t_start) / dt) + 1
            values: (n, D)
        """
        n = sample_count(t_start, t_end, dt)
        times = np.minimum(t_start + dt * np.arange(n), t_end)
        return times, self.evaluate_many(times, derivative, clamp)

    def sample_whole(
        self,
        dt: float,
        derivatives: Sequence[DerivativeLike] = (
            DerivativeOrder.POSITION,
            DerivativeOrder.VELOCITY,
            DerivativeOrder.ACCELERATION,
        ),
    ) -> TrajectorySamples:
        """Sample the whole trajectory at a fixed interval for several derivatives."""
        n = sample_count(0.0, self.total_duration, dt)
        times = np.minimum(dt * np.arange(n), self.total_duration)
        values = {as_derivative(k): self.evaluate_many(times, k) for k in derivatives}
        return TrajectorySamples(times=times, values=values)

    def compute_max_magnitude(
        self, derivative: DerivativeLike, dimensions: Optional[Sequence[int]] = None
    ) -> tuple[float, float]:
        """
        Largest derivative magnitude over the whole trajectory.

        Returns:
            (t_at_max, max_value) with t in trajectory time
        """
        best_t, best_value = 0.0, -np.inf
        for start, segment in zip(self.start_times, self._segments):
            t, value = segment.max_magnitude(derivative, dimensions)
            if value > best_value:
                best_t, best_value = float(start + t), value
        return best_t, best_value

    def scaled(self, factor: float) -> "Trajectory":
        """Uniformly slowed down (factor > 1) or sped up (factor < 1)."""
        return Trajectory(s.scaled(factor) for s in self._segments)

    def scale_segment_times_to_meet_constraints(
        self, v_max: float, a_max: float, dimensions: Optional[Sequence[int]] = None
    ) -> "Trajectory":
        """
        Slow the trajectory until velocity and acceleration magnitudes fit.

        Velocity scales with 1/f and acceleration with 1/f^2 under a time
        stretch by f, so the smallest admissible f follows in closed form.
        Trajectories already within bounds are returned unchanged.
        """
        if v_max <= 0.0 or a_max <= 0.0:
            raise ConfigurationError(f"v_max and a_max must be positive, got {v_max}, {a_max}")
        _, v = self.compute_max_magnitude(DerivativeOrder.VELOCITY, dimensions)
        _, a = self.compute_max_magnitude(DerivativeOrder.ACCELERATION, dimensions)
        factor = max(v / v_max, np.sqrt(a / a_max))
        if factor <= 1.0:
            return self
        logger.debug("Scaling segment times by %.4f to meet v_max=%g, a_max=%g", factor, v_max, a_max)
        return self.scaled(factor)

    def _check_time(self, t: float, clamp: bool) -> float:
        if clamp:
            return min(max(t, 0.0), self.total_duration)
        if not (0.0 <= t <= self.total_duration):
            raise SamplingDomainError(
                f"Time {t} is outside the trajectory domain [0, {self.total_duration}]"
            )
        return t

    def __len__(self) -> int:
        return self.segment_count

    def __repr__(self) -> str:
        return (
            f"Trajectory(segments={self.segment_count}, D={self.dimension}, "
            f"N={self.polynomial_order}, T={self.total_duration:.4f})"
        )
