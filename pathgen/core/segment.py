"""Polynomial segment: one polynomial per spatial dimension over a shared duration."""

from dataclasses import dataclass
from functools import cached_property
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from pathgen.core.derivatives import DerivativeLike, as_derivative
from pathgen.core.errors import ConfigurationError, DegenerateInputError
from pathgen.core.polynomial import Polynomial, TimeLike


@dataclass(frozen=True, eq=False)
class Segment:
    """Piece of a trajectory connecting two consecutive vertices."""

    duration: float
    polynomials: tuple[Polynomial, ...]  # D polynomials sharing N

    def __post_init__(self) -> None:
        duration = float(self.duration)
        if not np.isfinite(duration) or duration <= 0.0:
            raise DegenerateInputError(
                f"Segment duration must be finite and positive, got {self.duration}"
            )
        polynomials = tuple(self.polynomials)
        if not polynomials:
            raise ConfigurationError("Segment needs at least one dimension")
        orders = {p.N for p in polynomials}
        if len(orders) != 1:
            raise ConfigurationError(
                f"All polynomials of a segment must share N, got {sorted(orders)}"
            )
        object.__setattr__(self, "duration", duration)
        object.__setattr__(self, "polynomials", polynomials)

    @classmethod
    def from_coefficients(cls, duration: float, coefficients: NDArray) -> "Segment":
        """Build from a (D, N) coefficient array."""
        coefficients = np.atleast_2d(np.asarray(coefficients, dtype=float))
        return cls(duration, tuple(Polynomial(row) for row in coefficients))

    @cached_property
    def D(self) -> int:
        """Spatial dimension."""
        return len(self.polynomials)

    @cached_property
    def N(self) -> int:
        """Number of coefficients per polynomial."""
        return self.polynomials[0].N

    @cached_property
    def coefficients(self) -> NDArray:
        """(D, N) coefficient array."""
        c = np.vstack([p.coefficients for p in self.polynomials])
        c.setflags(write=False)
        return c

    def evaluate(self, t: TimeLike, derivative: DerivativeLike = 0) -> NDArray:
        """
        Evaluate the k-th derivative at local time t.

        Returns (D,) for scalar t and (len(t), D) for array t.
        """
        k = as_derivative(derivative)
        return np.stack(
            [np.asarray(p.evaluate(t, k), dtype=float) for p in self.polynomials],
            axis=-1,
        )

    def magnitude(
        self,
        t: TimeLike,
        derivative: DerivativeLike,
        dimensions: Optional[Sequence[int]] = None,
    ) -> TimeLike:
        """Euclidean norm of the k-th derivative over the selected dimensions."""
        values = self.evaluate(t, derivative)
        if dimensions is not None:
            values = values[..., list(dimensions)]
        norm = np.linalg.norm(values, axis=-1)
        if np.ndim(norm) == 0:
            return float(norm)
        return norm

    def max_magnitude(
        self,
        derivative: DerivativeLike,
        dimensions: Optional[Sequence[int]] = None,
        sampling_interval: Optional[float] = None,
    ) -> tuple[float, float]:
        """
        Largest derivative magnitude over [0, T] and where it occurs.

        Analytic by default: candidates are the endpoints plus the real roots
        of d/dt |p^(k)(t)|^2 = Σ_dim 2 p^(k) p^(k+1). With a sampling
        interval, the segment is sampled densely instead.

        Returns:
            (t_at_max, max_value)
        """
        k = as_derivative(derivative)
        if sampling_interval is not None:
            candidates = sample_times(self.duration, sampling_interval)
        else:
            candidates = np.concatenate(
                ([0.0, self.duration], self._extremum_candidates(k, dimensions))
            )
        magnitudes = self.magnitude(candidates, k, dimensions)
        i = int(np.argmax(magnitudes))
        return float(candidates[i]), float(magnitudes[i])

    def _extremum_candidates(
        self, derivative: int, dimensions: Optional[Sequence[int]]
    ) -> NDArray:
        selected = (
            self.polynomials
            if dimensions is None
            else [self.polynomials[d] for d in dimensions]
        )
        slope = np.zeros(2 * self.N - 1)
        for p in selected:
            pk = p.derivative(derivative)
            slope += pk.convolve(pk.derivative(1)).coefficients
        return Polynomial(slope).real_roots_in(0.0, self.duration)

    def scaled(self, factor: float) -> "Segment":
        """Same path traversed `factor` times slower: p'(t) = p(t / factor)."""
        if not np.isfinite(factor) or factor <= 0.0:
            raise ConfigurationError(f"Time scale factor must be positive, got {factor}")
        powers = float(factor) ** -np.arange(self.N)
        return Segment.from_coefficients(self.duration * factor, self.coefficients * powers)


def sample_times(duration: float, interval: float, minimum_samples: int = 3) -> NDArray:
    """Uniform local times covering [0, duration], both endpoints included."""
    if interval <= 0.0:
        raise ConfigurationError(f"Sampling interval must be positive, got {interval}")
    n = max(minimum_samples, int(np.ceil(duration / interval)) + 1)
    return np.linspace(0.0, duration, n)
