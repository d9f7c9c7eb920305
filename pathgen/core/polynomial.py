"""Single-dimension polynomials and the matrices built from their basis."""

import math
from dataclasses import dataclass
from functools import cached_property
from typing import Union

import numpy as np
from numpy.typing import NDArray

from pathgen.core.derivatives import DerivativeLike, as_derivative
from pathgen.core.errors import ConfigurationError

TimeLike = Union[float, NDArray]


@dataclass(frozen=True, eq=False)
class Polynomial:
    """Polynomial with coefficients in increasing power: p(t) = Σ c_i t^i."""

    coefficients: NDArray  # (N,)

    def __post_init__(self) -> None:
        c = np.array(self.coefficients, dtype=float)
        if c.ndim != 1 or c.size == 0:
            raise ConfigurationError(
                f"Polynomial needs a non-empty 1-D coefficient vector, got shape {c.shape}"
            )
        c.setflags(write=False)
        object.__setattr__(self, "coefficients", c)

    @cached_property
    def N(self) -> int:
        """Number of coefficients (polynomial order)."""
        return self.coefficients.shape[0]

    @cached_property
    def degree(self) -> int:
        return self.N - 1

    def derivative_coefficients(self, derivative: DerivativeLike = 1) -> NDArray:
        """Coefficients of the k-th derivative, zero-padded back to length N."""
        k = as_derivative(derivative)
        out = np.zeros(self.N)
        for i in range(self.N - k):
            out[i] = math.perm(i + k, k) * self.coefficients[i + k]
        return out

    def derivative(self, derivative: DerivativeLike = 1) -> "Polynomial":
        """The k-th derivative as a polynomial of the same order."""
        return Polynomial(self.derivative_coefficients(derivative))

    def evaluate(self, t: TimeLike, derivative: DerivativeLike = 0) -> TimeLike:
        """Evaluate the k-th derivative at scalar or array time t."""
        coeffs = self.derivative_coefficients(derivative)
        value = np.polynomial.polynomial.polyval(t, coeffs)
        if np.ndim(value) == 0:
            return float(value)
        return value

    def convolve(self, other: "Polynomial") -> "Polynomial":
        """Product polynomial p(t) q(t), of order N_p + N_q - 1."""
        return Polynomial(np.convolve(self.coefficients, other.coefficients))

    def real_roots_in(self, t_min: float, t_max: float, imag_tol: float = 1e-8) -> NDArray:
        """
        Real roots inside [t_min, t_max], sorted.

        A polynomial that is identically zero has no isolated roots and
        returns an empty array.
        """
        if not np.any(self.coefficients):
            return np.zeros(0)
        roots = np.roots(self.coefficients[::-1])
        scale = np.maximum(1.0, np.abs(roots.real))
        real = roots[np.abs(roots.imag) <= imag_tol * scale].real
        inside = real[(real >= t_min) & (real <= t_max)]
        return np.sort(inside)

    def __call__(self, t: TimeLike) -> TimeLike:
        return self.evaluate(t)


def base_coefficients(N: int, derivative: DerivativeLike, t: float) -> NDArray:
    """
    Row vector v such that v @ c is the k-th derivative of c at time t.

    v_j = j!/(j-k)! t^(j-k) for j >= k, else 0.
    """
    k = as_derivative(derivative)
    v = np.zeros(N)
    for j in range(k, N):
        v[j] = math.perm(j, k) * t ** (j - k)
    return v


def cost_hessian(N: int, derivative: DerivativeLike, duration: float) -> NDArray:
    """
    Q with c^T Q c = ∫_0^T (d^k p / dt^k)^2 dt.

    Q_ij = i!/(i-k)! j!/(j-k)! T^(i+j-2k+1) / (i+j-2k+1) for i, j >= k.
    """
    k = as_derivative(derivative)
    Q = np.zeros((N, N))
    for i in range(k, N):
        for j in range(k, N):
            power = i + j - 2 * k + 1
            Q[i, j] = (
                math.perm(i, k) * math.perm(j, k) * duration ** power / power
            )
    return Q


def endpoint_mapping(N: int, duration: float) -> NDArray:
    """
    A such that A @ c = [p(0), ..., p^(N/2-1)(0), p(T), ..., p^(N/2-1)(T)].

    Invertible for even N and T > 0.
    """
    if N % 2 != 0:
        raise ConfigurationError(f"Endpoint mapping needs an even order, got N={N}")
    half = N // 2
    A = np.zeros((N, N))
    for r in range(half):
        A[r] = base_coefficients(N, r, 0.0)
        A[half + r] = base_coefficients(N, r, duration)
    return A
