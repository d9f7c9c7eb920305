"""Closed-form minimum-derivative solve over fixed segment durations."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import scipy.linalg
from numpy.typing import NDArray, ArrayLike

from pathgen.algebra.dense import DenseBackend
from pathgen.algebra.protocols import LinearAlgebraBackend
from pathgen.core.derivatives import DerivativeLike, DerivativeOrder, as_derivative
from pathgen.core.errors import ConfigurationError, DegenerateInputError
from pathgen.core.polynomial import cost_hessian, endpoint_mapping
from pathgen.core.segment import Segment
from pathgen.core.vertex import Vertex, validate_vertices

logger = logging.getLogger(__name__)

DEFAULT_CONDITION_LIMIT = 1e12
REPEATED_POSITION_TOL = 1e-9


@dataclass
class LinearSolveReport:
    """Numerical quality of the last reduced solve."""

    condition_number: float   # of the reduced Hessian R_pp (1.0 when nothing is free)
    used_least_squares: bool  # Cholesky failed or R_pp was too ill-conditioned
    n_fixed: int              # fixed vertex derivatives per dimension
    n_free: int               # free vertex derivatives per dimension


def validate_polynomial_order(N: int, derivative_to_optimize: DerivativeLike) -> int:
    """
    N must be a positive even integer with N >= 2 k + 2.

    Returns:
        The derivative order as an int
    """
    k = as_derivative(derivative_to_optimize)
    if int(N) != N or N < 2 or N % 2 != 0:
        raise ConfigurationError(f"Polynomial order must be a positive even integer, got {N}")
    if N < 2 * k + 2:
        raise ConfigurationError(
            f"Polynomial order {N} cannot minimize derivative {k}; "
            f"need at least {2 * k + 2} coefficients"
        )
    return k


def validate_durations(durations: ArrayLike, n_segments: int) -> NDArray:
    """Finite, strictly positive, one per segment."""
    T = np.asarray(durations, dtype=float).ravel()
    if T.shape != (n_segments,):
        raise DegenerateInputError(
            f"Expected {n_segments} segment durations, got {T.size}"
        )
    bad = np.flatnonzero(~np.isfinite(T) | (T <= 0.0))
    if bad.size:
        raise DegenerateInputError(
            f"Segment durations must be finite and positive; segment {int(bad[0])} "
            f"has duration {T[bad[0]]}"
        )
    return T


class LinearOptimizer:
    """
    Unconstrained QP over vertex derivatives.

    Per dimension, the unknowns are the derivatives 0..N/2-1 at every
    vertex. Segment k maps the derivatives of vertices k and k+1 to its
    coefficients through A_k^{-1}, so derivatives up to N/2-1 are continuous
    at interior vertices by construction. Fixed derivatives are substituted,
    the free ones minimize

        J = d^T R d,   R = L^T Q L,   L = blockdiag(A_k^{-1}) M P^T

    giving R_pp d_p = -R_fp^T d_f.
    """

    def __init__(
        self,
        dimension: int,
        polynomial_order: int,
        backend: Optional[LinearAlgebraBackend] = None,
        condition_limit: float = DEFAULT_CONDITION_LIMIT,
        fallback_log_level: int = logging.WARNING,
    ):
        """
        Initialize linear optimizer.

        Args:
            dimension: Spatial dimension D
            polynomial_order: Number of coefficients N per polynomial (even)
            backend: Linear algebra backend (dense by default)
            condition_limit: Reduced-Hessian condition number above which the
                least-squares fallback is used
            fallback_log_level: Level at which each least-squares fallback is
                logged; callers that solve in a loop lower it and summarize
        """
        if int(dimension) != dimension or dimension < 1:
            raise ConfigurationError(f"Dimension must be >= 1, got {dimension}")
        validate_polynomial_order(polynomial_order, 0)
        self.dimension = int(dimension)
        self.N = int(polynomial_order)
        self.backend = backend if backend is not None else DenseBackend()
        self.condition_limit = condition_limit
        self.fallback_log_level = fallback_log_level

        self._vertices: Optional[list[Vertex]] = None
        self._durations: Optional[NDArray] = None
        self._derivative: Optional[int] = None
        self._fixed_index: Optional[NDArray] = None
        self._free_index: Optional[NDArray] = None
        self._fixed_values: Optional[NDArray] = None  # (D, n_fixed)
        self._free_values: Optional[NDArray] = None   # (D, n_free)
        self._L: Optional[NDArray] = None
        self._R: Optional[NDArray] = None
        self._segments: Optional[list[Segment]] = None
        self.solve_report: Optional[LinearSolveReport] = None

    @property
    def derivatives_per_vertex(self) -> int:
        return self.N // 2

    @property
    def derivative_to_optimize(self) -> Optional[int]:
        return self._derivative

    @property
    def vertices(self) -> list[Vertex]:
        self._require_setup()
        assert self._vertices is not None
        return [v.copy() for v in self._vertices]

    @property
    def n_fixed(self) -> int:
        self._require_setup()
        assert self._fixed_index is not None
        return int(self._fixed_index.size)

    @property
    def n_free(self) -> int:
        self._require_setup()
        assert self._free_index is not None
        return int(self._free_index.size)

    def setup_from_vertices(
        self,
        vertices: Sequence[Vertex],
        durations: ArrayLike,
        derivative_to_optimize: DerivativeLike,
    ) -> None:
        """
        Validate the input and build the reduced system.

        Raises:
            ConfigurationError: order/derivative mismatch, bad vertex set
            DegenerateInputError: bad durations, repeated consecutive positions
        """
        k = validate_polynomial_order(self.N, derivative_to_optimize)
        dimension = validate_vertices(vertices, self.derivatives_per_vertex - 1)
        if dimension != self.dimension:
            raise ConfigurationError(
                f"Vertices have dimension {dimension}, optimizer expects {self.dimension}"
            )
        T = validate_durations(durations, len(vertices) - 1)
        _check_repeated_positions(vertices)

        self._vertices = [v.copy() for v in vertices]
        self._derivative = k
        self._partition_constraints()
        self._build_system(T)

    def update_segment_durations(self, durations: ArrayLike) -> None:
        """Rebuild the system for new durations; segments must be solved again."""
        self._require_setup()
        assert self._vertices is not None
        self._build_system(validate_durations(durations, len(self._vertices) - 1))

    def get_segment_durations(self) -> NDArray:
        self._require_setup()
        assert self._durations is not None
        return self._durations.copy()

    def solve_linear(self) -> list[Segment]:
        """
        Solve for the free derivatives and produce the segments.

        Deterministic: identical inputs give identical coefficients.
        """
        self._require_setup()
        assert self._R is not None and self._fixed_values is not None
        nf = self.n_fixed
        R_fp = self._R[:nf, nf:]
        R_pp = self._R[nf:, nf:]

        if self.n_free == 0:
            free = np.zeros((self.dimension, 0))
            report = LinearSolveReport(1.0, False, nf, 0)
        else:
            rhs = -R_fp.T @ self._fixed_values.T  # (n_free, D)
            free, report = self._solve_reduced(R_pp, rhs)
            free = free.T

        self.solve_report = report
        self._free_values = free
        self._segments = self._assemble_segments()
        logger.debug(
            "Linear solve: %d segments, %d fixed / %d free per dimension, cond=%.3g",
            len(self._segments),
            report.n_fixed,
            report.n_free,
            report.condition_number,
        )
        return list(self._segments)

    def get_segments(self) -> list[Segment]:
        self._require_solved()
        assert self._segments is not None
        return list(self._segments)

    def get_trajectory(self) -> "Trajectory":
        from pathgen.sampling.trajectory import Trajectory

        return Trajectory(self.get_segments())

    def get_free_derivatives(self) -> NDArray:
        """Current free derivative values, (D, n_free)."""
        self._require_solved()
        assert self._free_values is not None
        return self._free_values.copy()

    def set_free_derivatives(self, values: ArrayLike) -> list[Segment]:
        """Replace the free derivatives and rebuild segments without re-solving."""
        self._require_setup()
        free = np.asarray(values, dtype=float).reshape(self.dimension, self.n_free)
        self._free_values = free.copy()
        self._segments = self._assemble_segments()
        return list(self._segments)

    def compute_cost(self) -> float:
        """Σ over segments and dimensions of ∫ (d^k p / dt^k)^2 dt."""
        self._require_solved()
        assert self._R is not None
        d = self._stacked_derivatives()
        return float(np.sum((d @ self._R) * d))

    def _solve_reduced(self, R_pp: NDArray, rhs: NDArray) -> tuple[NDArray, LinearSolveReport]:
        cond = self.backend.cond(R_pp)
        if np.isfinite(cond) and cond <= self.condition_limit:
            try:
                factorization = self.backend.cho_factor(R_pp)
            except np.linalg.LinAlgError:
                pass
            else:
                x = self.backend.cho_solve(factorization, rhs)
                return x, LinearSolveReport(cond, False, self.n_fixed, self.n_free)

        logger.log(
            self.fallback_log_level,
            "Reduced Hessian is ill-conditioned (cond=%.3g); using least squares",
            cond,
        )
        x = self.backend.lstsq(R_pp, rhs)
        return x, LinearSolveReport(cond, True, self.n_fixed, self.n_free)

    def _partition_constraints(self) -> None:
        """Split vertex derivatives into fixed and free; fixed come first."""
        assert self._vertices is not None
        half = self.derivatives_per_vertex
        fixed_mask = np.zeros(len(self._vertices) * half, dtype=bool)
        for i, vertex in enumerate(self._vertices):
            for k in vertex.constraints:
                fixed_mask[i * half + k] = True
        self._fixed_index = np.flatnonzero(fixed_mask)
        self._free_index = np.flatnonzero(~fixed_mask)

        fixed_values = np.zeros((self.dimension, self._fixed_index.size))
        for col, index in enumerate(self._fixed_index):
            vertex, k = divmod(int(index), half)
            fixed_values[:, col] = self._vertices[vertex].get_constraint(k)
        self._fixed_values = fixed_values
        self._free_values = None

    def _build_system(self, durations: NDArray) -> None:
        assert self._fixed_index is not None and self._free_index is not None
        assert self._derivative is not None
        N, half = self.N, self.derivatives_per_vertex
        n_segments = durations.size
        n_unknowns = (n_segments + 1) * half

        # M duplicates vertex derivatives into segment endpoint vectors
        M = np.zeros((n_segments * N, n_unknowns))
        for k in range(n_segments):
            M[k * N:k * N + N, k * half:k * half + N] = np.eye(N)

        A_inv = []
        Q = []
        for T in durations:
            A = endpoint_mapping(N, T)
            A_inv.append(self.backend.solve(A, np.eye(N)))
            Q.append(cost_hessian(N, self._derivative, T))

        order = np.concatenate((self._fixed_index, self._free_index))
        L = scipy.linalg.block_diag(*A_inv) @ M[:, order]
        R = L.T @ scipy.linalg.block_diag(*Q) @ L

        self._durations = durations.copy()
        self._L = L
        self._R = 0.5 * (R + R.T)
        self._segments = None

    def _stacked_derivatives(self) -> NDArray:
        """(D, n_fixed + n_free) in the reordered unknown layout."""
        assert self._fixed_values is not None and self._free_values is not None
        return np.hstack((self._fixed_values, self._free_values))

    def _assemble_segments(self) -> list[Segment]:
        assert self._L is not None and self._durations is not None
        coefficients = self._L @ self._stacked_derivatives().T  # (K N, D)
        N = self.N
        return [
            Segment.from_coefficients(T, coefficients[k * N:(k + 1) * N].T)
            for k, T in enumerate(self._durations)
        ]

    def _require_setup(self) -> None:
        if self._vertices is None:
            raise RuntimeError("setup_from_vertices() has not been called")

    def _require_solved(self) -> None:
        self._require_setup()
        if self._segments is None:
            raise RuntimeError("solve_linear() has not been called")


def _check_repeated_positions(vertices: Sequence[Vertex]) -> None:
    for i in range(len(vertices) - 1):
        a = vertices[i].get_constraint(DerivativeOrder.POSITION)
        b = vertices[i + 1].get_constraint(DerivativeOrder.POSITION)
        if np.allclose(a, b, rtol=0.0, atol=REPEATED_POSITION_TOL):
            raise DegenerateInputError(
                f"Vertices {i} and {i + 1} share position {a.tolist()}; "
                f"zero-length segments are not allowed"
            )


def solve_segments(
    vertices: Sequence[Vertex],
    durations: ArrayLike,
    derivative_to_optimize: DerivativeLike,
    polynomial_order: int,
    backend: Optional[LinearAlgebraBackend] = None,
) -> list[Segment]:
    """Functional form: setup + solve on a throwaway LinearOptimizer."""
    if len(vertices) < 2:
        raise ConfigurationError(f"At least two vertices are needed, got {len(vertices)}")
    optimizer = LinearOptimizer(vertices[0].dimension, polynomial_order, backend=backend)
    optimizer.setup_from_vertices(vertices, durations, derivative_to_optimize)
    return optimizer.solve_linear()
