"""Waypoints with per-derivative constraints."""

from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray, ArrayLike

from pathgen.core.derivatives import DerivativeLike, DerivativeOrder, as_derivative
from pathgen.core.errors import ConfigurationError


class Vertex:
    """
    Waypoint constraint set.

    Maps derivative order -> fixed value (one entry per dimension). Orders
    that are not constrained are free and get solved for by the optimizer.
    """

    def __init__(self, dimension: int):
        if int(dimension) != dimension or dimension < 1:
            raise ConfigurationError(f"Vertex dimension must be >= 1, got {dimension}")
        self._dimension = int(dimension)
        self._constraints: dict[int, NDArray] = {}

    @property
    def dimension(self) -> int:
        return self._dimension

    def add_constraint(self, derivative: DerivativeLike, value: Union[float, ArrayLike]) -> "Vertex":
        """Fix a derivative to the given value; replaces an existing one."""
        k = as_derivative(derivative)
        self._constraints[k] = self._as_value(value, k)
        return self

    def make_start_or_end(
        self, position: Union[float, ArrayLike], up_to_derivative: DerivativeLike
    ) -> "Vertex":
        """Fix position, and every derivative 1..up_to_derivative to zero."""
        self.add_constraint(DerivativeOrder.POSITION, position)
        for k in range(1, as_derivative(up_to_derivative) + 1):
            self.add_constraint(k, np.zeros(self._dimension))
        return self

    def has_constraint(self, derivative: DerivativeLike) -> bool:
        return as_derivative(derivative) in self._constraints

    def get_constraint(self, derivative: DerivativeLike) -> NDArray:
        k = as_derivative(derivative)
        if k not in self._constraints:
            raise ConfigurationError(f"Vertex has no constraint on derivative {k}")
        return self._constraints[k].copy()

    def remove_constraint(self, derivative: DerivativeLike) -> None:
        self._constraints.pop(as_derivative(derivative), None)

    @property
    def constraints(self) -> dict[int, NDArray]:
        """Copy of the fixed constraints, ordered by derivative."""
        return {k: self._constraints[k].copy() for k in sorted(self._constraints)}

    @property
    def position(self) -> NDArray:
        return self.get_constraint(DerivativeOrder.POSITION)

    @property
    def highest_constrained_order(self) -> int:
        """Highest fixed derivative order, -1 when nothing is fixed."""
        return max(self._constraints, default=-1)

    def copy(self) -> "Vertex":
        other = Vertex(self._dimension)
        other._constraints = self.constraints
        return other

    def is_close(self, other: "Vertex", tol: float = 1e-9) -> bool:
        """Same dimension, same constrained orders, values within tol."""
        if self._dimension != other.dimension:
            return False
        if set(self._constraints) != set(other._constraints):
            return False
        return all(
            np.allclose(self._constraints[k], other._constraints[k], rtol=0.0, atol=tol)
            for k in self._constraints
        )

    def _as_value(self, value: Union[float, ArrayLike], derivative: int) -> NDArray:
        v = np.atleast_1d(np.asarray(value, dtype=float)).ravel()
        if v.shape != (self._dimension,):
            raise ConfigurationError(
                f"Constraint on derivative {derivative} has {v.size} values, "
                f"vertex dimension is {self._dimension}"
            )
        if not np.all(np.isfinite(v)):
            raise ConfigurationError(f"Constraint on derivative {derivative} is not finite")
        return v

    def __repr__(self) -> str:
        body = ", ".join(f"{k}: {v.tolist()}" for k, v in self.constraints.items())
        return f"Vertex(D={self._dimension}, {{{body}}})"


def vertices_from_positions(
    positions: ArrayLike, up_to_derivative: DerivativeLike
) -> list[Vertex]:
    """
    Start and end vertices fully fixed (zero higher derivatives up to the
    given order), interior vertices fixing only position.

    Args:
        positions: (V, D) waypoint positions
        up_to_derivative: Highest derivative fixed to zero at start and end
    """
    positions = np.asarray(positions, dtype=float)
    if positions.ndim == 1:
        positions = positions[:, None]
    if positions.shape[0] < 2:
        raise ConfigurationError("At least two positions are needed")
    dimension = positions.shape[1]
    vertices = []
    for i, p in enumerate(positions):
        vertex = Vertex(dimension)
        if i == 0 or i == len(positions) - 1:
            vertex.make_start_or_end(p, up_to_derivative)
        else:
            vertex.add_constraint(DerivativeOrder.POSITION, p)
        vertices.append(vertex)
    return vertices


def create_random_vertices(
    dimension: int,
    count: int,
    up_to_derivative: DerivativeLike,
    minimum: Union[float, ArrayLike] = -5.0,
    maximum: Union[float, ArrayLike] = 5.0,
    rng: Optional[np.random.Generator] = None,
    min_distance: float = 0.2,
) -> list[Vertex]:
    """
    Random waypoints inside a box, consecutive ones at least min_distance apart.

    Pass a seeded numpy Generator for reproducible sets.
    """
    if count < 2:
        raise ConfigurationError("At least two vertices are needed")
    rng = np.random.default_rng() if rng is None else rng
    low = np.broadcast_to(np.asarray(minimum, dtype=float), (dimension,))
    high = np.broadcast_to(np.asarray(maximum, dtype=float), (dimension,))
    positions = [rng.uniform(low, high)]
    while len(positions) < count:
        candidate = rng.uniform(low, high)
        if np.linalg.norm(candidate - positions[-1]) >= min_distance:
            positions.append(candidate)
    return vertices_from_positions(np.array(positions), up_to_derivative)


def validate_vertices(vertices: Sequence[Vertex], max_constrained_order: int) -> int:
    """
    Check a vertex sequence for a solve and return its dimension.

    Raises:
        ConfigurationError: fewer than two vertices, mixed dimensions, a
            vertex without position, or a constraint above max_constrained_order
    """
    if len(vertices) < 2:
        raise ConfigurationError(f"At least two vertices are needed, got {len(vertices)}")
    dimension = vertices[0].dimension
    for i, vertex in enumerate(vertices):
        if vertex.dimension != dimension:
            raise ConfigurationError(
                f"Vertex {i} has dimension {vertex.dimension}, expected {dimension}"
            )
        if not vertex.has_constraint(DerivativeOrder.POSITION):
            raise ConfigurationError(f"Vertex {i} has no position constraint")
        if vertex.highest_constrained_order > max_constrained_order:
            raise ConfigurationError(
                f"Vertex {i} constrains derivative {vertex.highest_constrained_order}, "
                f"the polynomial order only supports up to {max_constrained_order}"
            )
    return dimension
