"""Linear algebra backend protocol."""

from typing import Protocol, Any
from numpy.typing import NDArray


class LinearAlgebraBackend(Protocol):
    """
    Protocol for the dense operations the trajectory solve needs.
    Allows swapping the factorization strategy without touching the optimizer.
    """

    def solve(self, A: NDArray, b: NDArray) -> NDArray:
        """
        Solve linear system Ax = b.

        Args:
            A: Square system matrix
            b: Right-hand side (vector or matrix)

        Returns:
            Solution x
        """
        ...

    def cho_factor(self, A: NDArray) -> Any:
        """
        Cholesky factorization of a symmetric positive definite matrix.

        Raises:
            numpy.linalg.LinAlgError: if A is not positive definite
        """
        ...

    def cho_solve(self, factorization: Any, b: NDArray) -> NDArray:
        """
        Solve using a precomputed Cholesky factorization.

        Args:
            factorization: Result of cho_factor
            b: Right-hand side

        Returns:
            Solution x
        """
        ...

    def lstsq(self, A: NDArray, b: NDArray) -> NDArray:
        """Minimum-norm least-squares solution of Ax ≈ b."""
        ...

    def cond(self, A: NDArray) -> float:
        """2-norm condition number of A."""
        ...
