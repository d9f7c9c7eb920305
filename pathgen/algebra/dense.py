"""Dense linear algebra backend using NumPy/SciPy."""

from typing import Tuple
import numpy as np
import scipy.linalg
from numpy.typing import NDArray


class DenseBackend:
    """NumPy/SciPy implementation of linear algebra operations."""

    def solve(self, A: NDArray, b: NDArray) -> NDArray:
        """Solve linear system Ax = b using LU with partial pivoting."""
        return scipy.linalg.solve(A, b)

    def cho_factor(self, A: NDArray) -> Tuple[NDArray, bool]:
        """
        Compute Cholesky factorization using scipy.

        Returns:
            (c, lower) tuple from scipy.linalg.cho_factor
        """
        return scipy.linalg.cho_factor(A, lower=True, check_finite=True)

    def cho_solve(self, factorization: Tuple[NDArray, bool], b: NDArray) -> NDArray:
        """Solve using precomputed Cholesky factorization."""
        return scipy.linalg.cho_solve(factorization, b)

    def lstsq(self, A: NDArray, b: NDArray) -> NDArray:
        """Least-squares solve via SVD-based gelsd."""
        x, _, _, _ = scipy.linalg.lstsq(A, b)
        return x

    def cond(self, A: NDArray) -> float:
        """Compute 2-norm condition number."""
        if A.size == 0:
            return 1.0
        return float(np.linalg.cond(A))
