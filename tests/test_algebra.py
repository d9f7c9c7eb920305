"""Tests for the dense linear algebra backend."""

import numpy as np
import pytest

from pathgen.algebra import DenseBackend


def _spd(n, seed=0):
    rng = np.random.default_rng(seed)
    B = rng.standard_normal((n, n))
    return B @ B.T + n * np.eye(n)


def test_solve():
    backend = DenseBackend()
    A = _spd(5)
    b = np.arange(5.0)

    assert np.allclose(A @ backend.solve(A, b), b)


def test_cholesky_matches_direct_solve():
    backend = DenseBackend()
    A = _spd(6, seed=1)
    b = np.random.default_rng(2).standard_normal((6, 3))

    x = backend.cho_solve(backend.cho_factor(A), b)

    assert np.allclose(x, np.linalg.solve(A, b))


def test_cholesky_rejects_indefinite():
    backend = DenseBackend()

    with pytest.raises(np.linalg.LinAlgError):
        backend.cho_factor(np.diag([1.0, -1.0]))


def test_lstsq_on_singular_system():
    """Minimum-norm solution of a rank-deficient system."""
    backend = DenseBackend()
    A = np.array([[1.0, 1.0], [1.0, 1.0]])
    b = np.array([2.0, 2.0])

    x = backend.lstsq(A, b)

    assert np.allclose(A @ x, b)
    assert np.allclose(x, [1.0, 1.0])


def test_cond():
    backend = DenseBackend()

    assert backend.cond(np.diag([1.0, 100.0])) == pytest.approx(100.0)
    assert backend.cond(np.zeros((0, 0))) == 1.0
