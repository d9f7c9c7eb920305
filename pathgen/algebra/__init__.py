"""Linear algebra backend abstractions."""

from pathgen.algebra.protocols import LinearAlgebraBackend
from pathgen.algebra.dense import DenseBackend

__all__ = [
    "LinearAlgebraBackend",
    "DenseBackend",
]
