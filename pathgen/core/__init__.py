"""Core polynomial, segment and vertex types."""

from pathgen.core.derivatives import DerivativeOrder, derivative_name
from pathgen.core.errors import ConfigurationError, DegenerateInputError, SamplingDomainError
from pathgen.core.polynomial import Polynomial
from pathgen.core.segment import Segment
from pathgen.core.vertex import Vertex, create_random_vertices, vertices_from_positions

__all__ = [
    "DerivativeOrder",
    "derivative_name",
    "ConfigurationError",
    "DegenerateInputError",
    "SamplingDomainError",
    "Polynomial",
    "Segment",
    "Vertex",
    "create_random_vertices",
    "vertices_from_positions",
]
