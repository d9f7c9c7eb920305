"""Derivative order enumeration shared by vertices, constraints and sampling."""

from enum import IntEnum
from typing import Union

from pathgen.core.errors import ConfigurationError


class DerivativeOrder(IntEnum):
    """Named derivative orders of a position signal."""
    POSITION = 0
    VELOCITY = 1
    ACCELERATION = 2
    JERK = 3
    SNAP = 4


DerivativeLike = Union[DerivativeOrder, int]


def as_derivative(order: DerivativeLike) -> int:
    """Normalize a derivative order to a non-negative int."""
    value = int(order)
    if value != order or value < 0:
        raise ConfigurationError(
            f"Derivative order must be a non-negative integer, got {order!r}"
        )
    return value


def derivative_name(order: DerivativeLike) -> str:
    """Lowercase name of a derivative order ("snap"), or "d<k>" past snap."""
    value = as_derivative(order)
    try:
        return DerivativeOrder(value).name.lower()
    except ValueError:
        return f"d{value}"
