"""Trajectory representation and sampling."""

from pathgen.sampling.samples import TrajectorySamples, sample_count
from pathgen.sampling.trajectory import Trajectory

__all__ = [
    "Trajectory",
    "TrajectorySamples",
    "sample_count",
]
