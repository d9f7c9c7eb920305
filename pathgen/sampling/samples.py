"""Containers and helpers for sampled trajectories."""

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pathgen.core.errors import SamplingDomainError

# Relative round-off absorbed in (t_end - t_start) / dt, e.g. 0.3 / 0.1 = 2.9999999999999996
_COUNT_GUARD = 4.0 * np.finfo(float).eps


@dataclass(frozen=True, eq=False)
class TrajectorySamples:
    """Bulk samples of a trajectory at shared times."""

    times: NDArray               # (n,)
    values: dict[int, NDArray]   # derivative order -> (n, D)

    def __len__(self) -> int:
        return self.times.shape[0]

    def __getitem__(self, derivative: int) -> NDArray:
        return self.values[int(derivative)]


def sample_count(t_start: float, t_end: float, dt: float) -> int:
    """
    floor((t_end - t_start) / dt) + 1.

    Raises:
        SamplingDomainError: dt <= 0 or t_end < t_start
    """
    if not dt > 0.0:
        raise SamplingDomainError(f"Sampling step must be positive, got {dt}")
    if t_end < t_start:
        raise SamplingDomainError(f"t_end={t_end} precedes t_start={t_start}")
    ratio = (t_end - t_start) / dt
    return int(math.floor(ratio * (1.0 + _COUNT_GUARD))) + 1
