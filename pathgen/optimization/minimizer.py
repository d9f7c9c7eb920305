"""Pluggable local minimizer for the outer refinement loop."""

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, Union

import numpy as np
import scipy.optimize
from numpy.typing import NDArray

from pathgen.core.errors import ConfigurationError
from pathgen.optimization.parameters import SUPPORTED_ALGORITHMS

logger = logging.getLogger(__name__)

Objective = Callable[[NDArray], float]


@dataclass
class MinimizeResult:
    """Best iterate of a local minimization."""

    x: NDArray
    fun: float
    converged: bool   # tolerances met (False on iteration/evaluation cap)
    iterations: int
    evaluations: int
    message: str


class Minimizer(Protocol):
    """minimize(objective, x0, initial_step) -> best iterate and convergence flag."""

    def minimize(
        self,
        objective: Objective,
        x0: NDArray,
        initial_step: Union[float, NDArray],
    ) -> MinimizeResult:
        """
        Minimize objective starting at x0.

        Args:
            objective: Scalar function of a flat parameter vector; may return +inf
            x0: Starting point
            initial_step: Initial step per parameter (scalar broadcasts)

        Returns:
            The best iterate seen, never worse than x0
        """
        ...


class _BestIterate:
    """Objective wrapper that counts calls and remembers the lowest value."""

    def __init__(self, objective: Objective):
        self._objective = objective
        self.evaluations = 0
        self.best_x: NDArray = np.zeros(0)
        self.best_f = np.inf

    def __call__(self, x: NDArray) -> float:
        self.evaluations += 1
        value = float(self._objective(x))
        if not np.isfinite(value):
            value = np.inf
        if value < self.best_f or self.evaluations == 1:
            self.best_x = np.array(x, dtype=float, copy=True)
            self.best_f = value
        return value


class ScipyMinimizer:
    """
    scipy.optimize.minimize behind the Minimizer protocol.

    Relative tolerances are mapped to each method's options: Powell takes
    them directly (xtol, ftol); Nelder-Mead's absolute xatol/fatol are scaled
    by the starting point; L-BFGS-B uses ftol and finite-difference gradients.
    """

    def __init__(
        self,
        method: str = "Powell",
        max_iterations: int = 3000,
        f_rel: float = 0.05,
        x_rel: float = 0.1,
    ):
        if method not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported method {method!r}; choose from {SUPPORTED_ALGORITHMS}"
            )
        self.method = method
        self.max_iterations = max_iterations
        self.f_rel = f_rel
        self.x_rel = x_rel

    def minimize(
        self,
        objective: Objective,
        x0: NDArray,
        initial_step: Union[float, NDArray] = 0.1,
    ) -> MinimizeResult:
        x0 = np.asarray(x0, dtype=float).ravel()
        step = np.broadcast_to(np.asarray(initial_step, dtype=float), x0.shape)
        tracked = _BestIterate(objective)
        f0 = tracked(x0)
        if not np.isfinite(f0):
            raise ValueError("Objective is not finite at the starting point")

        result = scipy.optimize.minimize(
            tracked,
            x0,
            method=self.method,
            options=self._options(x0, f0, step),
        )

        converged = bool(result.success)
        logger.debug(
            "%s finished: success=%s, nit=%s, nfev=%d, message=%s",
            self.method,
            result.success,
            getattr(result, "nit", "?"),
            tracked.evaluations,
            result.message,
        )
        return MinimizeResult(
            x=tracked.best_x,
            fun=tracked.best_f,
            converged=converged,
            iterations=int(getattr(result, "nit", 0)),
            evaluations=tracked.evaluations,
            message=str(result.message),
        )

    def _options(self, x0: NDArray, f0: float, step: NDArray) -> dict:
        if self.method == "Powell":
            return {
                "maxiter": self.max_iterations,
                "xtol": self.x_rel,
                "ftol": self.f_rel,
                "direc": np.diag(step),
            }
        if self.method == "Nelder-Mead":
            simplex = np.vstack([x0, x0 + np.diag(step)])
            return {
                "maxiter": self.max_iterations,
                "xatol": self.x_rel * max(1.0, float(np.max(np.abs(x0)))),
                "fatol": self.f_rel * max(1.0, abs(f0)),
                "initial_simplex": simplex,
            }
        return {
            "maxiter": self.max_iterations,
            "ftol": self.f_rel,
        }
