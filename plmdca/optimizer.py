import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Protocol, Tuple

import numpy as np
from scipy.optimize import minimize as scipy_minimize

from .errors import ConfigurationError
from .types import LbfgsParam

logger = logging.getLogger(__name__)


class Termination(IntEnum):
    CONVERGED = 0
    ITERATION_LIMIT = 1
    LINE_SEARCH_FAILED = 2
    CANCELED = 3


class Objective(Protocol):
    def evaluate(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        ...

    def progress(self, x: np.ndarray, g: np.ndarray, fx: float, xnorm: float,
                 gnorm: float, step: float, k: int) -> int:
        ...


@dataclass
class OptimizationResult:
    x: np.ndarray
    fx: float
    termination: Termination
    iterations: int

    @property
    def converged(self) -> bool:
        return self.termination == Termination.CONVERGED


def gradient_converged(xnorm: float, gnorm: float, epsilon: float) -> bool:
    """||g|| / max(1, ||x||) <= epsilon"""
    return gnorm / max(1.0, xnorm) <= epsilon


class _Iterates:
    """Caches the last evaluation so the per-iteration hook sees the gradient at the accepted point."""

    def __init__(self, objective: Objective):
        self.objective = objective
        self.x: Optional[np.ndarray] = None
        self.fx = np.inf
        self.g: Optional[np.ndarray] = None

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        fx, g = self.objective.evaluate(x)
        self.x, self.fx, self.g = x.copy(), float(fx), np.array(g, dtype=np.float64)
        return self.fx, self.g.copy()

    def at(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        if self.x is None or not np.array_equal(x, self.x):
            self(x)
        return self.fx, self.g

    def cached(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        """Same as __call__ but a repeat of the last point is served without evaluating."""
        fx, g = self.at(x)
        return fx, g.copy()


def lbfgsb(objective: Objective, x0: np.ndarray, param: LbfgsParam) -> OptimizationResult:
    """L-BFGS on scipy's L-BFGS-B (unbounded), gradient-norm test done here like liblbfgs."""
    iterates = _Iterates(objective)

    fx, g = iterates(x0)
    if gradient_converged(np.linalg.norm(x0), np.linalg.norm(g), param.epsilon):
        logger.debug("initial point already satisfies the gradient-norm test")
        return OptimizationResult(x0.copy(), fx, Termination.CONVERGED, 0)

    k = 0
    x_prev = x0.copy()
    stop: Optional[Termination] = None

    def callback(intermediate_result):
        nonlocal k, x_prev, stop
        x = np.array(intermediate_result.x, dtype=np.float64)
        fx, g = iterates.at(x)
        k += 1
        xnorm, gnorm = np.linalg.norm(x), np.linalg.norm(g)
        step = np.linalg.norm(x - x_prev)
        x_prev = x

        if objective.progress(x, g, fx, xnorm, gnorm, step, k) != 0:
            stop = Termination.CANCELED
            raise StopIteration
        if gradient_converged(xnorm, gnorm, param.epsilon):
            stop = Termination.CONVERGED
            raise StopIteration

    res = scipy_minimize(
        iterates.cached, x0, jac=True, method="L-BFGS-B", callback=callback,
        options={
            "maxcor": param.m,
            "maxls": param.max_linesearch,
            "maxiter": param.max_iterations,
            "maxfun": param.max_iterations * (param.max_linesearch + 1) + 1,
            "ftol": param.ftol,
            "gtol": 0.0,
        },
    )

    if stop is not None:
        return OptimizationResult(x_prev, iterates.at(x_prev)[0], stop, k)

    if res.status == 0:
        termination = Termination.CONVERGED
    elif res.status == 1:
        termination = Termination.ITERATION_LIMIT
    else:
        logger.debug(f"L-BFGS-B stopped with: {res.message}")
        termination = Termination.LINE_SEARCH_FAILED
    x = np.array(res.x, dtype=np.float64)
    return OptimizationResult(x, float(res.fun), termination, k)


def get_solver(method: str) -> Callable[[Objective, np.ndarray, LbfgsParam], OptimizationResult]:
    if method == "L-BFGS-B":
        return lbfgsb
    if method == "LD_LBFGS":
        from .nlopt_lbfgs import ld_lbfgs
        return ld_lbfgs
    raise ConfigurationError(f"optimization method not configured: {method}")


def minimize(objective: Objective, x0: np.ndarray, param: LbfgsParam,
             method: str = "L-BFGS-B") -> OptimizationResult:
    """Drive x0 to a stationary point of the objective, one evaluate call at a time."""
    solver = get_solver(method)
    return solver(objective, np.asarray(x0, dtype=np.float64), param)
