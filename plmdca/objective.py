import logging
from typing import Optional, Tuple

import numpy as np
from tqdm import tqdm

from .errors import AllocationError
from .model import AlignmentModel
from .optimizer import OptimizationResult, minimize
from .types import LbfgsParam

logger = logging.getLogger(__name__)


class ObjectiveFunction:
    """
    Objective for the L-BFGS solver.

    Owns the fields-and-couplings buffer m_x for the duration of a run and hands
    every evaluation to the alignment model. The buffer is given away once with
    release_buffer(), it is never freed here.
    """

    def __init__(self, model: AlignmentModel, param: LbfgsParam,
                 method: str = "L-BFGS-B", verbose: bool = False):
        self.model = model
        self.param = param
        self.method = method
        self.verbose = verbose
        self.m_x: Optional[np.ndarray] = None
        self._bar: Optional[tqdm] = None

    def evaluate(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        g = np.empty_like(x)
        fx = self.model.gradient(x, g)
        return float(fx), g

    def progress(self, x: np.ndarray, g: np.ndarray, fx: float, xnorm: float,
                 gnorm: float, step: float, k: int) -> int:
        self.m_x[:] = x
        if self.verbose:
            logger.info(f"Iteration {k}: fx = {fx:.6f} xnorm = {xnorm:.6f}, gnorm = {gnorm:.6f}, step = {step:.6f}")
            if self._bar is not None:
                self._bar.update(1)
                self._bar.set_postfix(fx=f"{fx:.4f}", gnorm=f"{gnorm:.4f}")
        return 0

    def allocate(self, n: int) -> np.ndarray:
        try:
            self.m_x = np.empty(n, dtype=np.float64)
        except (MemoryError, ValueError) as e:
            logger.error(f"Failed to allocate a memory block for {n} variables")
            raise AllocationError(f"could not allocate {n} parameters") from e
        return self.m_x

    def run(self, n: int) -> OptimizationResult:
        """Allocate n parameters, initialize them from the model and optimize in place."""
        self.allocate(n)
        self.model.initialize(self.m_x)

        if self.verbose:
            self._bar = tqdm(total=self.param.max_iterations, desc="L-BFGS", leave=False)
        try:
            result = minimize(self, self.m_x, self.param, self.method)
        finally:
            if self._bar is not None:
                self._bar.close()
                self._bar = None
        self.m_x[:] = result.x

        if self.verbose:
            logger.info(f"L-BFGS optimization terminated with status code = {int(result.termination)} "
                        f"({result.termination.name})")
            logger.info(f"fx = {result.fx:.6f}")
        if not result.converged:
            logger.warning(f"L-BFGS stopped before convergence: {result.termination.name} "
                           f"after {result.iterations} iterations, fx = {result.fx:.6f}")
        return result

    def release_buffer(self) -> np.ndarray:
        if self.m_x is None:
            raise RuntimeError("no fields and couplings to release, run() has not allocated them")
        m_x, self.m_x = self.m_x, None
        return m_x
