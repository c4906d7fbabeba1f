import logging
import time

import nlopt
import numpy as np

from .optimizer import Objective, OptimizationResult, Termination, gradient_converged
from .types import LbfgsParam

logger = logging.getLogger(__name__)

CONVERGED_RESULTS = (nlopt.SUCCESS, nlopt.STOPVAL_REACHED, nlopt.FTOL_REACHED, nlopt.XTOL_REACHED)


def ld_lbfgs(objective: Objective, x0: np.ndarray, param: LbfgsParam) -> OptimizationResult:
    """
    L-BFGS through NLopt's LD_LBFGS.

    NLopt has no iteration callback, so an iteration is counted each time an
    evaluation improves on the best objective seen so far. The per-iteration
    hook, the gradient-norm test and the iteration ceiling run on those points
    and halt the solver with force_stop.
    """
    fx0, g0 = objective.evaluate(x0)
    if gradient_converged(np.linalg.norm(x0), np.linalg.norm(g0), param.epsilon):
        return OptimizationResult(x0.copy(), float(fx0), Termination.CONVERGED, 0)

    opt = nlopt.opt(nlopt.LD_LBFGS, x0.size)
    opt.set_vector_storage(param.m)
    opt.set_ftol_rel(param.ftol)
    # line search trials are not exposed, bound the evaluations instead
    opt.set_maxeval(param.max_iterations * (param.max_linesearch + 1) + 1)

    best = {"x": x0.copy(), "fx": float(fx0), "k": 0, "stop": None, "raised": False}

    def compute_pslikeandgrad(x: np.ndarray, grad: np.ndarray) -> float:
        if best["k"] == 0 and np.array_equal(x, x0):
            # nlopt opens at x0, already evaluated above
            if grad.size > 0:
                grad[:] = g0
            return float(fx0)
        try:
            fx, g = objective.evaluate(x)
        except Exception:
            best["raised"] = True
            raise
        if grad.size > 0:
            grad[:] = g
        if fx >= best["fx"] or best["stop"] is not None:
            return fx

        step = np.linalg.norm(x - best["x"])
        best["x"], best["fx"] = x.copy(), float(fx)
        best["k"] += 1
        k = best["k"]
        xnorm, gnorm = np.linalg.norm(x), np.linalg.norm(g)

        if objective.progress(x, g, fx, xnorm, gnorm, step, k) != 0:
            best["stop"] = Termination.CANCELED
        elif gradient_converged(xnorm, gnorm, param.epsilon):
            best["stop"] = Termination.CONVERGED
        elif k >= param.max_iterations:
            best["stop"] = Termination.ITERATION_LIMIT
        if best["stop"] is not None:
            opt.force_stop()
        return fx

    opt.set_min_objective(compute_pslikeandgrad)

    start_time = time.perf_counter()
    try:
        opt.optimize(x0)
        status = opt.last_optimize_result()
        if best["stop"] is not None:
            termination = best["stop"]
        elif status in CONVERGED_RESULTS:
            termination = Termination.CONVERGED
        else:
            termination = Termination.ITERATION_LIMIT
    except nlopt.ForcedStop:
        termination = best["stop"]
    except nlopt.RoundoffLimited:
        termination = Termination.LINE_SEARCH_FAILED
    except RuntimeError:
        # nlopt's generic failure; errors from the objective itself propagate
        if best["raised"]:
            raise
        logger.debug("LD_LBFGS reported a generic failure, keeping the best iterate")
        termination = Termination.LINE_SEARCH_FAILED
    elapsed = time.perf_counter() - start_time
    logger.debug(f"LD_LBFGS finished in {elapsed:.4f}s after {best['k']} iterations")

    if termination is None:
        termination = Termination.CANCELED
    return OptimizationResult(best["x"], best["fx"], termination, best["k"])
