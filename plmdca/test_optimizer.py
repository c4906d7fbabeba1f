import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.optimize import rosen, rosen_der

from plmdca.errors import ConfigurationError
from plmdca.optimizer import Termination, gradient_converged, minimize
from plmdca.types import LbfgsParam


class Quadratic:
    """f(x) = 0.5 ||x - c||^2, records the iterations it is shown"""

    def __init__(self, c, cancel_at=None):
        self.c = np.asarray(c, dtype=np.float64)
        self.cancel_at = cancel_at
        self.evaluations = 0
        self.iterations = []
        self.points = []

    def evaluate(self, x):
        self.evaluations += 1
        self.points.append(x.copy())
        r = x - self.c
        return 0.5 * float(r @ r), r.copy()

    def progress(self, x, g, fx, xnorm, gnorm, step, k):
        self.iterations.append((k, fx, xnorm, gnorm, step))
        return 1 if k == self.cancel_at else 0


class Rosenbrock(Quadratic):
    def __init__(self):
        super().__init__([0.0])

    def evaluate(self, x):
        self.evaluations += 1
        self.points.append(x.copy())
        return float(rosen(x)), rosen_der(x)


class WrongSign(Quadratic):
    """Reports the negated gradient so every line search heads uphill"""

    def evaluate(self, x):
        self.evaluations += 1
        self.points.append(x.copy())
        return float(x @ x), -2.0 * x


def test_gradient_converged():
    assert gradient_converged(0.0, 1e-4, 1e-3)
    assert not gradient_converged(0.0, 1e-2, 1e-3)
    # relative to ||x|| once ||x|| > 1
    assert gradient_converged(100.0, 5e-2, 1e-3)


@pytest.mark.parametrize("method", ["L-BFGS-B", "LD_LBFGS"])
def test_converges_on_quadratic(method):
    if method == "LD_LBFGS":
        pytest.importorskip("nlopt")
    obj = Quadratic(np.linspace(-2.0, 2.0, 10))
    res = minimize(obj, np.zeros(10), LbfgsParam(max_iterations=100), method)

    assert res.termination == Termination.CONVERGED
    assert res.converged
    assert_allclose(res.x, obj.c, atol=5e-2)
    assert res.fx < 1e-3


def test_progress_sees_every_iteration():
    obj = Quadratic(np.linspace(-2.0, 2.0, 10))
    res = minimize(obj, np.zeros(10), LbfgsParam(max_iterations=100))

    ks = [it[0] for it in obj.iterations]
    assert ks == list(range(1, res.iterations + 1))
    for k, fx, xnorm, gnorm, step in obj.iterations:
        assert fx >= 0 and xnorm >= 0 and gnorm >= 0 and step > 0


@pytest.mark.parametrize("method", ["L-BFGS-B", "LD_LBFGS"])
def test_iteration_limit(method):
    if method == "LD_LBFGS":
        pytest.importorskip("nlopt")
    obj = Rosenbrock()
    x0 = np.array([-1.2, 1.0])
    res = minimize(obj, x0, LbfgsParam(max_iterations=2), method)

    assert res.termination == Termination.ITERATION_LIMIT
    assert res.iterations <= 2
    assert res.fx < rosen(x0)


def test_starting_point_already_converged():
    obj = Quadratic([1.0, 2.0])
    res = minimize(obj, np.array([1.0, 2.0]), LbfgsParam(max_iterations=10))

    assert res.termination == Termination.CONVERGED
    assert res.iterations == 0
    assert obj.iterations == []


def test_line_search_failure_keeps_last_point():
    obj = WrongSign([0.0])
    x0 = np.ones(3)
    res = minimize(obj, x0, LbfgsParam(max_iterations=20))

    assert res.termination == Termination.LINE_SEARCH_FAILED
    assert res.iterations == 0
    assert_allclose(res.x, x0)


def test_progress_can_cancel():
    obj = Quadratic(np.linspace(-5.0, 5.0, 6), cancel_at=1)
    res = minimize(obj, np.zeros(6), LbfgsParam(max_iterations=100))

    assert res.termination == Termination.CANCELED
    assert res.iterations == 1


def test_unknown_method():
    with pytest.raises(ConfigurationError):
        minimize(Quadratic([0.0]), np.ones(1), LbfgsParam(max_iterations=1), method="SGD")


@pytest.mark.parametrize("method", ["L-BFGS-B", "LD_LBFGS"])
def test_start_point_evaluated_once(method):
    if method == "LD_LBFGS":
        pytest.importorskip("nlopt")
    obj = Quadratic(np.linspace(-2.0, 2.0, 10))
    x0 = np.zeros(10)
    minimize(obj, x0, LbfgsParam(max_iterations=1), method)

    assert sum(np.array_equal(p, x0) for p in obj.points) == 1


class FailingLBFGS:
    """Stands in for nlopt.opt: takes one improving step then fails generically"""

    def __init__(self, algorithm, n):
        self.f = None

    def set_vector_storage(self, m):
        pass

    def set_ftol_rel(self, tol):
        pass

    def set_maxeval(self, maxeval):
        pass

    def set_min_objective(self, f):
        self.f = f

    def force_stop(self):
        pass

    def last_optimize_result(self):
        return -1

    def optimize(self, x0):
        grad = np.empty_like(x0)
        self.f(x0, grad)
        self.f(x0 - 0.5 * grad, grad)
        raise RuntimeError("nlopt failure")


def test_nlopt_generic_failure_keeps_best_point(monkeypatch):
    nlopt = pytest.importorskip("nlopt")
    monkeypatch.setattr(nlopt, "opt", FailingLBFGS)
    obj = Quadratic(np.linspace(-2.0, 2.0, 10))
    res = minimize(obj, np.zeros(10), LbfgsParam(max_iterations=100), "LD_LBFGS")

    assert res.termination == Termination.LINE_SEARCH_FAILED
    assert res.iterations == 1
    assert_allclose(res.x, 0.5 * obj.c)


def test_nlopt_objective_errors_propagate(monkeypatch):
    nlopt = pytest.importorskip("nlopt")
    monkeypatch.setattr(nlopt, "opt", FailingLBFGS)

    class Broken(Quadratic):
        def evaluate(self, x):
            if self.evaluations:
                raise RuntimeError("objective failed")
            return super().evaluate(x)

    with pytest.raises(RuntimeError, match="objective failed"):
        minimize(Broken(np.ones(4)), np.zeros(4), LbfgsParam(max_iterations=10), "LD_LBFGS")
