"""Tests for the reverse-communication optimizers and bound projectors."""

import math

import pytest
import torch

from invlib.cost import DifferentiableCostFunction, QuadraticCost
from invlib.linalg import IncorrectSpaceError, Job, VectorSpace
from invlib.optim import (
    LBFGS,
    LBFGSB,
    LBFGSOperator,
    NonLinearConjugateGradient,
    OptimStatus,
    OptimTask,
    SimpleBounds,
    SimpleLowerBound,
    SimpleUpperBound,
)


def minimize(optimizer, f, x, max_iter: int = 500, on_evaluation=None):
    """Run the reverse-communication loop and return the final task."""
    gx = x.create()
    fx = math.nan
    task = optimizer.start()
    while True:
        if task == OptimTask.COMPUTE_FG:
            fx = f.compute_cost_and_gradient(1.0, x, gx)
            if on_evaluation is not None:
                on_evaluation(x)
        elif task == OptimTask.NEW_X:
            if optimizer.iterations >= max_iter:
                return task
        else:
            return task
        task = optimizer.iterate(x, fx, gx)


def make_quadratic(n: int = 6, dtype=torch.float64):
    """Separable quadratic with condition number 10 and a known minimizer."""
    space = VectorSpace(n, dtype=dtype)
    target = space.wrap(torch.linspace(-2.0, 3.0, n, dtype=dtype))
    weights = space.wrap(torch.linspace(1.0, 10.0, n, dtype=dtype))
    return space, QuadraticCost(space, target=target, weights=weights), target


class Rosenbrock(DifferentiableCostFunction):
    """2D Rosenbrock function."""

    def evaluate(self, alpha, x):
        a, b = x.data.tolist()
        return alpha * ((1 - a) ** 2 + 100 * (b - a * a) ** 2)

    def compute_cost_and_gradient(self, alpha, x, gx, clear=True):
        a, b = x.data.tolist()
        g = torch.tensor(
            [-2 * (1 - a) - 400 * a * (b - a * a), 200 * (b - a * a)],
            dtype=x.data.dtype,
        )
        gx.data.copy_(alpha * g)
        return self.evaluate(alpha, x)


CG_METHODS = [
    NonLinearConjugateGradient.FLETCHER_REEVES,
    NonLinearConjugateGradient.HESTENES_STIEFEL,
    NonLinearConjugateGradient.POLAK_RIBIERE_POLYAK | NonLinearConjugateGradient.POWELL,
    NonLinearConjugateGradient.FLETCHER,
    NonLinearConjugateGradient.LIU_STOREY,
    NonLinearConjugateGradient.DAI_YUAN,
    NonLinearConjugateGradient.PERRY_SHANNO,
    NonLinearConjugateGradient.HAGER_ZHANG,
    NonLinearConjugateGradient.DEFAULT,
]


class TestNonLinearConjugateGradient:
    """Tests for NonLinearConjugateGradient."""

    def test_scalar_parabola(self):
        space = VectorSpace(1)
        target = space.wrap(torch.tensor([3.0], dtype=torch.float64))
        f = QuadraticCost(space, target=target)
        x = space.create()
        cg = NonLinearConjugateGradient(space)
        task = minimize(cg, f, x)
        assert task == OptimTask.FINAL_X
        assert float(x.data[0]) == pytest.approx(3.0, abs=1e-6)

    @pytest.mark.parametrize("method", CG_METHODS)
    def test_quadratic(self, method):
        space, f, target = make_quadratic()
        x = space.create()
        cg = NonLinearConjugateGradient(space, method)
        cg.gatol = 0.0
        cg.grtol = 1e-8
        minimize(cg, f, x)
        torch.testing.assert_close(x.data, target.data, atol=1e-6, rtol=0)

    def test_rosenbrock(self):
        space = VectorSpace(2)
        x = space.wrap(torch.tensor([-1.2, 1.0], dtype=torch.float64))
        cg = NonLinearConjugateGradient(space)
        cg.grtol = 1e-8
        minimize(cg, Rosenbrock(space), x, max_iter=2000)
        torch.testing.assert_close(x.data, torch.ones(2, dtype=torch.float64), atol=1e-4, rtol=0)

    def test_invalid_method(self):
        with pytest.raises(ValueError):
            NonLinearConjugateGradient(VectorSpace(2), 42)

    def test_zero_method_is_default(self):
        cg = NonLinearConjugateGradient(VectorSpace(2), 0)
        assert cg.method == NonLinearConjugateGradient.DEFAULT

    def test_counters(self):
        space, f, _ = make_quadratic()
        x = space.create()
        cg = NonLinearConjugateGradient(space)
        minimize(cg, f, x)
        assert cg.evaluations >= cg.iterations >= 1
        assert cg.gnorm <= cg.gradient_threshold


class TestLBFGSOperator:
    """Tests for the two-loop recursion."""

    def setup_method(self):
        torch.manual_seed(7)
        self.space = VectorSpace(5)

    def random_vector(self):
        return self.space.wrap(torch.randn(5, dtype=torch.float64))

    def test_secant_equation(self):
        H = LBFGSOperator(self.space, 3)
        x0, x1 = self.random_vector(), self.random_vector()
        g0 = self.random_vector()
        g1 = self.space.create()
        # gradient of a quadratic with a positive diagonal Hessian
        d = torch.linspace(1.0, 4.0, 5, dtype=torch.float64)
        g1.data.copy_(g0.data + d * (x1.data - x0.data))
        H.update(x1, x0, g1, g0)
        assert H.mp == 1
        y = self.space.create()
        y.combine(1.0, g1, -1.0, g0)
        s = self.space.create()
        s.combine(1.0, x1, -1.0, x0)
        Hy = H(y)
        torch.testing.assert_close(Hy.data, s.data)

    def test_skips_non_positive_curvature(self):
        H = LBFGSOperator(self.space, 3)
        x0 = self.space.create()
        x1 = self.space.create(1.0)
        g0 = self.space.create()
        g1 = self.space.create(-1.0)
        H.update(x1, x0, g1, g0)
        assert H.mp == 0
        v = self.random_vector()
        torch.testing.assert_close(H(v).data, v.data)

    def test_memory_is_bounded(self):
        H = LBFGSOperator(self.space, 2)
        for k in range(5):
            x0 = self.space.create(float(k))
            x1 = self.space.create(float(k + 1))
            g0 = self.space.create(float(2 * k))
            g1 = self.space.create(float(2 * k + 2))
            H.update(x1, x0, g1, g0)
        assert H.mp == 2
        assert H.mark == 5
        assert H.slot(1) == (5 - 1) % 2
        with pytest.raises(IndexError):
            H.slot(3)

    def test_user_scaling(self):
        H = LBFGSOperator(self.space, 2)
        H.set_scale(2.0)
        assert H.scaled
        v = self.random_vector()
        torch.testing.assert_close(H(v).data, 2.0 * v.data)
        with pytest.raises(ValueError):
            H.set_scale(0.0)

    def test_inverse_not_implemented(self):
        H = LBFGSOperator(self.space, 2)
        with pytest.raises(NotImplementedError):
            H(self.space.create(), Job.INVERSE)

    def test_invalid_memory(self):
        with pytest.raises(ValueError):
            LBFGSOperator(self.space, 0)


class TestLBFGS:
    """Tests for unconstrained L-BFGS."""

    def test_quadratic(self):
        space, f, target = make_quadratic(10)
        x = space.create()
        opt = LBFGS(space, m=5)
        opt.grtol = 1e-10
        task = minimize(opt, f, x)
        assert task in (OptimTask.FINAL_X, OptimTask.WARNING)
        torch.testing.assert_close(x.data, target.data, atol=1e-6, rtol=0)

    def test_single_precision(self):
        space, f, target = make_quadratic(8, dtype=torch.float32)
        x = space.create()
        opt = LBFGS(space, m=3)
        opt.grtol = 1e-5
        minimize(opt, f, x)
        torch.testing.assert_close(x.data, target.data, atol=2e-3, rtol=0)

    def test_rosenbrock(self):
        space = VectorSpace(2)
        x = space.wrap(torch.tensor([-1.2, 1.0], dtype=torch.float64))
        opt = LBFGS(space, m=5)
        opt.grtol = 1e-8
        minimize(opt, Rosenbrock(space), x)
        torch.testing.assert_close(x.data, torch.ones(2, dtype=torch.float64), atol=1e-4, rtol=0)

    def test_restart_keeps_counters(self):
        space, f, _ = make_quadratic()
        x = space.create()
        opt = LBFGS(space)
        minimize(opt, f, x, max_iter=2)
        iterations = opt.iterations
        assert opt.restart() == OptimTask.COMPUTE_FG
        assert opt.restarts == 1
        assert opt.iterations == iterations
        assert opt.H.mp == 0

    def test_wrong_space(self):
        space, _, _ = make_quadratic()
        opt = LBFGS(space)
        opt.start()
        other = VectorSpace(3)
        with pytest.raises(IncorrectSpaceError):
            opt.iterate(other.create(), 0.0, other.create())

    def test_invalid_tolerance(self):
        opt = LBFGS(VectorSpace(2))
        with pytest.raises(ValueError):
            opt.gatol = -1.0
        with pytest.raises(ValueError):
            opt.grtol = math.nan


class TestBounds:
    """Tests for SimpleBounds projections."""

    def setup_method(self):
        self.space = VectorSpace(4)

    def vec(self, values):
        return self.space.wrap(torch.tensor(values, dtype=torch.float64))

    def test_project(self):
        bounds = SimpleBounds(self.space, 0.0, 1.0)
        x = self.vec([-1.0, 0.5, 2.0, 1.0])
        bounds.project(x)
        torch.testing.assert_close(x.data, torch.tensor([0.0, 0.5, 1.0, 1.0], dtype=torch.float64))

    def test_project_into_destination(self):
        bounds = SimpleLowerBound(self.space, 0.0)
        x = self.vec([-1.0, 0.5, 2.0, -3.0])
        dst = self.space.create()
        bounds.project(x, dst)
        assert float(x.data[0]) == -1.0
        torch.testing.assert_close(dst.data, torch.tensor([0.0, 0.5, 2.0, 0.0], dtype=torch.float64))

    def test_vector_bounds(self):
        lower = self.vec([0.0, 1.0, 2.0, 3.0])
        bounds = SimpleBounds(self.space, lower=lower)
        x = self.space.create()
        bounds.project(x)
        torch.testing.assert_close(x.data, lower.data)

    def test_projected_gradient(self):
        bounds = SimpleBounds(self.space, 0.0, 1.0)
        x = self.vec([0.0, 0.0, 1.0, 0.5])
        # moving along -g: leaves at 0 for g > 0, at 1 for g < 0
        g = self.vec([1.0, -1.0, -1.0, 1.0])
        pg = bounds.project_gradient(x, g, self.space.create())
        torch.testing.assert_close(pg.data, torch.tensor([0.0, -1.0, 0.0, 1.0], dtype=torch.float64))
        active = bounds.active_set(x, g)
        assert active.tolist() == [True, False, True, False]

    def test_project_descent_direction(self):
        bounds = SimpleUpperBound(self.space, 1.0)
        x = self.vec([1.0, 1.0, 0.0, 0.0])
        d = self.vec([1.0, -1.0, 1.0, -1.0])
        bounds.project_direction(x, d, ascent=False)
        torch.testing.assert_close(d.data, torch.tensor([0.0, -1.0, 1.0, -1.0], dtype=torch.float64))

    def test_infeasible(self):
        with pytest.raises(ValueError):
            SimpleBounds(self.space, 2.0, 1.0)

    @pytest.mark.parametrize("lower, upper", [(math.nan, None), (math.inf, None), (None, -math.inf)])
    def test_invalid_values(self, lower, upper):
        with pytest.raises(ValueError):
            SimpleBounds(self.space, lower, upper)

    def test_overflow_in_single_precision(self):
        space = VectorSpace(2, dtype=torch.float32)
        with pytest.raises(ValueError):
            SimpleBounds(space, lower=1e300)

    def test_nan_vector_bound(self):
        with pytest.raises(ValueError):
            SimpleBounds(self.space, lower=self.vec([0.0, math.nan, 0.0, 0.0]))


class TestLBFGSB:
    """Tests for bound-constrained L-BFGS."""

    def test_parabola_with_lower_bound(self):
        space = VectorSpace(1)
        f = QuadraticCost(space)
        x = space.create(5.0)
        opt = LBFGSB(space, projector=SimpleLowerBound(space, 1.0))
        seen = []
        minimize(opt, f, x, on_evaluation=lambda v: seen.append(float(v.data[0])))
        assert float(x.data[0]) == pytest.approx(1.0)
        assert all(v >= 1.0 for v in seen)
        assert opt.active_set.tolist() == [True]

    def test_box_constrained_quadratic(self):
        space, f, target = make_quadratic(6)
        projector = SimpleBounds(space, 0.0, 1.0)
        x = space.create(0.5)
        opt = LBFGSB(space, m=3, projector=projector)
        opt.grtol = 1e-8

        def check_feasible(v):
            assert bool(((v.data >= 0) & (v.data <= 1)).all())

        minimize(opt, f, x, on_evaluation=check_feasible)
        expected = torch.clamp(target.data, 0.0, 1.0)
        torch.testing.assert_close(x.data, expected, atol=1e-6, rtol=0)

    def test_caller_gradient_untouched(self):
        space = VectorSpace(2)
        f = QuadraticCost(space)
        x = space.wrap(torch.tensor([0.0, 2.0], dtype=torch.float64))
        gx = space.create()
        opt = LBFGSB(space, projector=SimpleLowerBound(space, 0.0))
        opt.start()
        f.compute_cost_and_gradient(1.0, x, gx)
        saved = gx.data.clone()
        opt.iterate(x, f.evaluate(1.0, x), gx)
        torch.testing.assert_close(gx.data, saved)
        torch.testing.assert_close(
            opt.projected_gradient.data, torch.tensor([0.0, 2.0], dtype=torch.float64)
        )

    def test_requires_projector(self):
        with pytest.raises(ValueError):
            LBFGSB(VectorSpace(2))

    def test_status_on_budget_warning(self):
        opt = LBFGSB(VectorSpace(2), projector=SimpleLowerBound(VectorSpace(2), 0.0))
        assert opt.warning(OptimStatus.TOO_MANY_ITERATIONS) == OptimTask.WARNING
        assert opt.reason == str(OptimStatus.TOO_MANY_ITERATIONS)
