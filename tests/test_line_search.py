"""Tests for the line searches.

Each test drives a line search on a 1D function ``phi(stp)``, submitting
the value and derivative at the step the search asks for.
"""

import pytest

from invlib.optim import (
    ArmijoLineSearch,
    LineSearchTask,
    MoreThuenteLineSearch,
    OptimStatus,
)


def run_line_search(ls, phi, dphi, step: float, stpmax: float = 1e10, max_iter: int = 50):
    """Run ``ls`` on ``phi`` from ``stp = 0`` and return the final task."""
    task = ls.start(phi(0.0), dphi(0.0), step, 0.0, stpmax)
    for _ in range(max_iter):
        if task != LineSearchTask.SEARCH:
            return task
        stp = ls.step
        task = ls.iterate(stp, phi(stp), dphi(stp))
    return task


def parabola(stp):
    return (stp - 1.0) ** 2


def parabola_derivative(stp):
    return 2.0 * (stp - 1.0)


class TestLineSearchProtocol:
    """Tests common to all line searches."""

    def test_not_started(self):
        ls = ArmijoLineSearch()
        assert ls.task == LineSearchTask.ERROR
        assert ls.status == OptimStatus.NOT_STARTED
        assert ls.finished()

    def test_iterate_before_start(self):
        ls = MoreThuenteLineSearch()
        assert ls.iterate(1.0, 0.0, 0.0) == LineSearchTask.ERROR
        assert ls.status == OptimStatus.NOT_STARTED

    def test_not_a_descent_direction(self):
        ls = MoreThuenteLineSearch()
        assert ls.start(1.0, 0.5, 1.0, 0.0, 10.0) == LineSearchTask.ERROR
        assert ls.status == OptimStatus.NOT_A_DESCENT

    def test_zero_derivative_is_not_a_descent(self):
        ls = ArmijoLineSearch()
        assert ls.start(1.0, 0.0, 1.0, 0.0, 10.0) == LineSearchTask.ERROR
        assert ls.status == OptimStatus.NOT_A_DESCENT

    @pytest.mark.parametrize(
        "args, status",
        [
            ((1.0, -1.0, 1.0, -1.0, 10.0), OptimStatus.STPMIN_LT_ZERO),
            ((1.0, -1.0, 1.0, 5.0, 2.0), OptimStatus.STPMIN_GT_STPMAX),
            ((1.0, -1.0, 0.5, 1.0, 2.0), OptimStatus.STEP_LT_STPMIN),
            ((1.0, -1.0, 3.0, 1.0, 2.0), OptimStatus.STEP_GT_STPMAX),
        ],
    )
    def test_invalid_step_bounds(self, args, status):
        ls = MoreThuenteLineSearch()
        assert ls.start(*args) == LineSearchTask.ERROR
        assert ls.status == status

    def test_step_changed(self):
        ls = ArmijoLineSearch()
        ls.start(1.0, -2.0, 4.0, 0.0, 10.0)
        assert ls.iterate(3.0, 4.0, 0.0) == LineSearchTask.ERROR
        assert ls.status == OptimStatus.STEP_CHANGED


class TestArmijoLineSearch:
    """Tests for the backtracking line search."""

    def test_backtracking(self):
        ls = ArmijoLineSearch(rho=0.5, ftol=1e-4)
        task = run_line_search(ls, parabola, parabola_derivative, step=4.0)
        assert task == LineSearchTask.CONVERGENCE
        assert ls.converged()
        assert ls.step == pytest.approx(1.0)

    def test_first_step_accepted(self):
        ls = ArmijoLineSearch()
        task = run_line_search(ls, parabola, parabola_derivative, step=0.5)
        assert task == LineSearchTask.CONVERGENCE
        assert ls.step == 0.5

    def test_sufficient_decrease(self):
        ls = ArmijoLineSearch(rho=0.3, ftol=0.2)
        run_line_search(ls, parabola, parabola_derivative, step=10.0)
        stp = ls.step
        assert parabola(stp) <= parabola(0.0) + 0.2 * stp * parabola_derivative(0.0)

    def test_step_blocked_at_stpmin(self):
        ls = ArmijoLineSearch(rho=0.5)
        ls.start(0.0, -1.0, 1.0, 0.5, 2.0)
        # the function never decreases
        task = ls.iterate(1.0, 1.0, 0.0)
        assert task == LineSearchTask.WARNING
        assert ls.status == OptimStatus.STEP_EQ_STPMIN
        assert ls.step == 0.5

    @pytest.mark.parametrize("rho, ftol", [(0.0, 1e-4), (1.0, 1e-4), (0.5, 0.0), (0.5, 1.5)])
    def test_invalid_parameters(self, rho, ftol):
        with pytest.raises(ValueError):
            ArmijoLineSearch(rho=rho, ftol=ftol)


class TestMoreThuenteLineSearch:
    """Tests for the strong Wolfe line search."""

    @pytest.mark.parametrize("step", [0.01, 0.3, 3.0, 50.0])
    def test_strong_wolfe_conditions(self, step):
        ftol, gtol = 1e-3, 0.9
        ls = MoreThuenteLineSearch(ftol=ftol, gtol=gtol, xtol=0.1)
        task = run_line_search(ls, parabola, parabola_derivative, step=step)
        assert task == LineSearchTask.CONVERGENCE
        stp = ls.step
        f0, g0 = parabola(0.0), parabola_derivative(0.0)
        assert parabola(stp) <= f0 + ftol * stp * g0
        assert abs(parabola_derivative(stp)) <= gtol * abs(g0)

    def test_tight_curvature(self):
        ls = MoreThuenteLineSearch(ftol=1e-4, gtol=0.1, xtol=1e-10)

        def phi(stp):
            return stp ** 4 - 2.0 * stp ** 2 - stp

        def dphi(stp):
            return 4.0 * stp ** 3 - 4.0 * stp - 1.0

        task = run_line_search(ls, phi, dphi, step=0.1)
        assert task == LineSearchTask.CONVERGENCE
        assert abs(dphi(ls.step)) <= 0.1 * abs(dphi(0.0))

    def test_step_blocked_at_stpmax(self):
        ls = MoreThuenteLineSearch()
        # decreasing linear function: the step grows until stpmax
        task = run_line_search(ls, lambda s: -s, lambda s: -1.0, step=1.0, stpmax=10.0)
        assert task == LineSearchTask.WARNING
        assert ls.status == OptimStatus.STEP_EQ_STPMAX
        assert ls.step == 10.0

    @pytest.mark.parametrize(
        "ftol, gtol, xtol",
        [(0.0, 0.9, 0.1), (0.5, 0.4, 0.1), (1e-3, 1.0, 0.1), (1e-3, 0.9, 0.0)],
    )
    def test_invalid_parameters(self, ftol, gtol, xtol):
        with pytest.raises(ValueError):
            MoreThuenteLineSearch(ftol=ftol, gtol=gtol, xtol=xtol)
