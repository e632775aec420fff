"""Line searches as reverse-communication state machines.

A line search looks for a step ``stp > 0`` along a descent direction. It
is started with the function value ``f0`` and the directional derivative
``g0 < 0`` at ``stp = 0``, then driven by calls to :meth:`LineSearch.iterate`
with the function value and directional derivative at the current step
until its task is no longer ``SEARCH``.

Example:
    >>> ls = MoreThuenteLineSearch(ftol=1e-4, gtol=0.9, xtol=1e-10)
    >>> task = ls.start(f0, g0, step=1.0, stpmin=0.0, stpmax=1e10)
    >>> while task == LineSearchTask.SEARCH:
    ...     f, g = phi(ls.step), dphi(ls.step)
    ...     task = ls.iterate(ls.step, f, g)

Reference:
    Moré, J.J. and Thuente, D.J. "Line search algorithms with guaranteed
    sufficient decrease." ACM Transactions on Mathematical Software 20.3
    (1994): 286-307.
"""

import math

from .tasks import LineSearchTask, OptimStatus

__all__ = ["LineSearch", "MoreThuenteLineSearch", "ArmijoLineSearch"]


def _check_fraction(name: str, value: float) -> float:
    value = float(value)
    if not (0.0 < value < 1.0):
        raise ValueError(f"{name} must be strictly between 0 and 1, got {value}")
    return value


def _root(s: float, theta: float, da: float, db: float) -> float:
    """``s*sqrt((theta/s)² - (da/s)(db/s))``, clamped at zero for rounding errors."""
    return s * math.sqrt(max(0.0, (theta / s) ** 2 - (da / s) * (db / s)))


class LineSearch:
    """Base class of line searches.

    Attributes:
        step: Current step length (the next one to try while searching).
        task: Current :class:`LineSearchTask`.
        status: Reason of a warning or an error.
    """

    #: Whether the search needs the directional derivative at trial steps.
    use_derivative = True

    def __init__(self):
        self.step = 0.0
        self.stpmin = 0.0
        self.stpmax = 0.0
        self.initial_value = 0.0
        self.initial_derivative = 0.0
        self._failure(OptimStatus.NOT_STARTED)

    def start(
        self, f0: float, g0: float, step: float, stpmin: float, stpmax: float
    ) -> LineSearchTask:
        """Start a new search from ``stp = 0``.

        Args:
            f0: Function value at ``stp = 0``.
            g0: Directional derivative at ``stp = 0`` (must be negative).
            step: First step to try.
            stpmin: Lower bound for the step (>= 0).
            stpmax: Upper bound for the step.

        Returns:
            ``SEARCH`` on success, ``ERROR`` if the arguments are invalid or
            the direction is not a descent direction.
        """
        if stpmin < 0:
            self._failure(OptimStatus.STPMIN_LT_ZERO)
        elif stpmin > stpmax:
            self._failure(OptimStatus.STPMIN_GT_STPMAX)
        elif step < stpmin:
            self._failure(OptimStatus.STEP_LT_STPMIN)
        elif step > stpmax:
            self._failure(OptimStatus.STEP_GT_STPMAX)
        elif not g0 < 0:
            self._failure(OptimStatus.NOT_A_DESCENT)
        else:
            self.step = step
            self.stpmin = stpmin
            self.stpmax = stpmax
            self.initial_value = f0
            self.initial_derivative = g0
            self._start_hook()
        return self.task

    def iterate(self, stp: float, f: float, g: float) -> LineSearchTask:
        """Submit the function value and directional derivative at ``stp``.

        ``stp`` must be the current :attr:`step`.
        """
        if self.task != LineSearchTask.SEARCH:
            return self._failure(OptimStatus.NOT_STARTED)
        if stp != self.step:
            return self._failure(OptimStatus.STEP_CHANGED)
        self._iterate_hook(f, g)
        if self.task == LineSearchTask.SEARCH:
            if self.step >= self.stpmax:
                self.step = self.stpmax
                self._warning(OptimStatus.STEP_EQ_STPMAX)
            elif self.step <= self.stpmin:
                self.step = self.stpmin
                self._warning(OptimStatus.STEP_EQ_STPMIN)
        return self.task

    def _start_hook(self) -> None:
        self._success(LineSearchTask.SEARCH)

    def _iterate_hook(self, f: float, g: float) -> None:
        raise NotImplementedError

    def converged(self) -> bool:
        return self.task == LineSearchTask.CONVERGENCE

    def finished(self) -> bool:
        return self.task != LineSearchTask.SEARCH

    @property
    def message(self) -> str:
        if self.status == OptimStatus.SUCCESS:
            return str(self.task)
        return str(self.status)

    def _failure(self, status: OptimStatus) -> LineSearchTask:
        self.status = status
        self.task = LineSearchTask.ERROR
        return self.task

    def _warning(self, status: OptimStatus) -> LineSearchTask:
        self.status = status
        self.task = LineSearchTask.WARNING
        return self.task

    def _success(self, task: LineSearchTask) -> LineSearchTask:
        self.status = OptimStatus.SUCCESS
        self.task = task
        return self.task


class ArmijoLineSearch(LineSearch):
    """Backtracking line search with the Armijo sufficient decrease test.

    The step is multiplied by ``rho`` until
    ``f(stp) <= f(0) + ftol*stp*f'(0)``. Only function values are used.

    Args:
        rho: Backtracking factor, strictly between 0 and 1. Default 0.5.
        ftol: Sufficient decrease parameter, strictly between 0 and 1.
            Default 1e-4.

    Raises:
        ValueError: If a parameter is out of range.
    """

    use_derivative = False

    def __init__(self, rho: float = 0.5, ftol: float = 1e-4):
        super().__init__()
        self.rho = _check_fraction("Backtracking factor", rho)
        self.ftol = _check_fraction("Sufficient decrease tolerance", ftol)

    def _iterate_hook(self, f: float, g: float) -> None:
        if f <= self.initial_value + self.ftol * self.step * self.initial_derivative:
            self._success(LineSearchTask.CONVERGENCE)
        else:
            self.step *= self.rho
            self._success(LineSearchTask.SEARCH)


class MoreThuenteLineSearch(LineSearch):
    """Moré & Thuente line search for the strong Wolfe conditions.

    A step is accepted when::

        f(stp) <= f(0) + ftol*stp*f'(0)        (sufficient decrease)
        |f'(stp)| <= gtol*|f'(0)|              (curvature)

    Trial steps are chosen by safeguarded cubic/quadratic interpolation
    inside an interval of uncertainty, with bisection when the interval
    does not shrink fast enough.

    Args:
        ftol: Sufficient decrease parameter. Default 1e-3.
        gtol: Curvature parameter. Default 0.9.
        xtol: Relative tolerance on the width of the interval of
            uncertainty. Default 0.1.

    Raises:
        ValueError: Unless ``0 < ftol < gtol < 1`` and ``0 < xtol < 1``.
    """

    XTRAPL = 1.1
    XTRAPU = 4.0

    def __init__(self, ftol: float = 1e-3, gtol: float = 0.9, xtol: float = 0.1):
        super().__init__()
        self.ftol = _check_fraction("Sufficient decrease tolerance", ftol)
        self.gtol = _check_fraction("Curvature tolerance", gtol)
        self.xtol = _check_fraction("Step tolerance", xtol)
        if not self.ftol < self.gtol:
            raise ValueError(
                f"Sufficient decrease tolerance ({ftol}) must be smaller than "
                f"the curvature tolerance ({gtol})"
            )

    def _start_hook(self) -> None:
        self._gtest = self.ftol * self.initial_derivative
        self._brackt = False
        self._stage = 1
        self._width = self.stpmax - self.stpmin
        self._width1 = 2.0 * self._width
        # (stx, fx, gx): best step so far; (sty, fy, gy): other end of the interval
        self._stx, self._fx, self._gx = 0.0, self.initial_value, self.initial_derivative
        self._sty, self._fy, self._gy = 0.0, self.initial_value, self.initial_derivative
        self._stmin = 0.0
        self._stmax = self.step + self.XTRAPU * self.step
        self._success(LineSearchTask.SEARCH)

    def _iterate_hook(self, f: float, g: float) -> None:
        stp = self.step
        ftest = self.initial_value + stp * self._gtest

        if f <= ftest and abs(g) <= -self.gtol * self.initial_derivative:
            self._success(LineSearchTask.CONVERGENCE)
            return

        if stp == self.stpmin and (f > ftest or g >= self._gtest):
            self._failure(OptimStatus.STEP_EQ_STPMIN)
            return
        if stp == self.stpmax and f <= ftest and g <= self._gtest:
            self._warning(OptimStatus.STEP_EQ_STPMAX)
            return
        if self._brackt and self._stmax - self._stmin <= self.xtol * self._stmax:
            self._warning(OptimStatus.XTOL_TEST_SATISFIED)
            return
        if self._brackt and (stp <= self._stmin or stp >= self._stmax):
            self._warning(OptimStatus.ROUNDING_ERRORS_PREVENT_PROGRESS)
            return

        # Second stage once a step with sufficient decrease and
        # non-negative derivative has been seen.
        if self._stage == 1 and f <= ftest and g >= 0:
            self._stage = 2

        if self._stage == 1 and f <= self._fx and f > ftest:
            # Lower value without sufficient decrease: interpolate the
            # modified function psi(stp) = f(stp) - f(0) - stp*gtest.
            gtest = self._gtest
            status = self._cstep(
                self._fx - gtest * self._stx, self._gx - gtest,
                self._fy - gtest * self._sty, self._gy - gtest,
                f - gtest * stp, g - gtest,
            )
            if status != OptimStatus.SUCCESS:
                self._failure(status)
                return
            self._fx += gtest * self._stx
            self._gx += gtest
            self._fy += gtest * self._sty
            self._gy += gtest
        else:
            status = self._cstep(self._fx, self._gx, self._fy, self._gy, f, g)
            if status != OptimStatus.SUCCESS:
                self._failure(status)
                return

        stp = self.step
        if self._brackt:
            new_width = abs(self._sty - self._stx)
            if new_width >= 0.66 * self._width1:
                stp = self._stx + 0.5 * (self._sty - self._stx)
            self._width1 = self._width
            self._width = new_width

        if self._brackt:
            self._stmin = min(self._stx, self._sty)
            self._stmax = max(self._stx, self._sty)
        else:
            self._stmin = stp + self.XTRAPL * (stp - self._stx)
            self._stmax = stp + self.XTRAPU * (stp - self._stx)

        stp = min(max(stp, self.stpmin), self.stpmax)

        # No further progress possible: fall back to the best step.
        if self._brackt and (
            stp <= self._stmin
            or stp >= self._stmax
            or self._stmax - self._stmin <= self.xtol * self._stmax
        ):
            stp = self._stx

        self.step = stp
        self._success(LineSearchTask.SEARCH)

    def _cstep(
        self, fx: float, dx: float, fy: float, dy: float, fp: float, dp: float
    ) -> OptimStatus:
        """Safeguarded step update.

        Updates the interval ``[stx, sty]`` with the trial ``(stp, fp, dp)``
        and stores the next trial step in :attr:`step`. The function values
        and derivatives are passed explicitly (possibly modified by the
        caller) and the updated ones are written back to ``_fx``, ``_gx``,
        ``_fy`` and ``_gy``.
        """
        stx, sty, stp = self._stx, self._sty, self.step
        stmin, stmax = self._stmin, self._stmax
        brackt = self._brackt

        if brackt and (
            (stp <= min(stx, sty) or stp >= max(stx, sty))
        ):
            return OptimStatus.STEP_OUTSIDE_BRACKET
        if dx * (stp - stx) >= 0:
            return OptimStatus.NOT_A_DESCENT
        if stmin > stmax:
            return OptimStatus.STPMIN_GT_STPMAX

        opposite = (dp < 0 < dx) or (dx < 0 < dp)

        if fp > fx:
            # Higher function value: the minimum is bracketed.
            brackt = True
            theta = 3.0 * (fx - fp) / (stp - stx) + dx + dp
            s = max(abs(theta), abs(dx), abs(dp))
            gamma = _root(s, theta, dx, dp)
            if stp < stx:
                gamma = -gamma
            p = (gamma - dx) + theta
            q = ((gamma - dx) + gamma) + dp
            stpc = stx + (p / q) * (stp - stx)
            stpq = stx + ((dx / ((fx - fp) / (stp - stx) + dx)) / 2.0) * (stp - stx)
            if abs(stpc - stx) < abs(stpq - stx):
                stpf = stpc
            else:
                stpf = stpc + (stpq - stpc) / 2.0
        elif opposite:
            # Lower function value, derivatives of opposite signs: bracketed.
            brackt = True
            theta = 3.0 * (fx - fp) / (stp - stx) + dx + dp
            s = max(abs(theta), abs(dx), abs(dp))
            gamma = _root(s, theta, dx, dp)
            if stp > stx:
                gamma = -gamma
            p = (gamma - dp) + theta
            q = ((gamma - dp) + gamma) + dx
            stpc = stp + (p / q) * (stx - stp)
            stpq = stp + (dp / (dp - dx)) * (stx - stp)
            stpf = stpc if abs(stpc - stp) > abs(stpq - stp) else stpq
        elif abs(dp) < abs(dx):
            # Lower function value, same signs, decreasing derivative.
            theta = 3.0 * (fx - fp) / (stp - stx) + dx + dp
            s = max(abs(theta), abs(dx), abs(dp))
            temp = (theta / s) ** 2 - (dx / s) * (dp / s)
            if temp > 0:
                gamma = s * math.sqrt(temp)
                if stp > stx:
                    gamma = -gamma
            else:
                gamma = 0.0
            p = (gamma - dp) + theta
            q = (gamma + (dx - dp)) + gamma
            r = p / q
            if r < 0 and gamma != 0:
                stpc = stp + r * (stx - stp)
            elif stp > stx:
                stpc = stmax
            else:
                stpc = stmin
            stpq = stp + (dp / (dp - dx)) * (stx - stp)
            if brackt:
                stpf = stpc if abs(stpc - stp) < abs(stpq - stp) else stpq
                temp = stp + 0.66 * (sty - stp)
                if (stp > stx and stpf > temp) or (stp <= stx and stpf < temp):
                    stpf = temp
            else:
                stpf = stpc if abs(stpc - stp) > abs(stpq - stp) else stpq
                stpf = min(max(stpf, stmin), stmax)
        else:
            # Lower function value, same signs, non-decreasing derivative.
            if brackt:
                theta = 3.0 * (fp - fy) / (sty - stp) + dy + dp
                s = max(abs(theta), abs(dy), abs(dp))
                gamma = _root(s, theta, dy, dp)
                if stp > sty:
                    gamma = -gamma
                p = (gamma - dp) + theta
                q = ((gamma - dp) + gamma) + dy
                stpf = stp + (p / q) * (sty - stp)
            elif stp > stx:
                stpf = stmax
            else:
                stpf = stmin

        # Update the interval which contains a minimizer.
        if fp > fx:
            sty, fy, dy = stp, fp, dp
        else:
            if opposite:
                sty, fy, dy = stx, fx, dx
            stx, fx, dx = stp, fp, dp

        self._stx, self._fx, self._gx = stx, fx, dx
        self._sty, self._fy, self._gy = sty, fy, dy
        self._brackt = brackt
        self.step = stpf
        return OptimStatus.SUCCESS
