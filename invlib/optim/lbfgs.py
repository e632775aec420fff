"""Limited-memory BFGS.

:class:`LBFGSOperator` approximates the inverse Hessian from the ``m`` last
variable changes ``s = x1 - x0`` and gradient changes ``y = g1 - g0``
(Nocedal's two-loop recursion). :class:`LBFGS` uses it to minimize a
smooth function with reverse communication.

Reference:
    Nocedal, J. "Updating quasi-Newton matrices with limited storage."
    Mathematics of Computation 35.151 (1980): 773-782.
"""

from typing import List, Optional

from ..linalg import IncorrectSpaceError, Job, LinearOperator, LinearEndomorphism, Vector, VectorSpace
from ..logging import get_logger
from .base import ReverseCommunicationOptimizer
from .line_search import LineSearch, MoreThuenteLineSearch
from .tasks import OptimStatus, OptimTask

__all__ = ["LBFGSOperator", "LBFGS"]

logger = get_logger(__name__)

DBL_EPSILON = 2.220446049250313e-16


class LBFGSOperator(LinearEndomorphism):
    """Limited-memory approximation of the inverse Hessian.

    Pairs with ``s'y <= 0`` would break positive definiteness: they are
    stored but skipped by the recursion. Without a preconditioner, the
    initial approximation is ``gamma*I`` with ``gamma = s'y/y'y`` from the
    last valid pair.

    Args:
        space: Space of the variables.
        m: Maximum number of saved pairs (> 0).
        preconditioner: Optional initial approximation ``H0`` (an
            endomorphism of ``space``). No automatic scaling is applied
            when it is given.

    Raises:
        ValueError: If ``m < 1``.
        IncorrectSpaceError: If the preconditioner does not act on ``space``.
    """

    def __init__(
        self,
        space: VectorSpace,
        m: int,
        preconditioner: Optional[LinearOperator] = None,
    ):
        super().__init__(space)
        if m < 1:
            raise ValueError(f"Number of saved pairs must be at least 1, got {m}")
        if preconditioner is not None and (
            preconditioner.input_space != space or preconditioner.output_space != space
        ):
            raise IncorrectSpaceError("Preconditioner must be an endomorphism of the space")
        self.m = m
        self.preconditioner = preconditioner
        self.s: List[Vector] = [space.create() for _ in range(m)]
        self.y: List[Vector] = [space.create() for _ in range(m)]
        self.rho = [0.0] * m
        self._beta = [0.0] * m
        #: Number of pairs used by the recursion.
        self.mp = 0
        #: Number of successful updates.
        self.mark = 0
        self.gamma = 1.0
        self.user_scaling = False
        self._tmp: Optional[Vector] = None

    def set_scale(self, value: float) -> None:
        """Use ``value*I`` as the initial approximation (disables auto scaling)."""
        if not value > 0:
            raise ValueError(f"Scale factor must be strictly positive, got {value}")
        self.gamma = float(value)
        self.user_scaling = True

    @property
    def scaled(self) -> bool:
        """Whether the initial approximation does not come from the memory."""
        return self.user_scaling or self.preconditioner is not None

    def slot(self, k: int) -> int:
        """Index of the k-th newest pair (``k = 0`` is the next free slot)."""
        if k < 0 or k > self.mp:
            raise IndexError(f"L-BFGS slot index {k} out of range [0, {self.mp}]")
        return (self.mark - k) % self.m

    def reset(self) -> None:
        """Forget all saved pairs."""
        self.mp = 0

    def update(self, x1: Vector, x0: Vector, g1: Vector, g0: Vector) -> None:
        """Store the pair ``(x1 - x0, g1 - g0)``."""
        j = self.slot(0)
        s, y = self.s[j], self.y[j]
        s.combine(1.0, x1, -1.0, x0)
        y.combine(1.0, g1, -1.0, g0)
        sty = s.dot(y)
        if sty <= 0:
            # skipped by the recursion, the slot will be overwritten
            self.rho[j] = 0.0
            logger.debug("skipping L-BFGS pair with s'y = %g", sty)
            return
        self.rho[j] = 1.0 / sty
        if not self.scaled:
            ynorm = y.norm2()
            self.gamma = (sty / ynorm) / ynorm
        self.mark += 1
        if self.mp < self.m:
            self.mp += 1

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        if job not in (Job.DIRECT, Job.ADJOINT):
            raise NotImplementedError("L-BFGS operator only implements DIRECT and ADJOINT")
        if self.preconditioner is None:
            tmp = dst
        else:
            if self._tmp is None:
                self._tmp = self.input_space.create()
            tmp = self._tmp
        tmp.copy_from(src)

        # newest to oldest
        for k in range(1, self.mp + 1):
            j = self.slot(k)
            if self.rho[j] > 0:
                self._beta[j] = self.rho[j] * tmp.dot(self.s[j])
                tmp.data.add_(self.y[j].data, alpha=-self._beta[j])
            else:
                self._beta[j] = 0.0

        if self.preconditioner is not None:
            self.preconditioner.apply(dst, tmp)
        if self.gamma != 1.0:
            dst.scale(self.gamma)

        # oldest to newest
        for k in range(self.mp, 0, -1):
            j = self.slot(k)
            if self.rho[j] > 0:
                phi = self.rho[j] * dst.dot(self.y[j])
                dst.data.add_(self.s[j].data, alpha=self._beta[j] - phi)


class LBFGS(ReverseCommunicationOptimizer):
    """Limited-memory BFGS for unconstrained smooth problems.

    Args:
        space: Space of the variables.
        m: Number of saved pairs. Default 5.
        line_search: Line search. Default is More-Thuente with
            ``ftol=1e-4``, ``gtol=0.9`` and ``xtol=DBL_EPSILON``.
        preconditioner: Optional initial inverse Hessian approximation.

    Attributes:
        delta: Sufficient descent parameter: the anti-search direction
            ``p`` is accepted if ``<p, g> >= delta*|p|*|g|``.
        epsilon: Relative size of the first step when there is no memory.
    """

    def __init__(
        self,
        space: VectorSpace,
        m: int = 5,
        line_search: Optional[LineSearch] = None,
        preconditioner: Optional[LinearOperator] = None,
    ):
        if line_search is None:
            line_search = MoreThuenteLineSearch(ftol=1e-4, gtol=0.9, xtol=DBL_EPSILON)
        super().__init__(space, line_search)
        self.H = LBFGSOperator(space, m, preconditioner)
        self.delta = 0.01
        self.epsilon = 1e-3
        self._starting = True
        self._f0 = 0.0
        self._dg0 = 0.0
        self._x0 = space.create()
        self._g0 = space.create()
        self._p = space.create()

    def _reset_memory(self) -> None:
        self.H.reset()
        self._starting = True

    def _on_evaluation(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        if not self._starting:
            task = self._line_search_step(fx, -self.space.dot(self._p, gx))
            if task is None:
                return self._next_step(x)
            if task != OptimTask.NEW_X:
                return task
        return self._accept(self.space.norm2(gx))

    def _on_new_x(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        if self.iterations >= 1:
            self.H.update(x, self._x0, gx, self._g0)

        # anti-search direction p, with a sufficient descent condition
        while True:
            self.H.apply(self._p, gx)
            self._dg0 = -self.space.dot(self._p, gx)
            r = self.delta * self.gnorm * self._p.norm2() if self.delta > 0 else 0.0
            if (self._dg0 <= -r) if r > 0 else (self._dg0 < 0):
                self.alpha = self._initial_step(x)
                break
            if self.H.mp < 1:
                return self.failure(OptimStatus.BAD_PRECONDITIONER)
            self.H.reset()
            self.restarts += 1
            logger.debug("L-BFGS memory reset at iteration %d", self.iterations)

        self._x0.copy_from(x)
        self._g0.copy_from(gx)
        self._f0 = fx
        self._starting = False
        self.line_search.start(
            self._f0, self._dg0, self.alpha, self.STPMIN * self.alpha, self.STPMAX * self.alpha
        )
        if self.line_search.finished():
            return self._line_search_failure()
        return self._next_step(x)

    def _initial_step(self, x: Vector) -> float:
        if self.H.mp >= 1 or self.H.scaled:
            return 1.0
        if 0 < self.epsilon < 1:
            xnorm = x.norm2()
            if xnorm > 0:
                return (xnorm / self.gnorm) * self.epsilon
        return 1.0 / self.gnorm

    def _next_step(self, x: Vector) -> OptimTask:
        self.alpha = self.line_search.step
        x.combine(1.0, self._x0, -self.alpha, self._p)
        return self._success(OptimTask.COMPUTE_FG)
