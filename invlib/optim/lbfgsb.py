"""L-BFGS with simple bound constraints.

Variant of :class:`~invlib.optim.lbfgs.LBFGS` for the feasible set defined
by a :class:`~invlib.optim.bounds.BoundProjector`. The projected gradient
replaces the gradient for the convergence test and the L-BFGS recursion,
the search direction is projected so that it does not push active
variables outside the box, and trial points are projected::

    x = P(x0 - alpha*p)

Since projected steps bend the search path, the curvature condition is
unreliable and an Armijo backtracking line search is used by default.
"""

from typing import Optional

import torch

from ..linalg import LinearOperator, Vector, VectorSpace
from ..logging import get_logger
from .bounds import BoundProjector
from .lbfgs import LBFGS
from .line_search import ArmijoLineSearch, LineSearch
from .tasks import OptimStatus, OptimTask

__all__ = ["LBFGSB"]

logger = get_logger(__name__)


class LBFGSB(LBFGS):
    """Limited-memory BFGS with bound constraints.

    The caller is responsible for starting from a feasible point (see
    :meth:`BoundProjector.project`); all the following points are feasible.

    Args:
        space: Space of the variables.
        m: Number of saved pairs. Default 5.
        projector: Projector onto the feasible set.
        line_search: Line search. Default is :class:`ArmijoLineSearch`.
        preconditioner: Optional initial inverse Hessian approximation.

    Raises:
        ValueError: If no projector is given.
    """

    STPMAX = 1e6

    def __init__(
        self,
        space: VectorSpace,
        m: int = 5,
        projector: Optional[BoundProjector] = None,
        line_search: Optional[LineSearch] = None,
        preconditioner: Optional[LinearOperator] = None,
    ):
        if projector is None:
            raise ValueError("L-BFGS-B requires a bound projector")
        if line_search is None:
            line_search = ArmijoLineSearch()
        super().__init__(space, m, line_search, preconditioner)
        self.projector = projector
        self.epsilon = 1e-3
        self._pg = space.create()
        self._active: Optional[torch.Tensor] = None

    @property
    def projected_gradient(self) -> Vector:
        """Projected gradient at the last evaluated point."""
        return self._pg

    @property
    def active_set(self) -> Optional[torch.Tensor]:
        """Mask of the variables blocked by a bound at the last accepted point."""
        return self._active

    def _on_evaluation(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        pg = self.projector.project_gradient(x, gx, self._pg)
        if not self._starting:
            task = self._line_search_step(fx, -self.space.dot(self._p, pg))
            if task is None:
                return self._next_step(x)
            if task != OptimTask.NEW_X:
                return task
        self._active = self.projector.active_set(x, gx)
        return self._accept(self.space.norm2(pg))

    def _on_new_x(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        pg = self._pg
        if self.iterations >= 1:
            self.H.update(x, self._x0, pg, self._g0)

        while True:
            self.H.apply(self._p, pg)
            self.projector.project_direction(x, self._p, ascent=True)
            pnorm = self._p.norm2()
            dg = self.space.dot(self._p, pg)
            if dg > 0 and dg >= self.delta * pnorm * self.gnorm:
                self._dg0 = -dg
                break
            if self.H.mp < 1:
                return self.failure(OptimStatus.BAD_PRECONDITIONER)
            self.H.reset()
            self.restarts += 1
            logger.debug("L-BFGS-B memory reset at iteration %d", self.iterations)

        self._x0.copy_from(x)
        self._g0.copy_from(pg)
        self._f0 = fx
        self.alpha = self._initial_step(x)
        self._starting = False
        self.line_search.start(
            self._f0, self._dg0, self.alpha, self.STPMIN * self.alpha, self.STPMAX * self.alpha
        )
        if self.line_search.finished():
            return self._line_search_failure()
        return self._next_step(x)

    def _next_step(self, x: Vector) -> OptimTask:
        self.alpha = self.line_search.step
        x.combine(1.0, self._x0, -self.alpha, self._p)
        self.projector.project(x)
        return self._success(OptimTask.COMPUTE_FG)
