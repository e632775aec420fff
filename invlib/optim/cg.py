"""Non-linear conjugate gradient with reverse communication.

The search direction is ``d = -p`` with the recurrence::

    p_{k+1} = g_{k+1} + beta_k p_k

where ``beta_k`` is given by one of the classical update rules. The new
iterate is searched as ``x = x0 - alpha*p`` for ``alpha > 0``.

References:
    Hager, W.W. and Zhang, H. "A survey of nonlinear conjugate gradient
    methods." Pacific Journal of Optimization 2.1 (2006): 35-58.

    Shanno, D.F. and Phua, K.H. "Remark on algorithm 500: Minimization of
    unconstrained multivariate functions." ACM Transactions on Mathematical
    Software 6.4 (1980): 618-622.
"""

from typing import Optional

from ..linalg import Vector, VectorSpace
from ..logging import get_logger
from .base import ReverseCommunicationOptimizer
from .line_search import LineSearch, MoreThuenteLineSearch
from .tasks import OptimTask

__all__ = ["NonLinearConjugateGradient"]

logger = get_logger(__name__)


class NonLinearConjugateGradient(ReverseCommunicationOptimizer):
    """Non-linear conjugate gradient optimizer.

    Args:
        space: Space of the variables.
        method: Update rule, possibly combined with the ``POWELL`` and
            ``SHANNO_PHUA`` modifiers with ``|``. Default is
            ``HAGER_ZHANG | SHANNO_PHUA``.
        line_search: Line search. Default is More-Thuente with
            ``ftol=0.05``, ``gtol=0.1`` and ``xtol=1e-17``.

    Raises:
        ValueError: If ``method`` does not name an update rule.

    Example:
        >>> cg = NonLinearConjugateGradient(
        ...     space, NonLinearConjugateGradient.POLAK_RIBIERE_POLYAK
        ...     | NonLinearConjugateGradient.POWELL)
    """

    FLETCHER_REEVES = 1
    HESTENES_STIEFEL = 2
    POLAK_RIBIERE_POLYAK = 3
    FLETCHER = 4
    LIU_STOREY = 5
    DAI_YUAN = 6
    PERRY_SHANNO = 7
    HAGER_ZHANG = 8
    #: Force ``beta >= 0``.
    POWELL = 1 << 8
    #: Initial step from the previous directional derivative.
    SHANNO_PHUA = 1 << 9

    DEFAULT = HAGER_ZHANG | SHANNO_PHUA

    STPMAX = 1e6

    def __init__(
        self,
        space: VectorSpace,
        method: int = DEFAULT,
        line_search: Optional[LineSearch] = None,
    ):
        if method == 0:
            method = self.DEFAULT
        rule = method & 0xFF
        updates = {
            self.FLETCHER_REEVES: self._update_fletcher_reeves,
            self.HESTENES_STIEFEL: self._update_hestenes_stiefel,
            self.POLAK_RIBIERE_POLYAK: self._update_polak_ribiere_polyak,
            self.FLETCHER: self._update_fletcher,
            self.LIU_STOREY: self._update_liu_storey,
            self.DAI_YUAN: self._update_dai_yuan,
            self.PERRY_SHANNO: self._update_perry_shanno,
            self.HAGER_ZHANG: self._update_hager_zhang,
        }
        if rule not in updates:
            raise ValueError(f"Invalid conjugate gradient method: {method}")
        if line_search is None:
            line_search = MoreThuenteLineSearch(ftol=0.05, gtol=0.1, xtol=1e-17)
        super().__init__(space, line_search)
        self.method = method
        self._update = updates[rule]
        self.beta = 0.0
        self._starting = True
        self._f0 = 0.0
        self._dg0 = 0.0
        self._dg1 = 0.0
        self._g0norm = 0.0
        self._x0 = space.create()
        self._p = space.create()
        # the previous gradient and the difference are not needed by all rules
        needs_g0 = rule not in (self.FLETCHER_REEVES, self.FLETCHER)
        self._g0 = space.create() if needs_g0 else None
        self._y = space.create() if needs_g0 else None

    @property
    def direction(self) -> Vector:
        """Current anti-search direction ``p`` (the iterate moves along ``-p``)."""
        return self._p

    def _reset_memory(self) -> None:
        self._starting = True

    # -------------------------------------------------------------------------
    # Reverse communication
    # -------------------------------------------------------------------------

    def _on_evaluation(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        if not self._starting:
            self._dg1 = -self.space.dot(self._p, gx)
            task = self._line_search_step(fx, self._dg1)
            self.alpha = self.line_search.step
            if task is None:
                return self._next_step(x)
            if task != OptimTask.NEW_X:
                return task
        return self._accept(self.space.norm2(gx))

    def _on_new_x(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        space = self.space
        gnorm = self.gnorm
        restart = self._starting
        if not restart:
            restart = not self._update(gx)
            if not restart:
                dg = -space.dot(self._p, gx)
                if dg >= 0:
                    restart = True
                else:
                    if self.method & self.SHANNO_PHUA:
                        # <alpha_{k+1} d_{k+1}, g_{k+1}> = <alpha_k d_k, g_k>
                        self.alpha *= self._dg0 / dg
                    self._dg0 = dg
        if restart:
            if not self._starting:
                self.restarts += 1
                logger.debug("restart with steepest descent at iteration %d", self.iterations)
            self.beta = 0.0
            self.alpha = 1.0 / gnorm
            space.copy(self._p, gx)
            self._dg0 = -gnorm * gnorm

        space.copy(self._x0, x)
        self._f0 = fx
        if self._g0 is not None:
            space.copy(self._g0, gx)
        self._g0norm = gnorm
        self._starting = False

        self.line_search.start(
            self._f0, self._dg0, self.alpha, self.STPMIN * self.alpha, self.STPMAX * self.alpha
        )
        if not self.line_search.finished():
            return self._next_step(x)
        return self._line_search_failure()

    def _next_step(self, x: Vector) -> OptimTask:
        self.alpha = self.line_search.step
        self.space.combine(1.0, self._x0, -self.alpha, self._p, x)
        return self._success(OptimTask.COMPUTE_FG)

    # -------------------------------------------------------------------------
    # Update rules
    # -------------------------------------------------------------------------

    def _form_y(self, g1: Vector) -> None:
        self.space.combine(1.0, g1, -1.0, self._g0, self._y)

    def _apply_beta(self, g1: Vector, beta: float, powell: bool) -> bool:
        """``p <- g1 + beta*p``; False when the rule failed (``beta == 0``)."""
        if powell and self.method & self.POWELL and beta < 0:
            self.restarts += 1
            beta = 0.0
        self.beta = beta
        if beta == 0:
            return False
        self.space.combine(1.0, g1, beta, self._p)
        return True

    def _update_fletcher_reeves(self, g1: Vector) -> bool:
        r = self.gnorm / self._g0norm
        return self._apply_beta(g1, r * r, powell=False)

    def _update_hestenes_stiefel(self, g1: Vector) -> bool:
        self._form_y(g1)
        g1y = self.space.dot(g1, self._y)
        dy = -self.space.dot(self._p, self._y)
        return self._apply_beta(g1, g1y / dy if dy != 0 else 0.0, powell=True)

    def _update_polak_ribiere_polyak(self, g1: Vector) -> bool:
        self._form_y(g1)
        g0norm = self._g0norm
        beta = self.space.dot(g1, self._y) / g0norm / g0norm
        return self._apply_beta(g1, beta, powell=True)

    def _update_fletcher(self, g1: Vector) -> bool:
        beta = self.gnorm * (self.gnorm / (-self._dg0))
        return self._apply_beta(g1, beta, powell=False)

    def _update_liu_storey(self, g1: Vector) -> bool:
        self._form_y(g1)
        g1y = self.space.dot(g1, self._y)
        return self._apply_beta(g1, g1y / (-self._dg0), powell=True)

    def _update_dai_yuan(self, g1: Vector) -> bool:
        self._form_y(g1)
        dy = -self.space.dot(self._p, self._y)
        beta = self.gnorm * (self.gnorm / dy) if dy != 0 else 0.0
        return self._apply_beta(g1, beta, powell=True)

    def _update_hager_zhang(self, g1: Vector) -> bool:
        self._form_y(g1)
        dy = -self.space.dot(self._p, self._y)
        if dy != 0:
            yg = self.space.dot(self._y, g1)
            r = self.space.norm2(self._y) / dy
            beta = yg / dy - 2.0 * r * r * self._dg1
        else:
            beta = 0.0
        return self._apply_beta(g1, beta, powell=True)

    def _update_perry_shanno(self, g1: Vector) -> bool:
        space = self.space
        self._form_y(g1)
        yy = space.dot(self._y, self._y)
        if yy <= 0:
            return False
        dy = -space.dot(self._p, self._y)
        if dy == 0:
            return False
        g1y = space.dot(g1, self._y)
        c1 = dy / yy
        c2 = g1y / yy - 2.0 * self._dg1 / dy
        c3 = -self._dg1 / yy
        self.beta = c2 / c1
        # p <- c1*g1 + c2*p + c3*y
        space.combine(c2, self._p, c3, self._y, self._p)
        self._p.data.add_(g1.data, alpha=c1)
        return True
