"""Common machinery of reverse-communication optimizers.

An optimizer never calls the objective function itself. The caller runs
the loop and does what the returned :class:`OptimTask` asks for::

    task = optimizer.start()
    while True:
        if task == OptimTask.COMPUTE_FG:
            fx = f.compute_cost_and_gradient(1.0, x, gx)
        elif task == OptimTask.NEW_X:
            pass  # report progress, possibly stop
        else:
            break  # FINAL_X, WARNING or ERROR
        task = optimizer.iterate(x, fx, gx)

Convergence is declared when the Euclidean norm of the gradient satisfies
``|g| <= max(0, gatol, grtol*|g0|)`` with ``g0`` the gradient at the first
evaluation after :meth:`ReverseCommunicationOptimizer.start` (or after a
restart).
"""

import math
from typing import Optional

from ..linalg import Vector, VectorSpace
from ..logging import get_logger
from .line_search import LineSearch
from .tasks import LineSearchTask, OptimStatus, OptimTask

__all__ = ["ReverseCommunicationOptimizer"]

logger = get_logger(__name__)

DEFAULT_GATOL = 0.0
DEFAULT_GRTOL = 1e-3


def _check_tolerance(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be finite and non-negative, got {value}")
    return value


class ReverseCommunicationOptimizer:
    """Base class of line-search based optimizers.

    Args:
        space: Space of the variables.
        line_search: Line search used along the search directions.

    Attributes:
        iterations: Number of accepted steps since :meth:`start`.
        evaluations: Number of function and gradient evaluations.
        restarts: Number of times the algorithm fell back to steepest
            descent.
        task: Pending task.
        status: Reason of the pending task.
    """

    #: Bounds of the step relative to the initial step of each line search.
    STPMIN = 1e-20
    STPMAX = 1e20

    def __init__(self, space: VectorSpace, line_search: LineSearch):
        self.space = space
        self.line_search = line_search
        self._gatol = DEFAULT_GATOL
        self._grtol = DEFAULT_GRTOL
        self.iterations = 0
        self.evaluations = 0
        self.restarts = 0
        self.gnorm = 0.0
        self.g0norm = 0.0
        self.alpha = 0.0
        self._record_g0 = True
        self.task = OptimTask.ERROR
        self.status = OptimStatus.NOT_STARTED

    # -------------------------------------------------------------------------
    # Convergence settings
    # -------------------------------------------------------------------------

    @property
    def gatol(self) -> float:
        """Absolute tolerance on the gradient norm."""
        return self._gatol

    @gatol.setter
    def gatol(self, value: float) -> None:
        self._gatol = _check_tolerance("Absolute gradient tolerance", value)

    @property
    def grtol(self) -> float:
        """Tolerance on the gradient norm relative to the initial one."""
        return self._grtol

    @grtol.setter
    def grtol(self, value: float) -> None:
        self._grtol = _check_tolerance("Relative gradient tolerance", value)

    @property
    def gradient_threshold(self) -> float:
        return max(0.0, self._gatol, self._grtol * self.g0norm)

    @property
    def step(self) -> float:
        """Length of the current step along the search direction."""
        return self.alpha

    @property
    def reason(self) -> str:
        if self.status == OptimStatus.SUCCESS:
            return str(self.task)
        return str(self.status)

    # -------------------------------------------------------------------------
    # Reverse communication
    # -------------------------------------------------------------------------

    def start(self) -> OptimTask:
        """Start (or restart from scratch) the optimization."""
        self.iterations = 0
        self.evaluations = 0
        self.restarts = 0
        return self._begin()

    def restart(self) -> OptimTask:
        """Restart with steepest descent from the next given point."""
        self.restarts += 1
        return self._begin()

    def _begin(self) -> OptimTask:
        self.g0norm = 0.0
        self._record_g0 = True
        self._reset_memory()
        return self._success(OptimTask.COMPUTE_FG)

    def _reset_memory(self) -> None:
        pass

    def iterate(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        """Submit the cost and gradient at ``x`` and get the next task.

        On ``COMPUTE_FG`` and ``NEW_X`` tasks, ``x`` is overwritten with the
        next point where the cost and gradient are required.

        Raises:
            IncorrectSpaceError: If ``x`` or ``gx`` are not in the space of
                the optimizer.
        """
        self.space.check(x, gx)
        if self.task == OptimTask.COMPUTE_FG:
            self.evaluations += 1
            return self._on_evaluation(x, fx, gx)
        if self.task in (OptimTask.NEW_X, OptimTask.FINAL_X):
            return self._on_new_x(x, fx, gx)
        return self.task

    def _on_evaluation(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        raise NotImplementedError

    def _on_new_x(self, x: Vector, fx: float, gx: Vector) -> OptimTask:
        raise NotImplementedError

    def _accept(self, gnorm: float) -> OptimTask:
        """Check global convergence at an acceptable point."""
        self.gnorm = gnorm
        if self._record_g0:
            self.g0norm = gnorm
            self._record_g0 = False
        if gnorm <= self.gradient_threshold:
            return self._success(OptimTask.FINAL_X)
        return self._success(OptimTask.NEW_X)

    def _line_search_step(self, fx: float, dg: float) -> Optional[OptimTask]:
        """Feed the line search; return a task unless the step is acceptable."""
        ls_task = self.line_search.iterate(self.alpha, fx, dg)
        if ls_task == LineSearchTask.SEARCH:
            return None
        if ls_task == LineSearchTask.CONVERGENCE or (
            ls_task == LineSearchTask.WARNING
            and self.line_search.status == OptimStatus.ROUNDING_ERRORS_PREVENT_PROGRESS
        ):
            self.iterations += 1
            return OptimTask.NEW_X
        return self._line_search_failure()

    def _line_search_failure(self) -> OptimTask:
        status = self.line_search.status
        if self.line_search.task == LineSearchTask.WARNING:
            logger.debug("line search warning: %s", status)
            return self.warning(status)
        logger.debug("line search error: %s", status)
        return self.failure(status)

    def _success(self, task: OptimTask) -> OptimTask:
        self.status = OptimStatus.SUCCESS
        self.task = task
        return task

    def warning(self, status: OptimStatus) -> OptimTask:
        """Terminate with a warning."""
        self.status = status
        self.task = OptimTask.WARNING
        return self.task

    def failure(self, status: OptimStatus) -> OptimTask:
        """Terminate with an error."""
        self.status = status
        self.task = OptimTask.ERROR
        return self.task
