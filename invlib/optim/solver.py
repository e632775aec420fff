"""Drivers which evaluate the cost function for an optimizer.

:class:`IterativeDifferentiableSolver` runs the reverse-communication loop
of an optimizer against a differentiable cost function, enforcing
iteration and evaluation budgets. :class:`SmoothInverseProblem` builds the
cost ``likelihood + mu*regularization`` and picks the optimizer from the
configuration.

Example:
    >>> problem = SmoothInverseProblem(fdata, fprior, regularization_level=0.1,
    ...                                lower_bound=0.0)
    >>> task = problem.start(x)
    >>> while task == OptimTask.NEW_X:
    ...     task = problem.iterate(x)
"""

import math
import time
from typing import Optional, Union

from ..cost import CompositeCostFunction, DifferentiableCostFunction
from ..linalg import Vector
from ..logging import get_logger
from .base import DEFAULT_GATOL, DEFAULT_GRTOL, ReverseCommunicationOptimizer, _check_tolerance
from .bounds import SimpleBounds
from .cg import NonLinearConjugateGradient
from .lbfgs import LBFGS
from .lbfgsb import LBFGSB
from .tasks import OptimStatus, OptimTask

__all__ = ["IterativeDifferentiableSolver", "SmoothInverseProblem"]

logger = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 200
DEFAULT_LIMITED_MEMORY = 5


class IterativeDifferentiableSolver:
    """Run an optimizer on a differentiable cost function.

    :meth:`start` and :meth:`iterate` evaluate the cost and its gradient as
    many times as the optimizer asks and return at the next accepted
    iterate (``NEW_X``) or at termination.

    Args:
        optimizer: Reverse-communication optimizer.
        cost_function: Differentiable cost function of the variables.
        max_iterations: Iteration budget, None for no limit. Default 200.
        max_evaluations: Evaluation budget, None for no limit.
        save_best: Keep a copy of the accepted iterate with the lowest cost.

    Attributes:
        stepping: Return after every evaluation instead of every iteration.
        elapsed_time: Time spent in cost function evaluations (seconds).
    """

    def __init__(
        self,
        optimizer: Optional[ReverseCommunicationOptimizer] = None,
        cost_function: Optional[DifferentiableCostFunction] = None,
        max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS,
        max_evaluations: Optional[int] = None,
        save_best: bool = False,
    ):
        self.optimizer = optimizer
        self.cost_function = cost_function
        self.max_iterations = max_iterations
        self.max_evaluations = max_evaluations
        self.save_best = save_best
        self.stepping = False
        self.elapsed_time = 0.0
        self.iterations = 0
        self.evaluations = 0
        self.cost = math.nan
        self.best_cost = math.nan
        self._gx: Optional[Vector] = None
        self._best: Optional[Vector] = None
        self._running = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def gradient(self) -> Optional[Vector]:
        """Gradient at the last evaluated point."""
        return self._gx

    @property
    def best_solution(self) -> Optional[Vector]:
        """Accepted iterate with the lowest cost (None unless ``save_best``)."""
        return self._best

    @property
    def gnorm(self) -> float:
        return self._require_optimizer().gnorm

    @property
    def restarts(self) -> int:
        return self._require_optimizer().restarts

    @property
    def task(self) -> Optional[OptimTask]:
        return None if self.optimizer is None else self.optimizer.task

    @property
    def reason(self) -> str:
        return "" if self.optimizer is None else self.optimizer.reason

    @property
    def running(self) -> bool:
        """Whether the solver has been started and neither finished nor aborted."""
        return self._running

    def abort(self) -> None:
        """Stop after the current evaluation.

        The next call to :meth:`iterate` (or the pending evaluation loop)
        terminates with a ``WARNING`` task and the ``ABORTED`` status.
        """
        self._running = False

    def _require_optimizer(self) -> ReverseCommunicationOptimizer:
        if self.optimizer is None:
            raise RuntimeError("No optimizer has been set")
        return self.optimizer

    # -------------------------------------------------------------------------
    # Iterations
    # -------------------------------------------------------------------------

    def start(self, x: Vector, reset: bool = False) -> OptimTask:
        """Start the optimization from ``x`` (modified in place).

        Args:
            x: Initial variables; they hold the current iterate afterwards.
            reset: Also reset the elapsed time.

        Raises:
            RuntimeError: If the optimizer or the cost function is missing.
            IncorrectSpaceError: If ``x`` is not in the space of the optimizer.
        """
        optimizer = self._require_optimizer()
        if self.cost_function is None:
            raise RuntimeError("No cost function has been set")
        space = optimizer.space
        space.check(x)
        if self._gx is None or not space.owns(self._gx):
            self._gx = space.create()
        if reset:
            self.elapsed_time = 0.0
        self.iterations = 0
        self.evaluations = 0
        self.cost = math.nan
        self.best_cost = math.nan
        self._best = None
        self._running = True
        task = optimizer.start()
        return self._finish(self._evaluate(x, task))

    def iterate(self, x: Vector) -> OptimTask:
        """Proceed to the next iterate.

        ``x`` must be the vector passed to :meth:`start`.
        """
        optimizer = self._require_optimizer()
        task = optimizer.task
        if task is None or task in (OptimTask.WARNING, OptimTask.ERROR):
            return task
        if not self._running:
            if task == OptimTask.FINAL_X:
                return task
            return self._aborted()
        if task in (OptimTask.NEW_X, OptimTask.FINAL_X):
            if self.max_iterations is not None and self.iterations >= self.max_iterations:
                return self._finish(optimizer.warning(OptimStatus.TOO_MANY_ITERATIONS))
            task = optimizer.iterate(x, self.cost, self._gx)
        task = self._evaluate(x, task)
        if task in (OptimTask.NEW_X, OptimTask.FINAL_X):
            self.iterations += 1
        return self._finish(task)

    def _evaluate(self, x: Vector, task: OptimTask) -> OptimTask:
        while task == OptimTask.COMPUTE_FG:
            if not self._running:
                return self._aborted()
            task = self._compute_fg(x)
            if self.stepping:
                break
        return task

    def _compute_fg(self, x: Vector) -> OptimTask:
        optimizer = self.optimizer
        if self.max_evaluations is not None and self.evaluations >= self.max_evaluations:
            return optimizer.warning(OptimStatus.TOO_MANY_EVALUATIONS)
        t0 = time.perf_counter()
        self.cost = self.cost_function.compute_cost_and_gradient(1.0, x, self._gx, True)
        self.elapsed_time += time.perf_counter() - t0
        self.evaluations += 1
        task = optimizer.iterate(x, self.cost, self._gx)
        if self.save_best and task in (OptimTask.NEW_X, OptimTask.FINAL_X):
            if self._best is None:
                self._best = x.clone()
                self.best_cost = self.cost
            elif self.cost < self.best_cost:
                self._best.copy_from(x)
                self.best_cost = self.cost
        return task

    def _aborted(self) -> OptimTask:
        self._running = False
        logger.info("optimization aborted after %d iterations", self.iterations)
        return self.optimizer.warning(OptimStatus.ABORTED)

    def _finish(self, task: OptimTask) -> OptimTask:
        if task.is_terminal():
            self._running = False
            if task != OptimTask.FINAL_X and self.optimizer.status != OptimStatus.ABORTED:
                logger.warning("%s: %s", task, self.reason)
        return task


Bound = Union[None, float, Vector]


def _check_bound(name: str, value: Bound, forbidden: float) -> Bound:
    if value is None or isinstance(value, Vector):
        return value
    value = float(value)
    if math.isnan(value) or value == forbidden:
        raise ValueError(f"Invalid value for the {name} bound: {value}")
    return value


class SmoothInverseProblem(IterativeDifferentiableSolver):
    """Minimize ``likelihood(x) + mu*regularization(x)`` under optional bounds.

    The optimizer is chosen when the problem is (re)started:

    - L-BFGS-B (with an Armijo line search) if any bound is set;
    - L-BFGS if ``limited_memory > 0``;
    - non-linear conjugate gradient otherwise.

    Changing the cost terms, the regularization level, the bounds, the
    tolerances or the memory size marks the setup as pending; it is
    rebuilt by the next :meth:`start` (or :meth:`iterate`, which then
    restarts).

    Args:
        likelihood: Data fidelity term.
        regularization: Regularization term (may be omitted if ``mu = 0``).
        regularization_level: Weight ``mu >= 0`` of the regularization.
        limited_memory: Number of L-BFGS pairs (0 for conjugate gradient).
        lower_bound: Scalar or vector lower bound, None for unbounded.
        upper_bound: Scalar or vector upper bound, None for unbounded.
        gatol: Absolute gradient tolerance.
        grtol: Relative gradient tolerance.
        max_iterations: Iteration budget, None for no limit.
        max_evaluations: Evaluation budget, None for no limit.
        save_best: Keep a copy of the best iterate.

    Raises:
        ValueError: If a setting is invalid.
    """

    def __init__(
        self,
        likelihood: Optional[DifferentiableCostFunction] = None,
        regularization: Optional[DifferentiableCostFunction] = None,
        regularization_level: float = 1.0,
        limited_memory: int = DEFAULT_LIMITED_MEMORY,
        lower_bound: Bound = None,
        upper_bound: Bound = None,
        gatol: float = DEFAULT_GATOL,
        grtol: float = DEFAULT_GRTOL,
        max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS,
        max_evaluations: Optional[int] = None,
        save_best: bool = False,
    ):
        super().__init__(None, None, max_iterations, max_evaluations, save_best)
        self._update_pending = True
        self._likelihood = likelihood
        self._regularization = regularization
        self._projector: Optional[SimpleBounds] = None
        self.regularization_level = regularization_level
        self.limited_memory = limited_memory
        self.lower_bound = lower_bound
        self.upper_bound = upper_bound
        self.gatol = gatol
        self.grtol = grtol

    def _changed(self) -> None:
        self._update_pending = True

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @property
    def likelihood(self) -> Optional[DifferentiableCostFunction]:
        return self._likelihood

    @likelihood.setter
    def likelihood(self, f: Optional[DifferentiableCostFunction]) -> None:
        if f is not self._likelihood:
            self._likelihood = f
            self._changed()

    @property
    def regularization(self) -> Optional[DifferentiableCostFunction]:
        return self._regularization

    @regularization.setter
    def regularization(self, f: Optional[DifferentiableCostFunction]) -> None:
        if f is not self._regularization:
            self._regularization = f
            self._changed()

    @property
    def regularization_level(self) -> float:
        return self._mu

    @regularization_level.setter
    def regularization_level(self, value: float) -> None:
        value = float(value)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"Regularization level must be finite and non-negative, got {value}")
        self._mu = value
        self._changed()

    @property
    def limited_memory(self) -> int:
        return self._m

    @limited_memory.setter
    def limited_memory(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"Limited memory size must be non-negative, got {value}")
        self._m = int(value)
        self._changed()

    @property
    def lower_bound(self) -> Bound:
        return self._lower

    @lower_bound.setter
    def lower_bound(self, value: Bound) -> None:
        if value is not None and not isinstance(value, Vector) and value == -math.inf:
            value = None
        self._lower = _check_bound("lower", value, math.inf)
        self._changed()

    @property
    def upper_bound(self) -> Bound:
        return self._upper

    @upper_bound.setter
    def upper_bound(self, value: Bound) -> None:
        if value is not None and not isinstance(value, Vector) and value == math.inf:
            value = None
        self._upper = _check_bound("upper", value, -math.inf)
        self._changed()

    @property
    def gatol(self) -> float:
        return self._gatol

    @gatol.setter
    def gatol(self, value: float) -> None:
        self._gatol = _check_tolerance("Absolute gradient tolerance", value)
        self._changed()

    @property
    def grtol(self) -> float:
        return self._grtol

    @grtol.setter
    def grtol(self, value: float) -> None:
        self._grtol = _check_tolerance("Relative gradient tolerance", value)
        self._changed()

    @property
    def bounded(self) -> bool:
        return self._lower is not None or self._upper is not None

    # -------------------------------------------------------------------------
    # Iterations
    # -------------------------------------------------------------------------

    def start(self, x: Vector, reset: bool = False) -> OptimTask:
        if self._update_pending:
            self._setup(x)
        if self._projector is not None:
            # the first evaluation must be feasible
            self._projector.project(x)
        return super().start(x, reset)

    def iterate(self, x: Vector) -> OptimTask:
        if self._update_pending:
            return self.start(x)
        return super().iterate(x)

    def _setup(self, x: Vector) -> None:
        if self._likelihood is None:
            raise RuntimeError("No likelihood has been set")
        space = self._likelihood.input_space
        space.check(x)
        if self._mu == 0:
            self.cost_function = self._likelihood
        else:
            if self._regularization is None:
                raise RuntimeError("No regularization has been set")
            self.cost_function = CompositeCostFunction(
                space, (1.0, self._likelihood), (self._mu, self._regularization)
            )

        projector = None
        if self.bounded:
            projector = SimpleBounds(space, self._lower, self._upper)
            m = self._m if self._m > 1 else DEFAULT_LIMITED_MEMORY
            optimizer = LBFGSB(space, m, projector)
            logger.debug("using L-BFGS-B with %d memorized steps", m)
        elif self._m > 0:
            optimizer = LBFGS(space, self._m)
            logger.debug("using L-BFGS with %d memorized steps", self._m)
        else:
            optimizer = NonLinearConjugateGradient(space)
            logger.debug("using non-linear conjugate gradient")
        optimizer.gatol = self._gatol
        optimizer.grtol = self._grtol
        self._projector = projector
        self.optimizer = optimizer
        self._update_pending = False
