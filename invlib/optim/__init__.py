"""Reverse-communication optimizers for smooth problems.

The optimizers never call the objective function: they return an
:class:`OptimTask` telling the caller what to do next (see
:mod:`invlib.optim.base`). :class:`SmoothInverseProblem` runs that loop for
the usual ``likelihood + mu*regularization`` objective.

Example:
    >>> from invlib.optim import LBFGS, OptimTask
    >>> opt = LBFGS(space, m=5)
    >>> task = opt.start()
    >>> while True:
    ...     if task == OptimTask.COMPUTE_FG:
    ...         fx = f.compute_cost_and_gradient(1.0, x, gx)
    ...     elif task != OptimTask.NEW_X:
    ...         break
    ...     task = opt.iterate(x, fx, gx)
"""

from .tasks import (
    LineSearchTask,
    OptimStatus,
    OptimTask,
)
from .line_search import (
    ArmijoLineSearch,
    LineSearch,
    MoreThuenteLineSearch,
)
from .base import (
    ReverseCommunicationOptimizer,
)
from .bounds import (
    BoundProjector,
    SimpleBounds,
    SimpleLowerBound,
    SimpleUpperBound,
)
from .cg import (
    NonLinearConjugateGradient,
)
from .lbfgs import (
    LBFGS,
    LBFGSOperator,
)
from .lbfgsb import (
    LBFGSB,
)
from .solver import (
    IterativeDifferentiableSolver,
    SmoothInverseProblem,
)

__all__ = [
    # Protocol
    "OptimTask",
    "OptimStatus",
    "LineSearchTask",
    # Line searches
    "LineSearch",
    "ArmijoLineSearch",
    "MoreThuenteLineSearch",
    # Optimizers
    "ReverseCommunicationOptimizer",
    "NonLinearConjugateGradient",
    "LBFGSOperator",
    "LBFGS",
    "LBFGSB",
    # Bounds
    "BoundProjector",
    "SimpleBounds",
    "SimpleLowerBound",
    "SimpleUpperBound",
    # Drivers
    "IterativeDifferentiableSolver",
    "SmoothInverseProblem",
]
