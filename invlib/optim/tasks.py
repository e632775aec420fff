"""Tasks and status codes of the reverse-communication protocol."""

from enum import Enum

__all__ = ["OptimTask", "LineSearchTask", "OptimStatus"]


class OptimTask(Enum):
    """Next thing the caller of an optimizer has to do."""

    COMPUTE_FG = "Compute function and gradient"
    NEW_X = "New iterate available"
    FINAL_X = "Convergence achieved"
    WARNING = "Terminated with a warning"
    ERROR = "Terminated with an error"

    def is_terminal(self) -> bool:
        return self in (OptimTask.FINAL_X, OptimTask.WARNING, OptimTask.ERROR)

    def __str__(self) -> str:
        return self.value


class LineSearchTask(Enum):
    """State of a line search."""

    SEARCH = "Line search in progress"
    CONVERGENCE = "Line search converged"
    WARNING = "Line search finished with a warning"
    ERROR = "Line search error"

    def __str__(self) -> str:
        return self.value


class OptimStatus(Enum):
    """Reason of the current task."""

    SUCCESS = "Success"
    NOT_STARTED = "Line search not started"
    NOT_A_DESCENT = "Not a descent direction"
    STEP_CHANGED = "Step changed"
    STEP_OUTSIDE_BRACKET = "Step outside bracket"
    STPMIN_GT_STPMAX = "Lower step bound larger than upper bound"
    STPMIN_LT_ZERO = "Minimal step length less than zero"
    STEP_LT_STPMIN = "Step lesser than lower bound"
    STEP_GT_STPMAX = "Step greater than upper bound"
    XTOL_TEST_SATISFIED = "Convergence within variable tolerance"
    GTOL_TEST_SATISFIED = "Convergence within gradient tolerance"
    STEP_EQ_STPMAX = "Step blocked at upper bound"
    STEP_EQ_STPMIN = "Step blocked at lower bound"
    ROUNDING_ERRORS_PREVENT_PROGRESS = "Rounding errors prevent progress"
    BAD_PRECONDITIONER = "Preconditioner is not positive definite"
    INFEASIBLE_BOUNDS = "Box set is infeasible"
    TOO_MANY_ITERATIONS = "Too many iterations"
    TOO_MANY_EVALUATIONS = "Too many evaluations"
    ABORTED = "Aborted by the caller"

    def __str__(self) -> str:
        return self.value
