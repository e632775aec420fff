"""Linear combination of differentiable cost functions."""

from typing import List, Tuple

from ..linalg import IncorrectSpaceError, Vector, VectorSpace
from .base import DifferentiableCostFunction, check_weight

__all__ = ["CompositeCostFunction"]


class CompositeCostFunction(DifferentiableCostFunction):
    """Weighted sum ``Σ w_k f_k(x)`` of differentiable cost functions.

    All components must share the input space of the composite. Components
    with a zero weight are never evaluated, and a zero ``alpha`` returns 0
    without evaluating any component.

    Args:
        space: Input space shared by all components.
        *terms: Optional ``(weight, cost)`` pairs to add.

    Attributes:
        evaluations: Number of calls computing the cost.
        gradients: Number of calls computing the gradient as well.

    Example:
        >>> f = CompositeCostFunction(space, (1.0, likelihood), (mu, prior))
        >>> fx = f.compute_cost_and_gradient(1.0, x, gx)
    """

    def __init__(self, space: VectorSpace, *terms: Tuple[float, DifferentiableCostFunction]):
        super().__init__(space)
        self._terms: List[Tuple[float, DifferentiableCostFunction]] = []
        self.evaluations = 0
        self.gradients = 0
        for weight, cost in terms:
            self.add(weight, cost)

    def add(self, weight: float, cost: DifferentiableCostFunction) -> None:
        """Append ``weight * cost`` to the sum."""
        weight = check_weight(weight)
        if cost.input_space != self.input_space:
            raise IncorrectSpaceError(
                "All components of a composite cost must share its input space"
            )
        self._terms.append((weight, cost))

    def __len__(self) -> int:
        return len(self._terms)

    def weight(self, k: int) -> float:
        return self._terms[k][0]

    def set_weight(self, k: int, weight: float) -> None:
        self._terms[k] = (check_weight(weight), self._terms[k][1])

    def component(self, k: int) -> DifferentiableCostFunction:
        return self._terms[k][1]

    def reset_counters(self) -> None:
        self.evaluations = 0
        self.gradients = 0

    def evaluate(self, alpha: float, x: Vector) -> float:
        self.input_space.check(x)
        self.evaluations += 1
        if alpha == 0:
            return 0.0
        cost = 0.0
        for weight, f in self._terms:
            if weight != 0:
                cost += f.evaluate(alpha * weight, x)
        return cost

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        self.input_space.check(x, gx)
        self.evaluations += 1
        self.gradients += 1
        if alpha == 0:
            if clear:
                gx.zero()
            return 0.0
        cost = 0.0
        for weight, f in self._terms:
            if weight != 0:
                cost += f.compute_cost_and_gradient(alpha * weight, x, gx, clear)
                clear = False
        if clear:
            # all weights are zero
            gx.zero()
        return cost
