"""Base classes for cost functions.

A cost function maps a vector of its input space to a scalar. The
``alpha`` argument is a multiplier applied to both the cost and the
gradient, so that ``compute_cost_and_gradient(alpha, x, gx)`` returns
``alpha*f(x)`` and stores ``alpha*∇f(x)`` in ``gx``.
"""

import math
from typing import Optional

from ..linalg import Vector, VectorSpace

__all__ = [
    "CostFunction",
    "DifferentiableCostFunction",
    "HomogeneousFunction",
    "QuadraticCost",
]


class CostFunction:
    """Scalar function of the vectors of ``input_space``."""

    def __init__(self, input_space: VectorSpace):
        self.input_space = input_space

    def evaluate(self, alpha: float, x: Vector) -> float:
        """Return ``alpha*f(x)``."""
        raise NotImplementedError


class DifferentiableCostFunction(CostFunction):
    """Cost function which can also compute its gradient."""

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        """Return ``alpha*f(x)`` and store ``alpha*∇f(x)`` into ``gx``.

        Args:
            alpha: Multiplier of the cost and of the gradient.
            x: Variables.
            gx: Gradient destination.
            clear: Overwrite ``gx`` if True, add to it otherwise.
        """
        raise NotImplementedError

    def evaluate(self, alpha: float, x: Vector) -> float:
        if alpha == 0:
            return 0.0
        return self.compute_cost_and_gradient(alpha, x, x.create(), True)


class HomogeneousFunction:
    """Capability of functions such that ``f(t*x) = t**q * f(x)`` for ``t > 0``."""

    @property
    def homogeneous_degree(self) -> float:
        raise NotImplementedError

    @property
    def is_homogeneous(self) -> bool:
        return True


class QuadraticCost(DifferentiableCostFunction, HomogeneousFunction):
    """Weighted quadratic distance to a target.

    ``f(x) = (1/2) Σ w_i (x_i - t_i)²`` with ``t = 0`` and ``w = 1`` by
    default. It is homogeneous of degree 2 only when the target is zero.

    Args:
        space: Input space.
        target: Optional target vector.
        weights: Optional weight vector (non-negative).
    """

    def __init__(
        self,
        space: VectorSpace,
        target: Optional[Vector] = None,
        weights: Optional[Vector] = None,
    ):
        super().__init__(space)
        if target is not None:
            space.check(target)
        if weights is not None:
            space.check(weights)
            if not bool(((weights.data >= 0) & weights.data.isfinite()).all()):
                raise ValueError("Weights must be finite and non-negative")
        self.target = target
        self.weights = weights

    @property
    def is_homogeneous(self) -> bool:
        return self.target is None

    @property
    def homogeneous_degree(self) -> float:
        if self.target is not None:
            raise ValueError("Quadratic cost with a target is not homogeneous")
        return 2.0

    def _residual(self, x: Vector):
        if self.target is None:
            return x.data
        return x.data - self.target.data

    def evaluate(self, alpha: float, x: Vector) -> float:
        self.input_space.check(x)
        if alpha == 0:
            return 0.0
        r = self._residual(x)
        wr = r if self.weights is None else self.weights.data * r
        return 0.5 * alpha * float((wr * r).sum())

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        self.input_space.check(x, gx)
        if alpha == 0:
            if clear:
                gx.zero()
            return 0.0
        r = self._residual(x)
        wr = r if self.weights is None else self.weights.data * r
        if clear:
            gx.data.copy_(wr).mul_(alpha)
        else:
            gx.data.add_(wr, alpha=alpha)
        return 0.5 * alpha * float((wr * r).sum())


def check_weight(weight: float) -> float:
    """Validate a multiplier of a cost function (finite and non-negative)."""
    weight = float(weight)
    if not math.isfinite(weight) or weight < 0:
        raise ValueError(f"Cost weight must be finite and non-negative, got {weight}")
    return weight
