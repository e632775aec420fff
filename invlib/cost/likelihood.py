"""Gaussian co-log-likelihood of a direct model.

For weighted data ``(y, w)`` and a direct model ``H``, the cost is::

    f(x) = (1/2) Σ_i w_i (H(x)_i - y_i)²

and its gradient is ``J(x)ᵀ (w ⊙ (H(x) - y))`` with ``J`` the Jacobian of
``H`` (``J = H`` for a linear model).
"""

from typing import Optional, Union

import torch

from ..linalg import IncorrectSpaceError, Job, LinearOperator, Vector, VectorSpace
from .base import DifferentiableCostFunction
from .weighted_data import WeightedData

__all__ = ["DifferentiableMapping", "GaussianLikelihood"]


class DifferentiableMapping:
    """Possibly nonlinear mapping with a Jacobian-transpose product.

    Subclasses implement :meth:`apply` and :meth:`apply_jacobian_adjoint`.
    """

    def __init__(self, input_space: VectorSpace, output_space: VectorSpace):
        self.input_space = input_space
        self.output_space = output_space

    def apply(self, dst: Vector, src: Vector) -> Vector:
        """Store ``H(src)`` into ``dst``."""
        raise NotImplementedError

    def apply_jacobian_adjoint(self, dst: Vector, x: Vector, r: Vector) -> Vector:
        """Store ``J(x)ᵀ r`` into ``dst``."""
        raise NotImplementedError


class GaussianLikelihood(DifferentiableCostFunction):
    """Weighted least-squares data term for a direct model.

    Args:
        weighted_data: Data and weights.
        direct_model: Linear operator or :class:`DifferentiableMapping`
            whose output space is the data space.

    Raises:
        IncorrectSpaceError: If the output space of the model is not the
            data space.
    """

    def __init__(
        self,
        weighted_data: WeightedData,
        direct_model: Union[LinearOperator, DifferentiableMapping],
    ):
        if direct_model.output_space != weighted_data.data_space:
            raise IncorrectSpaceError(
                "Output space of the direct model must be the data space"
            )
        super().__init__(direct_model.input_space)
        self.weighted_data = weighted_data
        self.direct_model = direct_model
        self._residual: Optional[Vector] = None
        self._work: Optional[Vector] = None

    @property
    def data_space(self) -> VectorSpace:
        return self.weighted_data.data_space

    def _model(self, x: Vector) -> Vector:
        if self._residual is None:
            self._residual = self.data_space.create()
        if isinstance(self.direct_model, LinearOperator):
            self.direct_model.apply(self._residual, x, Job.DIRECT)
        else:
            self.direct_model.apply(self._residual, x)
        # residual: H(x) - y
        self._residual.data.sub_(self.weighted_data.data.data)
        return self._residual

    def evaluate(self, alpha: float, x: Vector) -> float:
        self.input_space.check(x)
        if alpha == 0:
            return 0.0
        r = self._model(x)
        w = self.weighted_data.weights.data
        return 0.5 * alpha * float(torch.sum(w * r.data * r.data))

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        self.input_space.check(x, gx)
        if alpha == 0:
            if clear:
                gx.zero()
            return 0.0
        r = self._model(x)
        w = self.weighted_data.weights.data
        cost = 0.5 * alpha * float(torch.sum(w * r.data * r.data))
        # alpha*w*r, stored in place of the residual
        r.data.mul_(w).mul_(alpha)
        if clear:
            target = gx
        else:
            if self._work is None:
                self._work = self.input_space.create()
            target = self._work
        if isinstance(self.direct_model, LinearOperator):
            self.direct_model.apply(target, r, Job.ADJOINT)
        else:
            self.direct_model.apply_jacobian_adjoint(target, x, r)
        if not clear:
            gx.data.add_(target.data)
        return cost
