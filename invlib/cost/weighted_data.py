"""Data paired with statistical weights.

:class:`WeightedData` stores a data vector ``y`` and non-negative weights
``w`` of the same shape. Weights are typically the inverse of the noise
variance, a zero weight marks an invalid datum. Consistency of data and
weights is checked lazily, the first time they are needed:

- weights must be finite and non-negative;
- a non-finite datum must have a zero weight, it is then replaced by 0;
- without weights, unit weights are assumed where the data are finite;
- at least one datum must have a positive weight.

The instance is also the denoising cost ``(1/2) Σ w_i (x_i - y_i)²``.

Example:
    >>> wd = WeightedData(space)
    >>> wd.set_data(observed)
    >>> wd.mark_bad_data(saturated)
    >>> w, y = wd.weights, wd.data
"""

import math
from typing import Optional

import torch

from ..linalg import Vector, VectorSpace
from .base import DifferentiableCostFunction

__all__ = ["WeightedData"]


class WeightedData(DifferentiableCostFunction):
    """Weighted data, usable as a denoising cost function.

    Args:
        space: Data space.
        data: Optional data to set (see :meth:`set_data`).
        weights: Optional weights to set (see :meth:`set_weights`).
    """

    def __init__(self, space: VectorSpace, data=None, weights=None):
        super().__init__(space)
        self._data_space = space
        self._data: Optional[Vector] = None
        self._weights: Optional[Vector] = None
        self._writable_data = False
        self._writable_weights = False
        self._valid_data_number = 0
        self._update_pending = True
        if data is not None:
            self.set_data(data)
        if weights is not None:
            self.set_weights(weights)

    @property
    def data_space(self) -> VectorSpace:
        return self._data_space

    # -------------------------------------------------------------------------
    # Setting data and weights
    # -------------------------------------------------------------------------

    def set_data(self, arr, writable: bool = False) -> None:
        """Set the data (only once).

        Args:
            arr: Tensor, array or vector with the shape of the data space.
            writable: Whether the contents of ``arr`` may be modified to fix
                invalid values. If False, a copy is made when needed.

        Raises:
            ValueError: If data have already been set.
        """
        if self._data is not None:
            raise ValueError("Data can only be set once")
        self._data = self._data_space.wrap(arr)
        self._writable_data = writable
        self._update_pending = True

    def set_weights(self, arr, writable: bool = False) -> None:
        """Set the weights (only once).

        Raises:
            ValueError: If weights have already been set or computed.
        """
        if self._weights is not None:
            raise ValueError("Weights can only be set or computed once")
        self._weights = self._data_space.wrap(arr)
        self._writable_weights = writable
        self._update_pending = True

    def compute_weights_from_data(self, alpha: float, beta: float) -> None:
        """Derive weights from the data with an affine noise model.

        The variance of a datum ``y`` is assumed to be ``alpha*max(y, 0) +
        beta``; the weight is its inverse for finite data and zero otherwise.

        Args:
            alpha: Gain-related coefficient (>= 0).
            beta: Variance of the detector noise (> 0).

        Raises:
            ValueError: If no data are set, weights are already set, or
                the noise parameters are invalid.
        """
        if self._data is None:
            raise ValueError("No data has been set")
        if self._weights is not None:
            raise ValueError("Weights can only be set or computed once")
        if not (math.isfinite(alpha) and alpha >= 0):
            raise ValueError(f"Invalid noise gain coefficient: {alpha}")
        if not (math.isfinite(beta) and beta > 0):
            raise ValueError(f"Invalid noise variance: {beta}")
        y = self._data.data
        finite = torch.isfinite(y)
        var = alpha * torch.clamp(torch.where(finite, y, torch.zeros_like(y)), min=0) + beta
        w = torch.where(finite, 1.0 / var, torch.zeros_like(y))
        self._weights = Vector(self._data_space, w)
        self._writable_weights = True
        self._update_pending = True

    def mark_bad_data(self, bad) -> None:
        """Give a zero weight to the data where ``bad`` is true.

        Unit weights are created first if none have been set. This cannot
        be undone.

        Raises:
            ValueError: If no data are set or the mask has the wrong size.
        """
        if self._data is None:
            raise ValueError("No data has been set")
        mask = torch.as_tensor(bad, device=self._data_space.device)
        if mask.numel() != self._data_space.size:
            raise ValueError("Mask of bad data must have the same shape as the data")
        mask = mask.reshape(self._data_space.shape).to(torch.bool)
        if self._weights is None:
            w = (~mask).to(self._data_space.dtype)
            self._weights = Vector(self._data_space, w)
            self._writable_weights = True
        else:
            if not self._writable_weights:
                self._weights = self._weights.clone()
                self._writable_weights = True
            self._weights.data[mask] = 0
        self._update_pending = True

    # -------------------------------------------------------------------------
    # Checked contents
    # -------------------------------------------------------------------------

    @property
    def data(self) -> Vector:
        self._update()
        return self._data

    @property
    def weights(self) -> Vector:
        self._update()
        return self._weights

    @property
    def valid_data_number(self) -> int:
        """Number of data with a positive weight."""
        self._update()
        return self._valid_data_number

    def weighted_mean(self) -> float:
        """Return ``Σ w_i y_i / Σ w_i``."""
        self._update()
        w = self._weights.data
        return float(torch.sum(w * self._data.data) / torch.sum(w))

    def _update(self) -> None:
        if not self._update_pending:
            return
        if self._data is None:
            raise ValueError("No data has been set")
        y = self._data.data
        nonfinite = ~torch.isfinite(y)
        if self._weights is None:
            self._weights = Vector(self._data_space, (~nonfinite).to(y.dtype))
            self._writable_weights = True
        else:
            w = self._weights.data
            if not bool((torch.isfinite(w) & (w >= 0)).all()):
                raise ValueError("Weights must be finite and non-negative")
            if bool((nonfinite & (w > 0)).any()):
                raise ValueError("Non-finite data must have zero weight")
        if bool(nonfinite.any()):
            if not self._writable_data:
                self._data = self._data.clone()
                self._writable_data = True
            self._data.data[nonfinite] = 0
        count = int(torch.count_nonzero(self._weights.data > 0))
        if count == 0:
            raise ValueError("No valid data (all weights are zero)")
        self._valid_data_number = count
        self._update_pending = False

    # -------------------------------------------------------------------------
    # Denoising cost
    # -------------------------------------------------------------------------

    def evaluate(self, alpha: float, x: Vector) -> float:
        self.input_space.check(x)
        if alpha == 0:
            return 0.0
        w, y = self.weights.data, self.data.data
        r = x.data - y
        return 0.5 * alpha * float(torch.sum(w * r * r))

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        self.input_space.check(x, gx)
        if alpha == 0:
            if clear:
                gx.zero()
            return 0.0
        w, y = self.weights.data, self.data.data
        wr = w * (x.data - y)
        cost = 0.5 * alpha * float(torch.sum(wr * (x.data - y)))
        if clear:
            torch.mul(wr, alpha, out=gx.data)
        else:
            gx.data.add_(wr, alpha=alpha)
        return cost
