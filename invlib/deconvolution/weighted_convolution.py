"""Weighted least-squares data term for convolution models.

The cost is::

    f(x) = (1/2) Σ_i w_i ((R·H·x)_i - y_i)²

with ``H`` the circular convolution on the object grid and ``R`` the
extraction of the data window. The model and the gradient are computed
with the same FFT buffers, without building intermediate vectors.
"""

import time
from typing import Optional, Sequence

import torch

from ..cost import WeightedData
from ..linalg import IncorrectSpaceError, Vector, VectorSpace
from .operators import ArrayLike, ConvolutionOperator

__all__ = ["WeightedConvolutionCost"]


class WeightedConvolutionCost(WeightedData):
    """Fused convolution and weighted-data cost.

    The data and the weights are set as for :class:`WeightedData` (the
    data space); the variables live in the object space.

    Args:
        object_space: Space of the variables.
        data_space: Space of the data. Defaults to ``object_space``.
        offset: Position of the data window in the object grid, centred by
            default.

    Attributes:
        evaluations: Number of calls since the last :meth:`reset_timers`.
        elapsed_time: Total time spent in the calls (seconds).
        elapsed_time_fft: Time spent in the FFTs (seconds).

    Example:
        >>> fdata = WeightedConvolutionCost(object_space, data_space)
        >>> fdata.set_data(observed)
        >>> fdata.compute_weights_from_data(alpha=1.0 / gain, beta=(sigma / gain) ** 2)
        >>> fdata.set_psf(psf, normalize=True)
    """

    def __init__(
        self,
        object_space: VectorSpace,
        data_space: Optional[VectorSpace] = None,
        offset: Optional[Sequence[int]] = None,
    ):
        if data_space is None:
            data_space = object_space
        if data_space.dtype != object_space.dtype:
            raise IncorrectSpaceError("Object and data spaces must have the same precision")
        super().__init__(data_space)
        self.input_space = object_space
        self.convolution = ConvolutionOperator(object_space, data_space, offset)
        self.reset_timers()

    def set_psf(
        self,
        psf: ArrayLike,
        normalize: bool = False,
        center: Optional[Sequence[int]] = None,
    ) -> None:
        """Set the PSF (see :meth:`ConvolutionOperator.set_psf`)."""
        self.convolution.set_psf(psf, center=center, normalize=normalize)

    def reset_timers(self) -> None:
        self.evaluations = 0
        self.elapsed_time = 0.0
        self.elapsed_time_fft = 0.0

    def _residual(self, x: Vector) -> torch.Tensor:
        conv = self.convolution
        t0 = time.perf_counter()
        model = conv.convolve(x.data)
        self.elapsed_time_fft += time.perf_counter() - t0
        return model[conv.window] - self.data.data

    def evaluate(self, alpha: float, x: Vector) -> float:
        self.input_space.check(x)
        if alpha == 0:
            return 0.0
        t0 = time.perf_counter()
        r = self._residual(x)
        cost = 0.5 * alpha * float(torch.sum(self.weights.data * r * r))
        self.evaluations += 1
        self.elapsed_time += time.perf_counter() - t0
        return cost

    def compute_cost_and_gradient(
        self, alpha: float, x: Vector, gx: Vector, clear: bool = True
    ) -> float:
        self.input_space.check(x, gx)
        if alpha == 0:
            if clear:
                gx.zero()
            return 0.0
        t0 = time.perf_counter()
        r = self._residual(x)
        wr = self.weights.data * r
        cost = 0.5 * alpha * float(torch.sum(wr * r))
        wr.mul_(alpha)
        t1 = time.perf_counter()
        grad = self.convolution.correlate(self.convolution.extend(wr))
        self.elapsed_time_fft += time.perf_counter() - t1
        if clear:
            gx.data.copy_(grad)
        else:
            gx.data.add_(grad)
        self.evaluations += 1
        self.elapsed_time += time.perf_counter() - t0
        return cost
