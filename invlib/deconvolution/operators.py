"""FFT-based convolution operators.

The object space may be larger than the data space: the convolution is
computed circularly on the object grid and the data are a rectangular
window of the result. Padding the object (see :func:`best_fft_length`)
avoids wrap-around artifacts at the edges of the data.

Uses rfftn (real FFT) since all signals are real.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np
import torch

from ..linalg import Job, LinearOperator, Vector, VectorSpace

__all__ = [
    "best_fft_length",
    "output_window",
    "ConvolutionOperator",
    "WeightedConvolutionOperator",
]

ArrayLike = Union[torch.Tensor, np.ndarray]


def best_fft_length(n: int) -> int:
    """Smallest integer ``>= n`` of the form ``2^a 3^b 5^c``.

    Example:
        >>> best_fft_length(97)
        100
    """
    if n <= 1:
        return 1
    m = n
    while True:
        r = m
        for p in (2, 3, 5):
            while r % p == 0:
                r //= p
        if r == 1:
            return m
        m += 1


def output_window(
    input_shape: Sequence[int],
    output_shape: Sequence[int],
    offset: Optional[Sequence[int]] = None,
) -> Tuple[slice, ...]:
    """Slices of the input grid seen by the output.

    Args:
        input_shape: Dimensions of the input (object) grid.
        output_shape: Dimensions of the output (data) window.
        offset: Position of the window in the input grid. Default centres
            the window: ``input//2 - output//2`` along each dimension.

    Raises:
        ValueError: If ranks differ or the window is not inside the input.
    """
    rank = len(input_shape)
    if len(output_shape) != rank:
        raise ValueError(
            f"Output rank ({len(output_shape)}) must match input rank ({rank})"
        )
    if offset is not None and len(offset) != rank:
        raise ValueError(f"Expected {rank} offsets, got {len(offset)}")
    window = []
    for k, (inp, out) in enumerate(zip(input_shape, output_shape)):
        if out > inp:
            raise ValueError(
                f"Output dimension ({out}) larger than input dimension ({inp}) "
                f"along axis {k}"
            )
        off = inp // 2 - out // 2 if offset is None else int(offset[k])
        if off < 0 or off + out > inp:
            raise ValueError(f"Output window is outside the input along axis {k}")
        window.append(slice(off, off + out))
    return tuple(window)


class ConvolutionOperator(LinearOperator):
    """Circular convolution by a PSF followed by a window extraction.

    ``DIRECT`` computes ``R·H·x`` with ``H`` the convolution on the input
    grid and ``R`` the extraction of the output window. ``ADJOINT`` computes
    ``Hᵀ·Rᵀ·y``: zero-extension of ``y`` then correlation with the PSF.

    Args:
        input_space: Object space.
        output_space: Data space (at most as large as the input along each
            dimension). Defaults to ``input_space``.
        offset: Position of the data window in the object grid, centred by
            default.

    Example:
        >>> H = ConvolutionOperator(object_space, data_space)
        >>> H.set_psf(psf)
        >>> y = H(x)
    """

    def __init__(
        self,
        input_space: VectorSpace,
        output_space: Optional[VectorSpace] = None,
        offset: Optional[Sequence[int]] = None,
    ):
        super().__init__(input_space, output_space)
        if self.output_space.dtype != input_space.dtype:
            raise ValueError("Input and output spaces must have the same precision")
        self.window = output_window(input_space.shape, self.output_space.shape, offset)
        self._dims = tuple(range(input_space.rank))
        self._psf: Optional[torch.Tensor] = None
        self._otf: Optional[torch.Tensor] = None
        self._cropped = tuple(self.output_space.shape) != tuple(input_space.shape)

    @property
    def offset(self) -> Tuple[int, ...]:
        return tuple(s.start for s in self.window)

    def set_psf(
        self,
        psf: ArrayLike,
        center: Optional[Sequence[int]] = None,
        normalize: bool = False,
    ) -> None:
        """Set the point spread function.

        The PSF is zero-padded to the input shape and rolled so that its
        centre lands at the origin of the grid.

        Args:
            psf: PSF array, at most as large as the input along each
                dimension.
            center: Index of the centre of the PSF. Default ``dim//2``
                along each dimension.
            normalize: Scale the PSF so that it sums to one.

        Raises:
            ValueError: If the PSF has the wrong rank, is too large, or
                cannot be normalized.
        """
        space = self.input_space
        t = psf if isinstance(psf, torch.Tensor) else torch.from_numpy(np.ascontiguousarray(psf))
        t = t.to(dtype=torch.float64, device=space.device)
        if t.dim() != space.rank:
            raise ValueError(f"PSF rank ({t.dim()}) must be {space.rank}")
        for k, (n, dim) in enumerate(zip(t.shape, space.shape)):
            if n > dim:
                raise ValueError(
                    f"PSF dimension ({n}) larger than object dimension ({dim}) along axis {k}"
                )
        if center is None:
            center = tuple(n // 2 for n in t.shape)
        elif len(center) != space.rank:
            raise ValueError(f"Expected {space.rank} center coordinates, got {len(center)}")
        if normalize:
            s = float(torch.sum(t))
            if not s > 0:
                raise ValueError(f"Cannot normalize a PSF with sum {s}")
            t = t / s
        padded = torch.zeros(space.shape, dtype=torch.float64, device=space.device)
        padded[tuple(slice(0, n) for n in t.shape)] = t
        padded = torch.roll(padded, shifts=tuple(-int(c) for c in center), dims=self._dims)
        self._psf = padded.to(space.dtype)
        self._otf = None

    @property
    def otf(self) -> torch.Tensor:
        """Transfer function (FFT of the centred PSF), computed once per PSF."""
        if self._psf is None:
            raise RuntimeError("No PSF has been set")
        if self._otf is None:
            self._otf = torch.fft.rfftn(self._psf, dim=self._dims)
        return self._otf

    def convolve(self, x: torch.Tensor) -> torch.Tensor:
        """Full circular convolution on the input grid."""
        z = torch.fft.rfftn(x, dim=self._dims) * self.otf
        return torch.fft.irfftn(z, s=self.input_space.shape, dim=self._dims)

    def correlate(self, x: torch.Tensor) -> torch.Tensor:
        """Adjoint of :meth:`convolve`."""
        z = torch.fft.rfftn(x, dim=self._dims) * torch.conj(self.otf)
        return torch.fft.irfftn(z, s=self.input_space.shape, dim=self._dims)

    def extend(self, y: torch.Tensor) -> torch.Tensor:
        """Zero-extend a data-sized array to the input grid."""
        if not self._cropped:
            return y
        z = torch.zeros(self.input_space.shape, dtype=y.dtype, device=y.device)
        z[self.window] = y
        return z

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        if job == Job.DIRECT:
            dst.data.copy_(self.convolve(src.data)[self.window])
        elif job == Job.ADJOINT:
            dst.data.copy_(self.correlate(self.extend(src.data)))
        else:
            raise NotImplementedError("Convolution operator cannot be inverted")


class WeightedConvolutionOperator(ConvolutionOperator):
    """``W^(1/2)·R·H``: cropped convolution followed by a diagonal weighting.

    With ``y`` the data and ``w`` their weights, ``|A·x - W^(1/2)·y|²`` is
    the weighted least-squares data term.

    Args:
        input_space: Object space.
        output_space: Data space.
        weights: Non-negative weights in the data space.
        offset: Position of the data window in the object grid.

    Raises:
        ValueError: If some weights are negative or not finite.
    """

    def __init__(
        self,
        input_space: VectorSpace,
        output_space: Optional[VectorSpace] = None,
        weights: Optional[ArrayLike] = None,
        offset: Optional[Sequence[int]] = None,
    ):
        super().__init__(input_space, output_space, offset)
        self._sqrt_w: Optional[torch.Tensor] = None
        if weights is not None:
            self.set_weights(weights)

    def set_weights(self, weights: ArrayLike) -> None:
        w = self.output_space.wrap(weights).data
        if not bool((torch.isfinite(w) & (w >= 0)).all()):
            raise ValueError("Weights must be finite and non-negative")
        self._sqrt_w = torch.sqrt(w)

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        if self._sqrt_w is None:
            super()._apply(dst, src, job)
        elif job == Job.DIRECT:
            torch.mul(self.convolve(src.data)[self.window], self._sqrt_w, out=dst.data)
        elif job == Job.ADJOINT:
            dst.data.copy_(self.correlate(self.extend(src.data * self._sqrt_w)))
        else:
            raise NotImplementedError("Convolution operator cannot be inverted")
