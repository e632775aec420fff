"""Array cropping and padding utilities."""

from typing import Optional, Sequence

import numpy as np
import torch

__all__ = ["as_tensor", "crop_or_pad"]


def as_tensor(arr, dtype: Optional[torch.dtype] = None, device=None) -> torch.Tensor:
    """Tensor view of ``arr`` (NumPy arrays are shared when possible)."""
    if isinstance(arr, torch.Tensor):
        t = arr
    else:
        t = torch.from_numpy(np.ascontiguousarray(arr))
    if dtype is not None or device is not None:
        t = t.to(dtype=dtype or t.dtype, device=device or t.device)
    return t


def crop_or_pad(
    img: torch.Tensor,
    output_shape: Sequence[int],
    value: float = 0.0,
) -> torch.Tensor:
    """Extract a centred region of ``output_shape`` from ``img``.

    Along each dimension the input is cropped if it is larger than the
    output and padded with ``value`` if it is smaller. Centres (index
    ``n//2``) are aligned.

    Args:
        img: N-dimensional input tensor.
        output_shape: Dimensions of the result.
        value: Fill value for the padded regions.

    Returns:
        New tensor of shape ``output_shape`` (``img`` itself if the shapes
        already match).

    Raises:
        ValueError: If the number of dimensions differs.

    Example:
        >>> x = torch.arange(5.0)
        >>> crop_or_pad(x, (7,), value=-1.0)
        tensor([-1.,  0.,  1.,  2.,  3.,  4., -1.])
    """
    output_shape = tuple(int(n) for n in output_shape)
    if img.dim() != len(output_shape):
        raise ValueError(
            f"Output shape dimensions ({len(output_shape)}) must match "
            f"input dimensions ({img.dim()})"
        )
    if tuple(img.shape) == output_shape:
        return img
    src, dst = [], []
    for n_in, n_out in zip(img.shape, output_shape):
        off = n_out // 2 - n_in // 2
        if off >= 0:
            src.append(slice(0, n_in))
            dst.append(slice(off, off + n_in))
        else:
            src.append(slice(-off, -off + n_out))
            dst.append(slice(0, n_out))
    result = torch.full(output_shape, value, dtype=img.dtype, device=img.device)
    result[tuple(dst)] = img[tuple(src)]
    return result
