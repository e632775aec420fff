"""Array utilities."""

from .padding import (
    as_tensor,
    crop_or_pad,
)

__all__ = [
    "as_tensor",
    "crop_or_pad",
]
