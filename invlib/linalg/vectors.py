"""Vector spaces and vectors backed by PyTorch tensors.

A :class:`VectorSpace` is identified by its shape, its floating-point
precision (``torch.float32`` or ``torch.float64``) and its device. It owns
no data: it is a factory for :class:`Vector` instances and implements the
linear algebra needed by the optimizers (dot products, norms, linear
combinations, ...). Operations check that all operands belong to the
space and raise :class:`IncorrectSpaceError` otherwise.

Example:
    >>> import torch
    >>> from invlib.linalg import VectorSpace
    >>> space = VectorSpace((64, 64), dtype=torch.float64)
    >>> x = space.create(1.0)
    >>> y = space.create()
    >>> space.combine(2.0, x, -1.0, y)  # y <- 2*x - y
    >>> space.norm2(y)
    128.0

Note:
    A vector created with :meth:`VectorSpace.wrap` may share its storage
    with the wrapped tensor or array. Mutating one view is visible in the
    other; the two must not be modified concurrently.
"""

import math
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import torch

__all__ = ["IncorrectSpaceError", "VectorSpace", "Vector"]

ArrayLike = Union[torch.Tensor, np.ndarray]

_FLOAT_TYPES = (torch.float32, torch.float64)


class IncorrectSpaceError(ValueError):
    """Raised when an operand does not belong to the expected space."""


class VectorSpace:
    """Space of real vectors with a given shape and precision.

    Args:
        shape: Dimensions of the vectors (an int for 1D vectors).
        dtype: ``torch.float32`` or ``torch.float64``. Default float64.
        device: PyTorch device. Default "cpu".

    Raises:
        ValueError: If a dimension is not positive or the dtype is not a
            supported floating-point type.
    """

    def __init__(
        self,
        shape: Union[int, Sequence[int]],
        dtype: torch.dtype = torch.float64,
        device: Union[str, torch.device] = "cpu",
    ):
        if isinstance(shape, int):
            shape = (shape,)
        shape = tuple(int(n) for n in shape)
        if len(shape) == 0 or any(n < 1 for n in shape):
            raise ValueError(f"Invalid vector space dimensions: {shape}")
        if dtype not in _FLOAT_TYPES:
            raise ValueError(
                f"Unsupported element type {dtype}, use torch.float32 or torch.float64"
            )
        self._shape = shape
        self._dtype = dtype
        self._device = torch.device(device)
        self._size = math.prod(shape)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def rank(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        """Number of elements of the vectors of this space."""
        return self._size

    @property
    def dtype(self) -> torch.dtype:
        return self._dtype

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def single_precision(self) -> bool:
        return self._dtype == torch.float32

    def __eq__(self, other) -> bool:
        if self is other:
            return True
        if not isinstance(other, VectorSpace):
            return NotImplemented
        return (
            self._shape == other._shape
            and self._dtype == other._dtype
            and self._device == other._device
        )

    def __hash__(self) -> int:
        return hash((self._shape, self._dtype, str(self._device)))

    def __repr__(self) -> str:
        return f"VectorSpace(shape={self._shape}, dtype={self._dtype}, device={self._device})"

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def owns(self, v) -> bool:
        """Whether ``v`` is a vector of this space."""
        return isinstance(v, Vector) and (v.space is self or v.space == self)

    def check(self, *vectors: "Vector") -> None:
        """Raise :class:`IncorrectSpaceError` unless all vectors belong here."""
        for v in vectors:
            if not self.owns(v):
                where = v.space if isinstance(v, Vector) else type(v).__name__
                raise IncorrectSpaceError(
                    f"Vector does not belong to {self!r} (got {where!r})"
                )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create(self, value: Optional[float] = None) -> "Vector":
        """Create a new vector, zero-filled or filled with ``value``."""
        data = torch.zeros(self._shape, dtype=self._dtype, device=self._device)
        if value is not None and value != 0:
            data.fill_(value)
        return Vector(self, data)

    def wrap(self, arr: ArrayLike, copy: bool = False) -> "Vector":
        """Make a vector of this space from a tensor or a NumPy array.

        The storage of ``arr`` is shared (no copy) when its dtype, device and
        layout already match those of the space and ``copy`` is False.
        Otherwise the values are converted into freshly allocated storage.

        Args:
            arr: Tensor or array with the same number of elements as the
                space.
            copy: Force a copy even if the storage could be shared.

        Raises:
            IncorrectSpaceError: If the number of elements does not match.
        """
        if isinstance(arr, Vector):
            arr = arr.data
        if isinstance(arr, np.ndarray):
            t = torch.from_numpy(np.ascontiguousarray(arr))
        elif isinstance(arr, torch.Tensor):
            t = arr
        else:
            t = torch.as_tensor(arr)
        if t.numel() != self._size:
            raise IncorrectSpaceError(
                f"Cannot wrap an array of shape {tuple(t.shape)} into {self!r}"
            )
        t = t.to(dtype=self._dtype, device=self._device, copy=copy)
        if not t.is_contiguous():
            t = t.contiguous()
        if tuple(t.shape) != self._shape:
            t = t.view(self._shape)
        return Vector(self, t)

    def clone(self, x: "Vector") -> "Vector":
        self.check(x)
        return Vector(self, x.data.clone())

    # -------------------------------------------------------------------------
    # Reductions
    # -------------------------------------------------------------------------

    def dot(self, x: "Vector", y: "Vector") -> float:
        """Inner product ⟨x, y⟩."""
        self.check(x, y)
        return float(torch.dot(x.data.reshape(-1), y.data.reshape(-1)))

    def dot3(self, w: "Vector", x: "Vector", y: "Vector") -> float:
        """Triple product Σ w_i x_i y_i."""
        self.check(w, x, y)
        return float(torch.sum(w.data * x.data * y.data))

    def norm1(self, x: "Vector") -> float:
        self.check(x)
        return float(torch.sum(torch.abs(x.data)))

    def norm2(self, x: "Vector") -> float:
        self.check(x)
        return float(torch.linalg.vector_norm(x.data))

    def norm_inf(self, x: "Vector") -> float:
        self.check(x)
        return float(torch.max(torch.abs(x.data)))

    # -------------------------------------------------------------------------
    # In-place operations
    # -------------------------------------------------------------------------

    def combine(
        self,
        alpha: float,
        x: "Vector",
        beta: float,
        y: "Vector",
        dst: Optional["Vector"] = None,
    ) -> "Vector":
        """Store ``alpha*x + beta*y`` into ``dst`` (``y`` if omitted).

        A zero coefficient discards its operand entirely, so that
        non-finite values in a discarded operand do not propagate.
        """
        if dst is None:
            dst = y
        self.check(x, y, dst)
        if alpha == 0:
            if beta == 0:
                dst.data.zero_()
            else:
                torch.mul(y.data, beta, out=dst.data)
        elif beta == 0:
            torch.mul(x.data, alpha, out=dst.data)
        else:
            dst.data.copy_(torch.add(x.data * alpha, y.data, alpha=beta))
        return dst

    def fill(self, x: "Vector", value: float) -> None:
        self.check(x)
        x.data.fill_(value)

    def zero(self, x: "Vector") -> None:
        self.check(x)
        x.data.zero_()

    def swap(self, x: "Vector", y: "Vector") -> None:
        """Exchange the contents of ``x`` and ``y``."""
        self.check(x, y)
        if x.data is y.data:
            return
        tmp = x.data.clone()
        x.data.copy_(y.data)
        y.data.copy_(tmp)

    def multiply(self, x: "Vector", y: "Vector", dst: Optional["Vector"] = None) -> "Vector":
        """Element-wise product ``dst = x ⊙ y`` (``y`` if ``dst`` omitted)."""
        if dst is None:
            dst = y
        self.check(x, y, dst)
        torch.mul(x.data, y.data, out=dst.data)
        return dst

    def scale(self, x: "Vector", alpha: float, dst: Optional["Vector"] = None) -> "Vector":
        """``dst = alpha*x`` (in place if ``dst`` omitted)."""
        if dst is None:
            dst = x
        self.check(x, dst)
        if alpha == 0:
            dst.data.zero_()
        else:
            torch.mul(x.data, alpha, out=dst.data)
        return dst

    def copy(self, dst: "Vector", src: "Vector") -> "Vector":
        self.check(dst, src)
        if dst.data is not src.data:
            dst.data.copy_(src.data)
        return dst


class Vector:
    """Element of a :class:`VectorSpace`.

    Attributes:
        space: Owning vector space.
        data: Tensor holding the values, shaped like the space.
    """

    def __init__(self, space: VectorSpace, data: torch.Tensor):
        self.space = space
        self.data = data

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.space.shape

    @property
    def size(self) -> int:
        return self.space.size

    def belongs_to(self, space: VectorSpace) -> bool:
        return space.owns(self)

    def create(self) -> "Vector":
        """New zero-filled vector of the same space."""
        return self.space.create()

    def clone(self) -> "Vector":
        return self.space.clone(self)

    def dot(self, other: "Vector") -> float:
        return self.space.dot(self, other)

    def norm1(self) -> float:
        return self.space.norm1(self)

    def norm2(self) -> float:
        return self.space.norm2(self)

    def norm_inf(self) -> float:
        return self.space.norm_inf(self)

    def fill(self, value: float) -> None:
        self.space.fill(self, value)

    def zero(self) -> None:
        self.space.zero(self)

    def scale(self, alpha: float) -> "Vector":
        return self.space.scale(self, alpha)

    def copy_from(self, src: "Vector") -> "Vector":
        return self.space.copy(self, src)

    def combine(self, alpha: float, x: "Vector", beta: float, y: "Vector") -> "Vector":
        """Store ``alpha*x + beta*y`` into this vector."""
        return self.space.combine(alpha, x, beta, y, self)

    def numpy(self) -> np.ndarray:
        """Values as a NumPy array (shares memory for CPU tensors)."""
        return self.data.detach().cpu().numpy()

    def __repr__(self) -> str:
        return f"Vector(shape={self.space.shape}, dtype={self.space.dtype})"
