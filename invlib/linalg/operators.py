"""Linear operators between vector spaces.

An operator maps its input space to its output space (DIRECT job) and
the output space back to the input space (ADJOINT job). Some operators
also support the INVERSE jobs.
"""

from enum import Enum
from typing import Optional

import torch

from .vectors import IncorrectSpaceError, Vector, VectorSpace

__all__ = [
    "Job",
    "LinearOperator",
    "LinearEndomorphism",
    "IdentityOperator",
    "DiagonalOperator",
    "DenseOperator",
]


class Job(Enum):
    """Which operator to apply."""

    DIRECT = 0
    ADJOINT = 1
    INVERSE = 2
    INVERSE_ADJOINT = 3


class LinearOperator:
    """Base class of linear operators.

    Subclasses implement :meth:`_apply` which receives vectors whose spaces
    have already been checked.

    Args:
        input_space: Space of the operator's arguments.
        output_space: Space of its results. Defaults to ``input_space``.
    """

    def __init__(self, input_space: VectorSpace, output_space: Optional[VectorSpace] = None):
        self.input_space = input_space
        self.output_space = input_space if output_space is None else output_space

    def _spaces(self, job: Job):
        if job in (Job.DIRECT, Job.INVERSE_ADJOINT):
            return self.input_space, self.output_space
        return self.output_space, self.input_space

    def apply(self, dst: Vector, src: Vector, job: Job = Job.DIRECT) -> Vector:
        """Apply the operator (or its adjoint/inverse) to ``src``, store in ``dst``.

        For DIRECT and INVERSE_ADJOINT, ``src`` is in the input space and
        ``dst`` in the output space. For ADJOINT and INVERSE, the reverse.

        Raises:
            IncorrectSpaceError: If the operands are in the wrong spaces.
            NotImplementedError: If the job is not supported.
        """
        src_space, dst_space = self._spaces(job)
        if not src_space.owns(src):
            raise IncorrectSpaceError(f"Source does not belong to the {job.name} input space")
        if not dst_space.owns(dst):
            raise IncorrectSpaceError(f"Destination does not belong to the {job.name} output space")
        self._apply(dst, src, job)
        return dst

    def __call__(self, src: Vector, job: Job = Job.DIRECT) -> Vector:
        """Apply the operator to ``src`` into a newly created vector."""
        dst = self._spaces(job)[1].create()
        return self.apply(dst, src, job)

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not implement {job.name}")


class LinearEndomorphism(LinearOperator):
    """Linear operator whose input and output spaces are the same.

    Raises:
        IncorrectSpaceError: If distinct input and output spaces are given.
    """

    def __init__(self, input_space: VectorSpace, output_space: Optional[VectorSpace] = None):
        if output_space is not None and output_space != input_space:
            raise IncorrectSpaceError("Input and output spaces of an endomorphism must be the same")
        super().__init__(input_space, input_space)


class IdentityOperator(LinearEndomorphism):
    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        dst.copy_from(src)


class DiagonalOperator(LinearEndomorphism):
    """Element-wise multiplication by a fixed vector.

    The INVERSE jobs divide by the diagonal, which must then be non-zero.
    """

    def __init__(self, diag: Vector):
        super().__init__(diag.space)
        self.diag = diag

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        if job in (Job.DIRECT, Job.ADJOINT):
            torch.mul(src.data, self.diag.data, out=dst.data)
        else:
            torch.div(src.data, self.diag.data, out=dst.data)


class DenseOperator(LinearOperator):
    """Operator given by a dense matrix acting on flattened vectors.

    Args:
        matrix: Tensor of shape (output_space.size, input_space.size).
        input_space: Input space.
        output_space: Output space (defaults to ``input_space``).
    """

    def __init__(
        self,
        matrix: torch.Tensor,
        input_space: VectorSpace,
        output_space: Optional[VectorSpace] = None,
    ):
        super().__init__(input_space, output_space)
        expected = (self.output_space.size, self.input_space.size)
        matrix = torch.as_tensor(matrix)
        if tuple(matrix.shape) != expected:
            raise ValueError(f"Matrix shape {tuple(matrix.shape)} does not match {expected}")
        self.matrix = matrix.to(dtype=input_space.dtype, device=input_space.device)

    def _apply(self, dst: Vector, src: Vector, job: Job) -> None:
        x = src.data.reshape(-1)
        if job == Job.DIRECT:
            y = self.matrix @ x
        elif job == Job.ADJOINT:
            y = self.matrix.T @ x
        elif self.input_space.size != self.output_space.size:
            raise NotImplementedError("Only square matrices can be inverted")
        elif job == Job.INVERSE:
            y = torch.linalg.solve(self.matrix, x)
        else:
            y = torch.linalg.solve(self.matrix.T, x)
        dst.data.copy_(y.reshape(dst.shape))
