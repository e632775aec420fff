"""Vector spaces and linear operators.

Example:
    >>> import torch
    >>> from invlib.linalg import VectorSpace, DenseOperator, Job
    >>> space = VectorSpace(3)
    >>> A = DenseOperator(torch.eye(3, dtype=torch.float64), space)
    >>> y = A(space.create(1.0))
    >>> z = A(y, Job.ADJOINT)
"""

from .vectors import (
    IncorrectSpaceError,
    Vector,
    VectorSpace,
)
from .operators import (
    DenseOperator,
    DiagonalOperator,
    IdentityOperator,
    Job,
    LinearEndomorphism,
    LinearOperator,
)

__all__ = [
    # Vectors
    "IncorrectSpaceError",
    "Vector",
    "VectorSpace",
    # Operators
    "Job",
    "LinearOperator",
    "LinearEndomorphism",
    "IdentityOperator",
    "DiagonalOperator",
    "DenseOperator",
]
