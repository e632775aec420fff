"""invlib - Inverse problems and image deconvolution with PyTorch.

A library for solving smooth, possibly bound-constrained, inverse
problems with reverse-communication optimizers, and for restoring images
blurred by a known point spread function.

The library is organized into the following modules:

- **linalg**: Vector spaces, vectors and linear operators on tensors
- **cost**: Differentiable cost functions (weighted data, likelihood,
  total variation, composite sums)
- **optim**: Line searches, NLCG, L-BFGS, L-BFGS-B and solver drivers
- **deconvolution**: FFT convolution, edge-preserving deconvolution
- **utils**: Array cropping and padding helpers

Example:
    >>> from invlib import solve_edge_preserving
    >>>
    >>> result = solve_edge_preserving(
    ...     blurred, psf,
    ...     mu=0.01,            # regularization level
    ...     epsilon=0.01,       # edge threshold
    ...     lower_bound=0.0,    # non-negativity
    ... )
    >>> print(result.reason, result.iterations)
"""

__version__ = "0.1.0"

# =============================================================================
# Linear algebra
# =============================================================================
from .linalg import (
    IncorrectSpaceError,
    Job,
    LinearOperator,
    Vector,
    VectorSpace,
)

# =============================================================================
# Cost functions
# =============================================================================
from .cost import (
    CompositeCostFunction,
    DifferentiableCostFunction,
    GaussianLikelihood,
    HyperbolicTotalVariation,
    WeightedData,
)

# =============================================================================
# Optimization
# =============================================================================
from .optim import (
    LBFGS,
    LBFGSB,
    NonLinearConjugateGradient,
    OptimStatus,
    OptimTask,
    SmoothInverseProblem,
)

# =============================================================================
# Deconvolution
# =============================================================================
from .deconvolution import (
    DeconvolutionResult,
    EdgePreservingDeconvolution,
    WeightedConvolutionCost,
    solve_edge_preserving,
)

from .logging import get_logger, set_log_level

__all__ = [
    # Version
    "__version__",
    # Linear algebra
    "IncorrectSpaceError",
    "Job",
    "LinearOperator",
    "Vector",
    "VectorSpace",
    # Cost functions
    "CompositeCostFunction",
    "DifferentiableCostFunction",
    "GaussianLikelihood",
    "HyperbolicTotalVariation",
    "WeightedData",
    # Optimization
    "LBFGS",
    "LBFGSB",
    "NonLinearConjugateGradient",
    "OptimStatus",
    "OptimTask",
    "SmoothInverseProblem",
    # Deconvolution
    "DeconvolutionResult",
    "EdgePreservingDeconvolution",
    "WeightedConvolutionCost",
    "solve_edge_preserving",
    # Logging
    "get_logger",
    "set_log_level",
]
