"""Deconvolution with smooth regularized inverse problems.

The deconvolution problem is formulated as::

    y = R·(h ⊛ x) + noise

where:
    - y: observed image (the data)
    - x: unknown object, on a grid at least as large as the data
    - h: point spread function (PSF)
    - R: extraction of the data window from the object grid

The object is estimated by minimizing a weighted least-squares data term
plus ``mu`` times an edge-preserving total variation, possibly under
bound constraints.

Example:
    >>> import numpy as np
    >>> from invlib.deconvolution import solve_edge_preserving
    >>>
    >>> result = solve_edge_preserving(
    ...     blurred, psf,
    ...     mu=0.01, epsilon=0.01,
    ...     normalize_psf=True,
    ...     lower_bound=0.0,
    ... )
    >>> restored = result.restored.cpu().numpy()
"""

from .base import (
    DeconvolutionResult,
)
from .operators import (
    ConvolutionOperator,
    WeightedConvolutionOperator,
    best_fft_length,
    output_window,
)
from .weighted_convolution import (
    WeightedConvolutionCost,
)
from .edge_preserving import (
    EdgePreservingDeconvolution,
    object_shape_for,
    solve_edge_preserving,
)
from .amors import (
    AlternatingMinimization,
    best_scale_factor,
)

__all__ = [
    # Base types
    "DeconvolutionResult",
    # Operators
    "ConvolutionOperator",
    "WeightedConvolutionOperator",
    "best_fft_length",
    "output_window",
    # Cost functions
    "WeightedConvolutionCost",
    # Drivers
    "EdgePreservingDeconvolution",
    "object_shape_for",
    "solve_edge_preserving",
    # Blind deconvolution
    "AlternatingMinimization",
    "best_scale_factor",
]
