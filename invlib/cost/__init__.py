"""Cost functions for inverse problems.

A differentiable cost function computes ``alpha*f(x)`` and stores
``alpha*∇f(x)`` into a gradient vector, either overwriting it or adding
to it. Data-fidelity and regularization terms are combined with
:class:`CompositeCostFunction`.

Example:
    >>> from invlib.cost import (
    ...     WeightedData, GaussianLikelihood, HyperbolicTotalVariation,
    ...     CompositeCostFunction,
    ... )
    >>> wd = WeightedData(data_space, data=observed)
    >>> fdata = GaussianLikelihood(wd, H)
    >>> fprior = HyperbolicTotalVariation(object_space, epsilon=0.01)
    >>> f = CompositeCostFunction(object_space, (1.0, fdata), (mu, fprior))
"""

from .base import (
    CostFunction,
    DifferentiableCostFunction,
    HomogeneousFunction,
    QuadraticCost,
)
from .composite import (
    CompositeCostFunction,
)
from .weighted_data import (
    WeightedData,
)
from .likelihood import (
    DifferentiableMapping,
    GaussianLikelihood,
)
from .tv import (
    HyperbolicTotalVariation,
)

__all__ = [
    # Base types
    "CostFunction",
    "DifferentiableCostFunction",
    "HomogeneousFunction",
    "QuadraticCost",
    # Composition
    "CompositeCostFunction",
    # Data terms
    "WeightedData",
    "DifferentiableMapping",
    "GaussianLikelihood",
    # Regularization
    "HyperbolicTotalVariation",
]
