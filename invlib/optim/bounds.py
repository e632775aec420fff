"""Projection onto simple bound constraints.

The feasible set is the box ``{x : lower <= x <= upper}`` where each bound
is either a scalar or a vector of the space of the variables. Either bound
may be omitted.

Example:
    >>> bounds = SimpleLowerBound(space, 0.0)  # non-negativity
    >>> bounds.project(x)                      # x <- max(x, 0)
    >>> bounds.project_gradient(x, g)          # g <- projected gradient
"""

import math
from typing import Optional, Union

import torch

from ..linalg import Vector, VectorSpace

__all__ = ["BoundProjector", "SimpleBounds", "SimpleLowerBound", "SimpleUpperBound"]

Bound = Union[None, float, Vector]


class BoundProjector:
    """Base class of projectors onto a convex box.

    Args:
        space: Space of the variables.
    """

    def __init__(self, space: VectorSpace):
        self.space = space

    def project(self, x: Vector, dst: Optional[Vector] = None) -> Vector:
        """Store the projection of ``x`` onto the feasible set into ``dst``.

        ``dst`` defaults to ``x`` (in-place projection).
        """
        if dst is None:
            dst = x
        self.space.check(x, dst)
        self._project(dst.data, x.data)
        return dst

    def project_direction(
        self,
        x: Vector,
        d: Vector,
        dst: Optional[Vector] = None,
        ascent: bool = True,
    ) -> Vector:
        """Zero the components of ``d`` that would leave the feasible set.

        Args:
            x: Feasible point.
            d: Direction. The variables move along ``-d`` if ``ascent`` is
                True, along ``+d`` otherwise.
            dst: Destination (``d`` if omitted).
            ascent: Orientation of ``d``.
        """
        if dst is None:
            dst = d
        self.space.check(x, d, dst)
        sign = -1.0 if ascent else 1.0
        keep = self._free(x.data, d.data * sign)
        dst.data.copy_(torch.where(keep, d.data, torch.zeros_like(d.data)))
        return dst

    def project_gradient(self, x: Vector, g: Vector, dst: Optional[Vector] = None) -> Vector:
        """Projected gradient at the feasible point ``x``."""
        return self.project_direction(x, g, dst, ascent=True)

    def active_set(self, x: Vector, g: Vector) -> torch.Tensor:
        """Boolean mask of the variables blocked by a bound at ``x``.

        A variable is active when it lies on a bound and the steepest
        descent direction ``-g`` points outside the feasible set.
        """
        self.space.check(x, g)
        return ~self._free(x.data, -g.data)

    def _project(self, dst: torch.Tensor, src: torch.Tensor) -> None:
        raise NotImplementedError

    def _free(self, x: torch.Tensor, motion: torch.Tensor) -> torch.Tensor:
        """Mask of components where moving ``x`` along ``motion`` is feasible."""
        raise NotImplementedError


def _as_bound(space: VectorSpace, value: Bound, name: str, forbidden: float) -> Optional[torch.Tensor]:
    if value is None:
        return None
    if isinstance(value, Vector):
        space.check(value)
        t = value.data
        if bool(torch.isnan(t).any()):
            raise ValueError(f"{name} bound has NaN values")
        if bool((t == forbidden).any()):
            raise ValueError(f"{name} bound cannot be {forbidden}")
        return t
    value = float(value)
    if math.isnan(value):
        raise ValueError(f"{name} bound is NaN")
    if value == forbidden:
        raise ValueError(f"{name} bound cannot be {forbidden}")
    # conversion to the precision of the space may change the value
    t = torch.tensor(value, dtype=space.dtype, device=space.device)
    if float(t) == forbidden:
        raise ValueError(f"{name} bound {value} overflows to {forbidden}")
    return t


class SimpleBounds(BoundProjector):
    """Box constraints ``lower <= x <= upper``.

    Args:
        space: Space of the variables.
        lower: Scalar or vector lower bound, None for no lower bound.
        upper: Scalar or vector upper bound, None for no upper bound.

    Raises:
        ValueError: If a bound has NaN values, the lower bound is +inf
            somewhere, the upper bound is -inf somewhere, or
            ``lower > upper`` somewhere (infeasible box).
        IncorrectSpaceError: If a vector bound is not in ``space``.
    """

    def __init__(self, space: VectorSpace, lower: Bound = None, upper: Bound = None):
        super().__init__(space)
        self.lower = _as_bound(space, lower, "Lower", math.inf)
        self.upper = _as_bound(space, upper, "Upper", -math.inf)
        if self.lower is not None and self.upper is not None:
            if bool((self.lower > self.upper).any()):
                raise ValueError("Lower bound must be less or equal the upper bound")

    def _project(self, dst: torch.Tensor, src: torch.Tensor) -> None:
        if self.lower is not None and self.upper is not None:
            torch.minimum(torch.maximum(src, self.lower), self.upper, out=dst)
        elif self.lower is not None:
            torch.maximum(src, self.lower, out=dst)
        elif self.upper is not None:
            torch.minimum(src, self.upper, out=dst)
        elif dst is not src:
            dst.copy_(src)

    def _free(self, x: torch.Tensor, motion: torch.Tensor) -> torch.Tensor:
        keep = torch.ones_like(x, dtype=torch.bool)
        if self.lower is not None:
            keep &= (motion > 0) | (x > self.lower)
        if self.upper is not None:
            keep &= (motion < 0) | (x < self.upper)
        return keep


class SimpleLowerBound(SimpleBounds):
    """Lower bound constraint ``x >= lower``."""

    def __init__(self, space: VectorSpace, lower: Union[float, Vector]):
        super().__init__(space, lower=lower)


class SimpleUpperBound(SimpleBounds):
    """Upper bound constraint ``x <= upper``."""

    def __init__(self, space: VectorSpace, upper: Union[float, Vector]):
        super().__init__(space, upper=upper)
