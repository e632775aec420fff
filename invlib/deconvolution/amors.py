"""Alternating minimization for blind deconvolution.

The object ``x`` and the PSF ``h`` are estimated in turn, each one by a
:class:`SmoothInverseProblem` whose likelihood is a
:class:`WeightedConvolutionCost` with the other one as the kernel. Since
``x ⊛ h = (α·x) ⊛ (h/α)``, the scale ``α`` is fixed between the passes
so as to minimize the sum of the regularization terms, which is possible
when they are homogeneous functions.
"""

import math
from typing import Tuple

from ..cost import HomogeneousFunction
from ..linalg import Vector
from ..logging import get_logger
from ..optim import OptimTask, SmoothInverseProblem
from .weighted_convolution import WeightedConvolutionCost

__all__ = ["AlternatingMinimization", "best_scale_factor"]

logger = get_logger(__name__)


def best_scale_factor(lambda_jx: float, q: float, mu_ky: float, r: float) -> float:
    """Scale ``α`` minimizing ``λ·J(α·x) + μ·K(h/α)``.

    Args:
        lambda_jx: Weighted object regularization ``λ·J(x)``.
        q: Homogeneous degree of ``J``.
        mu_ky: Weighted PSF regularization ``μ·K(h)``.
        r: Homogeneous degree of ``K``.

    Returns:
        ``((r·μK(h)) / (q·λJ(x)))^(1/(q+r))``.
    """
    return ((r * mu_ky) / (q * lambda_jx)) ** (1.0 / (q + r))


class AlternatingMinimization:
    """Alternate object and PSF deconvolutions with scale balancing.

    Args:
        object_solver: Problem whose variables are the object.
        psf_solver: Problem whose variables are the PSF.
        n_loops: Number of object/PSF passes. With 0, only the object is
            deconvolved.
        atol: Tolerance on ``|α - 1|`` for repeating the first object
            pass.

    Raises:
        ValueError: If a likelihood is not a :class:`WeightedConvolutionCost`
            or a regularization is not homogeneous.

    Example:
        >>> amors = AlternatingMinimization(object_problem, psf_problem, n_loops=3)
        >>> obj, psf = amors.run(obj, psf)
    """

    def __init__(
        self,
        object_solver: SmoothInverseProblem,
        psf_solver: SmoothInverseProblem,
        n_loops: int,
        atol: float = 0.1,
    ):
        for name, solver in (("object", object_solver), ("PSF", psf_solver)):
            if not isinstance(solver.likelihood, WeightedConvolutionCost):
                raise ValueError(f"Likelihood of the {name} problem must be a convolution cost")
            reg = solver.regularization
            if not (isinstance(reg, HomogeneousFunction) and reg.is_homogeneous):
                raise ValueError(f"Regularization of the {name} problem must be homogeneous")
        if n_loops < 0:
            raise ValueError(f"Number of loops must be non-negative, got {n_loops}")
        if not (math.isfinite(atol) and atol >= 0):
            raise ValueError(f"Invalid scale tolerance: {atol}")
        object_solver.save_best = True
        psf_solver.save_best = True
        self.object_solver = object_solver
        self.psf_solver = psf_solver
        self.n_loops = n_loops
        self.atol = atol
        self.alpha = 1.0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def abort(self) -> None:
        """Stop both problems and the outer loop."""
        logger.info("blind deconvolution aborted")
        self._running = False
        self.object_solver.abort()
        self.psf_solver.abort()

    def run(self, obj: Vector, psf: Vector) -> Tuple[Vector, Vector]:
        """Estimate the object and the PSF, updating ``obj`` and ``psf`` in place.

        Returns:
            The pair ``(obj, psf)``.
        """
        self._running = True
        if self.n_loops == 0:
            self._deconvolve_object(obj, psf)
        for loop in range(self.n_loops):
            while True:
                if not self._running:
                    return obj, psf
                self._deconvolve_object(obj, psf)
                self._rebalance(obj, psf)
                if loop >= 1 or abs(self.alpha - 1.0) <= self.atol:
                    break
            if not self._running:
                return obj, psf
            self.psf_solver.likelihood.set_psf(obj.data)
            self._solve(self.psf_solver, psf)
            self._rebalance(obj, psf)
            logger.debug("loop %d: alpha = %g", loop + 1, self.alpha)
        self._running = False
        return obj, psf

    def _deconvolve_object(self, obj: Vector, psf: Vector) -> None:
        self.object_solver.likelihood.set_psf(psf.data)
        self._solve(self.object_solver, obj)

    def _solve(self, solver: SmoothInverseProblem, x: Vector) -> None:
        task = solver.start(x)
        while task == OptimTask.NEW_X and self._running:
            task = solver.iterate(x)
        if task == OptimTask.ERROR:
            logger.error("%s", solver.reason)
        best = solver.best_solution
        if best is not None:
            x.copy_from(best)

    def _scale_factor(self, obj: Vector, psf: Vector) -> float:
        fobj = self.object_solver.regularization
        fpsf = self.psf_solver.regularization
        lambda_jx = fobj.evaluate(self.object_solver.regularization_level, obj)
        mu_ky = fpsf.evaluate(self.psf_solver.regularization_level, psf)
        if not (lambda_jx > 0 and mu_ky > 0):
            logger.debug("no scale balancing with null regularization")
            return 1.0
        return best_scale_factor(
            lambda_jx, fobj.homogeneous_degree, mu_ky, fpsf.homogeneous_degree
        )

    def _rebalance(self, obj: Vector, psf: Vector) -> None:
        alpha = self._scale_factor(obj, psf)
        if not math.isfinite(alpha):
            alpha = 1.0
        self.alpha = alpha
        if alpha != 1.0:
            obj.scale(alpha)
            psf.scale(1.0 / alpha)
