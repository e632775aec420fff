"""Edge-preserving deconvolution.

Solves::

    min_x  (1/2) Σ w_i ((R·H·x)_i - y_i)²  +  mu * TV_eps(x)
    s.t.   lower <= x <= upper

where ``H`` is the convolution by the PSF, ``R`` extracts the data window
from the (larger) object grid and ``TV_eps`` is the hyperbolic total
variation with edge threshold ``eps``. Without a PSF, the problem is an
edge-preserving denoising of the data.

Example:
    >>> from invlib.deconvolution import solve_edge_preserving
    >>> result = solve_edge_preserving(
    ...     observed, psf, mu=0.05, epsilon=0.01,
    ...     lower_bound=0.0, verbose=True
    ... )
    >>> restored = result.restored.cpu().numpy()
"""

import math
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from ..cost import HyperbolicTotalVariation, WeightedData
from ..linalg import Vector, VectorSpace
from ..logging import get_logger
from ..optim import OptimTask, SmoothInverseProblem
from ..optim.solver import DEFAULT_MAX_ITERATIONS, Bound
from ..utils import as_tensor, crop_or_pad
from .base import DeconvolutionResult
from .operators import ArrayLike, best_fft_length
from .weighted_convolution import WeightedConvolutionCost

__all__ = ["EdgePreservingDeconvolution", "object_shape_for", "solve_edge_preserving"]

logger = get_logger(__name__)

DEFAULT_EDGE_THRESHOLD = 1.0


def _is_double(arr) -> bool:
    if arr is None:
        return False
    if isinstance(arr, torch.Tensor):
        return arr.dtype == torch.float64
    return np.asarray(arr).dtype == np.float64


def _shape(arr) -> Tuple[int, ...]:
    return tuple(arr.shape) if hasattr(arr, "shape") else np.shape(arr)


def object_shape_for(
    data_shape: Sequence[int],
    psf_shape: Sequence[int],
    padding: Union[str, int] = "auto",
) -> Tuple[int, ...]:
    """Object dimensions suited to the FFT for given data and PSF.

    Args:
        data_shape: Dimensions of the data.
        psf_shape: Dimensions of the PSF.
        padding: ``"auto"`` for ``data + psf - 1`` (no wrap-around of the
            data), ``"min"`` for ``max(data, psf)``, or a non-negative
            number of samples added to ``max(data, psf)``. Each dimension
            is then rounded up with :func:`best_fft_length`.

    Raises:
        ValueError: If ``padding`` is invalid or the ranks differ.
    """
    if len(data_shape) != len(psf_shape):
        raise ValueError("PSF and data must have the same number of dimensions")
    if padding == "auto":
        dims = [d + p - 1 for d, p in zip(data_shape, psf_shape)]
    elif padding == "min":
        dims = [max(d, p) for d, p in zip(data_shape, psf_shape)]
    elif isinstance(padding, int) and not isinstance(padding, bool):
        if padding < 0:
            raise ValueError(f"Padding must be non-negative, got {padding}")
        dims = [max(d, p) + padding for d, p in zip(data_shape, psf_shape)]
    else:
        raise ValueError(f'Padding must be "auto", "min" or an integer, got {padding!r}')
    return tuple(best_fft_length(n) for n in dims)


class EdgePreservingDeconvolution(SmoothInverseProblem):
    """Deconvolution (or denoising) with an edge-preserving regularization.

    The inputs are given by setters; the problem is (re)built by
    :meth:`update`, which :meth:`start` calls when a setting has changed.
    The current iterate is available as :attr:`solution`, a tensor sharing
    its storage with the variables of the optimizer.

    Args:
        regularization_level: Weight ``mu`` of the total variation.
        edge_threshold: Edge threshold ``eps`` of the total variation.
        **kwargs: Options of :class:`SmoothInverseProblem` (bounds,
            tolerances, memory size, budgets, ``save_best``).

    Example:
        >>> solver = EdgePreservingDeconvolution(regularization_level=0.1,
        ...                                      edge_threshold=0.01,
        ...                                      lower_bound=0.0)
        >>> solver.set_data(observed)
        >>> solver.set_psf(psf, normalize=True)
        >>> task = solver.start()
        >>> while task == OptimTask.NEW_X:
        ...     task = solver.iterate()
        >>> restored = solver.solution
    """

    def __init__(
        self,
        regularization_level: float = 1.0,
        edge_threshold: float = DEFAULT_EDGE_THRESHOLD,
        **kwargs,
    ):
        super().__init__(regularization_level=regularization_level, **kwargs)
        self._rebuild = True
        self._single = False
        self._data = None
        self._writable_data = False
        self._weights = None
        self._writable_weights = False
        self._sigma = math.nan
        self._gain = math.nan
        self._bads = None
        self._psf = None
        self._normalize_psf = False
        self._object = None
        self._requested_shape: Optional[Tuple[int, ...]] = None
        self._object_shape: Optional[Tuple[int, ...]] = None
        self._fill_value = math.nan
        self._scale: Union[float, Sequence[float]] = 1.0
        self._weighted_data: Optional[WeightedData] = None
        self._x: Optional[Vector] = None
        self.set_edge_threshold(edge_threshold)

    def _force_rebuild(self) -> None:
        self._weighted_data = None
        self._rebuild = True
        self._changed()

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def force_single_precision(self, value: bool = True) -> None:
        if self._single != value:
            self._single = value
            self._force_rebuild()

    def set_data(self, arr: ArrayLike, writable: bool = False) -> None:
        """Set the data; ``writable`` allows fixing invalid values in place."""
        self._data = arr
        self._writable_data = writable
        self._force_rebuild()

    def set_weights(self, arr: Optional[ArrayLike], writable: bool = False) -> None:
        """Set the statistical weights (inverse variances) of the data."""
        self._weights = arr
        self._writable_weights = writable
        self._force_rebuild()

    def set_bads(self, arr: Optional[ArrayLike]) -> None:
        """Set the mask of invalid data (true where the data is bad)."""
        self._bads = arr
        self._force_rebuild()

    def set_psf(self, arr: Optional[ArrayLike], normalize: bool = False) -> None:
        """Set the PSF (None for denoising); ``normalize`` makes it sum to one."""
        self._psf = arr
        self._normalize_psf = normalize
        self._force_rebuild()

    def set_detector_noise(self, sigma: float) -> None:
        """Standard deviation of the detector noise (NaN for unknown)."""
        self._sigma = float(sigma)
        self._force_rebuild()

    def set_detector_gain(self, gain: float) -> None:
        """Detector gain in counts per photon (NaN for unknown)."""
        self._gain = float(gain)
        self._force_rebuild()

    @property
    def edge_threshold(self) -> float:
        return self._epsilon

    def set_edge_threshold(self, value: float) -> None:
        value = float(value)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"Edge threshold must be strictly positive, got {value}")
        self._epsilon = value
        self._force_rebuild()

    def set_scale(self, *delta: float) -> None:
        """Sampling step(s) of the object: one value or one per dimension."""
        self._scale = delta[0] if len(delta) == 1 else delta
        self._force_rebuild()

    def set_initial_solution(self, arr: Optional[ArrayLike]) -> None:
        """Set the initial object, cropped or padded to the object shape.

        When no conversion is needed, the array becomes the storage of the
        variables and is modified by the iterations.
        """
        self._object = arr
        self._force_rebuild()

    def set_object_shape(self, shape: Optional[Sequence[int]]) -> None:
        """Dimensions of the object, None to derive them from the data and the PSF."""
        self._requested_shape = None if shape is None else tuple(int(n) for n in shape)
        self._force_rebuild()

    def set_fill_value(self, value: float) -> None:
        """Value for the padded part of the initial object (NaN for automatic)."""
        self._fill_value = float(value)
        self._force_rebuild()

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    @property
    def solution(self) -> Optional[torch.Tensor]:
        """Current object (shares storage with the variables)."""
        return None if self._x is None else self._x.data

    @property
    def best_object(self) -> Optional[torch.Tensor]:
        """Object with the lowest cost (requires ``save_best``)."""
        best = self.best_solution
        return None if best is None else best.data

    @property
    def object_shape(self) -> Optional[Tuple[int, ...]]:
        return self._object_shape

    @property
    def data_shape(self) -> Optional[Tuple[int, ...]]:
        return None if self._data is None else _shape(self._data)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def update(self) -> None:
        """Build the cost function and the variables from the settings.

        Raises:
            RuntimeError: If no data have been set.
            ValueError: If the inputs have inconsistent dimensions.
        """
        if self._data is None:
            raise RuntimeError("No data specified")
        data_shape = _shape(self._data)
        rank = len(data_shape)
        if self._weights is not None and _shape(self._weights) != data_shape:
            raise ValueError("Weights and data must have the same dimensions")
        if self._bads is not None and _shape(self._bads) != data_shape:
            raise ValueError("Mask of invalid data must have the same dimensions as the data")
        if self._psf is not None and len(_shape(self._psf)) != rank:
            raise ValueError("PSF and data must have the same number of dimensions")
        if self._object is not None and len(_shape(self._object)) != rank:
            raise ValueError("Object and data must have the same number of dimensions")
        if self._requested_shape is not None and len(self._requested_shape) != rank:
            raise ValueError("Object shape must have the same number of dimensions as the data")

        if self._single:
            dtype = torch.float32
        elif any(_is_double(a) for a in (self._data, self._psf, self._weights, self._object)):
            dtype = torch.float64
        else:
            dtype = torch.float32
        device = self._data.device if isinstance(self._data, torch.Tensor) else "cpu"

        if self._psf is None:
            object_shape = data_shape
        elif self._requested_shape is not None:
            psf_shape = _shape(self._psf)
            for k in range(rank):
                if self._requested_shape[k] < data_shape[k]:
                    raise ValueError("Object dimensions must be at least those of the data")
                if self._requested_shape[k] < psf_shape[k]:
                    raise ValueError("Object dimensions must be at least those of the PSF")
            object_shape = self._requested_shape
        else:
            object_shape = object_shape_for(data_shape, _shape(self._psf))
            if self._object is not None:
                object_shape = tuple(
                    max(n, best_fft_length(m)) for n, m in zip(object_shape, _shape(self._object))
                )
        self._object_shape = tuple(object_shape)
        logger.info(
            "object shape %s, data shape %s, %s precision",
            self._object_shape, data_shape, "single" if dtype == torch.float32 else "double",
        )

        data_space = VectorSpace(data_shape, dtype=dtype, device=device)
        object_space = VectorSpace(self._object_shape, dtype=dtype, device=device)

        # likelihood
        if self._psf is None:
            fdata = WeightedData(data_space)
            self._set_weights_and_data(fdata)
        else:
            fdata = WeightedConvolutionCost(object_space, data_space)
            self._set_weights_and_data(fdata)
            fdata.set_psf(as_tensor(self._psf), normalize=self._normalize_psf)
        self._weighted_data = fdata

        # initial solution
        if self._object is None:
            value = self._pad_value()
            obj = torch.full(self._object_shape, value, dtype=dtype, device=device)
            logger.debug("initial object filled with %g", value)
        else:
            obj = as_tensor(self._object)
            value = 0.0
            if any(n > m for n, m in zip(self._object_shape, obj.shape)):
                value = self._pad_value()
            obj = crop_or_pad(obj, self._object_shape, value)
            logger.debug("initial object padded with %g", value)

        fprior = HyperbolicTotalVariation(object_space, self._epsilon, self._scale)

        self.likelihood = fdata
        self.regularization = fprior
        # variables share their storage with the object when no conversion is needed
        self._x = object_space.wrap(obj)
        self._object = self._x.data
        self._rebuild = False

    def _set_weights_and_data(self, wd: WeightedData) -> None:
        wd.set_data(as_tensor(self._data), writable=self._writable_data)
        if self._weights is not None:
            if not (math.isnan(self._sigma) and math.isnan(self._gain)):
                logger.warning("noise model parameters are ignored when weights are specified")
            wd.set_weights(as_tensor(self._weights), writable=self._writable_weights)
        else:
            if math.isnan(self._sigma):
                if not math.isnan(self._gain):
                    logger.warning("detector gain is ignored without detector noise")
                alpha, beta = 0.0, 1.0
            elif math.isnan(self._gain):
                alpha, beta = 0.0, self._sigma ** 2
            else:
                alpha, beta = 1.0 / self._gain, (self._sigma / self._gain) ** 2
            logger.debug("noise model: alpha = %g, beta = %g", alpha, beta)
            wd.compute_weights_from_data(alpha, beta)
        if self._bads is not None:
            wd.mark_bad_data(as_tensor(self._bads))

    def _pad_value(self) -> float:
        if not math.isnan(self._fill_value):
            return self._fill_value
        value = self._weighted_data.weighted_mean()
        if self._psf is not None and not self._normalize_psf:
            value /= float(torch.sum(as_tensor(self._psf, dtype=torch.float64)))
        return value

    # -------------------------------------------------------------------------
    # Iterations
    # -------------------------------------------------------------------------

    def start(self, reset: bool = False) -> OptimTask:
        if self._rebuild:
            self.update()
        return super().start(self._x, reset)

    def iterate(self) -> OptimTask:
        if self._rebuild or self._update_pending:
            return self.start()
        return super().iterate(self._x)


def solve_edge_preserving(
    observed: ArrayLike,
    psf: Optional[ArrayLike] = None,
    mu: float = 10.0,
    epsilon: float = DEFAULT_EDGE_THRESHOLD,
    weights: Optional[ArrayLike] = None,
    bads: Optional[ArrayLike] = None,
    sigma: Optional[float] = None,
    gain: Optional[float] = None,
    normalize_psf: bool = False,
    scale: Union[float, Sequence[float]] = 1.0,
    lower_bound: Bound = None,
    upper_bound: Bound = None,
    limited_memory: int = 0,
    gatol: float = 0.0,
    grtol: float = 1e-3,
    max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS,
    max_evaluations: Optional[int] = None,
    init: Optional[ArrayLike] = None,
    padding: Union[str, int] = "auto",
    fill_value: float = math.nan,
    crop: bool = False,
    single_precision: bool = False,
    verbose: bool = False,
    callback: Optional[Callable[[int, torch.Tensor], None]] = None,
) -> DeconvolutionResult:
    """Solve an edge-preserving deconvolution problem.

    Args:
        observed: Observed image (1D, 2D or 3D).
        psf: Point spread function, centred at index ``dim//2``. None for
            denoising.
        mu: Regularization level. Default 10.
        epsilon: Edge threshold of the total variation. Default 1.
        weights: Statistical weights of the data. Overrides ``sigma`` and
            ``gain``.
        bads: Mask of invalid data.
        sigma: Standard deviation of the detector noise.
        gain: Detector gain (with ``sigma``, for a Poisson + Gaussian model).
        normalize_psf: Scale the PSF to unit sum.
        scale: Sampling step(s) of the object.
        lower_bound: Lower bound of the object (e.g. 0 for non-negativity).
        upper_bound: Upper bound of the object.
        limited_memory: Number of L-BFGS pairs; 0 selects conjugate
            gradient when there are no bounds.
        gatol: Absolute gradient tolerance.
        grtol: Relative gradient tolerance.
        max_iterations: Iteration budget, None for no limit.
        max_evaluations: Evaluation budget, None for no limit.
        init: Initial object (not modified).
        padding: Object padding, see :func:`object_shape_for`.
        fill_value: Value of the padded part of the initial object (NaN
            for the weighted mean of the data).
        crop: Crop the result to the data dimensions.
        single_precision: Compute in float32 whatever the input types.
        verbose: Print iteration progress. Default False.
        callback: Optional function called at each iterate with
            (iteration, current_object).

    Returns:
        DeconvolutionResult with the best object found and diagnostics.

    Example:
        ```python
        from invlib.deconvolution import solve_edge_preserving

        result = solve_edge_preserving(
            blurred, psf,
            mu=0.01, epsilon=0.01,
            normalize_psf=True,
            lower_bound=0.0,
            crop=True,
        )
        restored = result.restored.numpy()
        ```

    Note:
        - The optimizer is L-BFGS-B when a bound is given, L-BFGS when
          ``limited_memory > 0`` and non-linear conjugate gradient otherwise.
        - A warning termination (e.g. budget exhausted) still returns the
          best object found so far.
    """
    solver = EdgePreservingDeconvolution(
        regularization_level=mu,
        edge_threshold=epsilon,
        limited_memory=limited_memory,
        lower_bound=lower_bound,
        upper_bound=upper_bound,
        gatol=gatol,
        grtol=grtol,
        max_iterations=max_iterations,
        max_evaluations=max_evaluations,
        save_best=True,
    )
    solver.force_single_precision(single_precision)
    solver.set_data(observed)
    solver.set_psf(psf, normalize=normalize_psf)
    solver.set_weights(weights)
    solver.set_bads(bads)
    if sigma is not None:
        solver.set_detector_noise(sigma)
    if gain is not None:
        solver.set_detector_gain(gain)
    if isinstance(scale, (int, float)):
        solver.set_scale(scale)
    else:
        solver.set_scale(*scale)
    if psf is not None:
        solver.set_object_shape(object_shape_for(_shape(observed), _shape(psf), padding))
    solver.set_fill_value(fill_value)
    if init is not None:
        solver.set_initial_solution(as_tensor(init).clone())

    loss_history = []

    task = solver.start()

    if verbose:
        print("Edge-Preserving Deconvolution")
        print(f"  Object: {solver.object_shape}, mu: {mu}, epsilon: {epsilon}")
        print(f"  Optimizer: {type(solver.optimizer).__name__}")
        print()
        print(f"{'Iter':>5}  {'Eval':>5}  {'Time (s)':>9}  {'Cost':>22}  {'|g|':>9}")
        print("-" * 60)

    while True:
        if task in (OptimTask.NEW_X, OptimTask.FINAL_X):
            loss_history.append(solver.cost)
            if verbose:
                print(
                    f"{solver.iterations:>5}  {solver.evaluations:>5}  "
                    f"{solver.elapsed_time:>9.3f}  {solver.cost:>22.16e}  {solver.gnorm:>9.2e}"
                )
            if callback is not None:
                callback(solver.iterations, solver.solution)
        if task != OptimTask.NEW_X or not solver.running:
            break
        task = solver.iterate()

    if verbose:
        evaluations = solver.evaluations
        print("-" * 60)
        print(f"{task}: {solver.reason}")
        print(
            f"Total time in cost function: {solver.elapsed_time:.3f} s "
            f"({1e3 * solver.elapsed_time / max(evaluations, 1):.3f} ms/eval.)"
        )

    restored = solver.best_object if solver.best_object is not None else solver.solution
    if crop:
        restored = crop_or_pad(restored, _shape(observed))

    return DeconvolutionResult(
        restored=restored,
        iterations=solver.iterations,
        evaluations=solver.evaluations,
        task=task,
        reason=solver.reason,
        loss_history=loss_history,
        elapsed_time=solver.elapsed_time,
        metadata={
            "algorithm": "edge-preserving",
            "mu": mu,
            "epsilon": epsilon,
            "optimizer": type(solver.optimizer).__name__,
            "object_shape": solver.object_shape,
            "lower_bound": lower_bound,
            "upper_bound": upper_bound,
        },
    )
