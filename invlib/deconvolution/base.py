"""Base types for deconvolution drivers."""

from dataclasses import dataclass, field
from typing import List, Optional

import torch

from ..optim import OptimTask

__all__ = ["DeconvolutionResult"]


@dataclass
class DeconvolutionResult:
    """Result from a deconvolution run.

    Attributes:
        restored: The restored object.
        iterations: Number of accepted iterates.
        evaluations: Number of cost and gradient evaluations.
        task: Final task of the optimizer (``FINAL_X`` on convergence).
        reason: Human-readable termination reason.
        loss_history: Cost at each accepted iterate.
        elapsed_time: Time spent in the cost function (seconds).
        metadata: Settings of the run.
    """

    restored: torch.Tensor
    iterations: int
    evaluations: int = 0
    task: Optional[OptimTask] = None
    reason: str = ""
    loss_history: List[float] = field(default_factory=list)
    elapsed_time: float = 0.0
    metadata: dict = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        """Whether the gradient tolerance was reached."""
        return self.task == OptimTask.FINAL_X
