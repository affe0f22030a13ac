"""Smoothed top-k-of-hinge loss.

For an example with ground-truth score ``g`` and negative scores ``c_j``,
the shifted margins ``v_j = 1 + c_j - g`` are projected onto
``{z : 0 <= z_j <= gamma / top_k, sum_j z_j <= gamma}``.  The cap of
``gamma / top_k`` per entry means the budget is spent on at most ``top_k``
saturated negatives, so the loss ``<z, v> - 0.5 <z, z>`` is a smooth convex
surrogate for the sum of the ``top_k`` largest hinge terms.  By the envelope
theorem its gradient is ``z`` on the negatives and ``-sum(z)`` on the ground
truth.
"""

from __future__ import annotations

from typing import Any

import torch
import torch.nn as nn

from topk_losses.config import TopkHingeConfig
from topk_losses.errors import LabelGradientError
from topk_losses.parallel import PartitionFn, run_partitioned
from topk_losses.projection import KnapsackProjection, ProjectionOracle
from topk_losses.registry import register_loss
from topk_losses.types import LossAndGradient
from topk_losses.workspace import Workspace


def _hinge_partition(
    config: TopkHingeConfig, oracle: ProjectionOracle
) -> PartitionFn:
    lo, hi, rhs = config.lo, config.hi, config.rhs

    def run(scores: torch.Tensor, labels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        workspace = Workspace.ground_truth_first(scores.double(), labels)
        shift = 1.0 - workspace.ground_truth
        v = workspace.negatives + shift.unsqueeze(1)

        t = oracle.thresholds(v, lo, hi, rhs)
        ph = oracle.dot_prox(t, v, lo, hi)
        pp = oracle.dot_prox_prox(t, v, lo, hi)
        z = oracle.prox_(t, v, lo, hi)

        slots = torch.cat([-z.sum(dim=1, keepdim=True), z], dim=1)
        return (ph - 0.5 * pp).sum(), workspace.scatter(slots)

    return run


def _hinge_forward(
    scores: torch.Tensor,
    labels: torch.Tensor,
    config: TopkHingeConfig,
    oracle: ProjectionOracle,
) -> tuple[torch.Tensor, torch.Tensor, float]:
    """Return ``(loss_sum, unscaled_gradient, scale)`` in float64."""
    targets = config.bind(scores, labels).to(scores.device)
    loss_sum, gradient = run_partitioned(
        _hinge_partition(config, oracle),
        scores.detach(),
        targets,
        config.num_threads,
    )
    scale = 1.0 / (config.gamma * scores.shape[0])
    return loss_sum, gradient, scale


def topk_hinge_loss(
    scores: torch.Tensor,
    labels: torch.Tensor,
    config: TopkHingeConfig | None = None,
    oracle: ProjectionOracle | None = None,
) -> LossAndGradient:
    """Batch-averaged smoothed top-k hinge loss and its gradient.

    Parameters
    ----------
    scores:
        Raw class scores of shape ``(N, C)``.
    labels:
        Ground-truth class indices of shape ``(N,)``.
    config:
        Loss configuration; defaults to ``TopkHingeConfig()``.
    oracle:
        Projection oracle; defaults to :class:`KnapsackProjection`.
    """
    config = config if config is not None else TopkHingeConfig()
    oracle = oracle if oracle is not None else KnapsackProjection()
    loss_sum, gradient, scale = _hinge_forward(scores, labels, config, oracle)
    return LossAndGradient(
        loss=(loss_sum * scale).to(scores.dtype),
        gradient=(gradient * scale).to(scores.dtype),
    )


class _TopkHingeFunction(torch.autograd.Function):
    @staticmethod
    def forward(  # type: ignore[override]
        ctx: Any,
        scores: torch.Tensor,
        labels: torch.Tensor,
        config: TopkHingeConfig,
        oracle: ProjectionOracle,
    ) -> torch.Tensor:
        loss_sum, gradient, scale = _hinge_forward(scores, labels, config, oracle)
        ctx.save_for_backward(gradient.to(scores.dtype))
        ctx.scale = scale
        return (loss_sum * scale).to(scores.dtype)

    @staticmethod
    def backward(ctx: Any, grad_output: torch.Tensor) -> tuple[Any, ...]:  # type: ignore[override]
        if ctx.needs_input_grad[1]:
            raise LabelGradientError(
                "TopkHingeLoss cannot backpropagate to label inputs."
            )
        grad_scores = None
        if ctx.needs_input_grad[0]:
            (gradient,) = ctx.saved_tensors
            grad_scores = gradient * (grad_output * ctx.scale)
        return grad_scores, None, None, None


@register_loss(name="topk_hinge", config_model=TopkHingeConfig)
class TopkHingeLoss(nn.Module):
    """Smoothed top-k hinge loss as a drop-in classification criterion.

    Parameters
    ----------
    top_k:
        Number of highest-scoring negatives the loss focuses on.
    gamma:
        Smoothing constant.
    num_threads:
        Worker threads the batch is partitioned across.
    oracle:
        Projection oracle; defaults to :class:`KnapsackProjection`.
    """

    def __init__(
        self,
        top_k: int = 1,
        gamma: float = 1.0,
        num_threads: int = 1,
        oracle: ProjectionOracle | None = None,
    ) -> None:
        super().__init__()
        self.config = TopkHingeConfig(
            top_k=top_k, gamma=gamma, num_threads=num_threads
        )
        self.oracle = oracle if oracle is not None else KnapsackProjection()

    @property
    def top_k(self) -> int:
        return self.config.top_k

    def forward(self, logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        """Compute the loss; gradients flow to ``logits`` only."""
        return _TopkHingeFunction.apply(logits, targets, self.config, self.oracle)  # type: ignore[no-any-return]

    def extra_repr(self) -> str:
        return f"top_k={self.config.top_k}, gamma={self.config.gamma}"
