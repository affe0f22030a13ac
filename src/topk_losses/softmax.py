"""Top-k softmax loss.

The negatives of each example are partially ordered so that the ``top_k``
largest ones come first.  The ``top_k - 1`` negatives strictly above the
boundary are ignored; the boundary negative (the ``top_k``-th largest, with
score ``M``) and the tail below it enter a softmax cross-entropy against the
ground truth::

    loss = log(1 + sum_{j in boundary + tail} exp(c_j - g))

Shifting by ``M`` keeps every exponent of the tail non-positive.  With
``a = M - g``, ``b = exp(-a)`` and ``s = sum_tail exp(c_j - M)`` the loss is
``a + log(1 + b + s)``; it is evaluated as ``logaddexp(0, a + log1p(s))`` so
that a ground truth far above the boundary does not overflow ``b``.
"""

from __future__ import annotations

from typing import Any

import torch
import torch.nn as nn

from topk_losses.config import TopkLossConfig
from topk_losses.errors import LabelGradientError
from topk_losses.parallel import PartitionFn, run_partitioned
from topk_losses.registry import register_loss
from topk_losses.types import LossAndGradient
from topk_losses.workspace import Workspace


def _softmax_partition(top_k: int, num_examples: int) -> PartitionFn:
    def run(scores: torch.Tensor, labels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        workspace = Workspace.ground_truth_first(scores, labels).select_top_k(top_k)

        # Accumulate in float64 to limit cancellation over many classes.
        boundary = workspace.boundary.double()
        weights = torch.exp(workspace.tail.double() - boundary.unsqueeze(1))
        s = weights.sum(dim=1)
        a = boundary - workspace.ground_truth.double()
        x = a + torch.log1p(s)
        losses = torch.logaddexp(torch.zeros_like(x), x)

        # 1 / (1 + s + b) == sigmoid(x) / (1 + s)
        p = torch.sigmoid(x)
        coeff = p / (1.0 + s) / num_examples

        slots = torch.zeros_like(workspace.values, dtype=torch.float64)
        slots[:, 0] = -p / num_examples
        slots[:, top_k] = coeff
        slots[:, top_k + 1 :] = weights * coeff.unsqueeze(1)
        return losses.sum(), workspace.scatter(slots)

    return run


def topk_softmax_loss(
    scores: torch.Tensor,
    labels: torch.Tensor,
    config: TopkLossConfig | None = None,
) -> LossAndGradient:
    """Batch-averaged top-k softmax loss and its gradient.

    Parameters
    ----------
    scores:
        Raw class scores of shape ``(N, C)``.
    labels:
        Ground-truth class indices of shape ``(N,)``.
    config:
        Loss configuration; defaults to ``TopkLossConfig()``.
    """
    config = config if config is not None else TopkLossConfig()
    targets = config.bind(scores, labels).to(scores.device)
    num_examples = scores.shape[0]
    loss_sum, gradient = run_partitioned(
        _softmax_partition(config.top_k, num_examples),
        scores.detach(),
        targets,
        config.num_threads,
    )
    return LossAndGradient(
        loss=(loss_sum / num_examples).to(scores.dtype),
        gradient=gradient.to(scores.dtype),
    )


class _TopkSoftmaxFunction(torch.autograd.Function):
    @staticmethod
    def forward(  # type: ignore[override]
        ctx: Any,
        scores: torch.Tensor,
        labels: torch.Tensor,
        config: TopkLossConfig,
    ) -> torch.Tensor:
        loss, gradient = topk_softmax_loss(scores, labels, config)
        ctx.save_for_backward(gradient)
        return loss

    @staticmethod
    def backward(ctx: Any, grad_output: torch.Tensor) -> tuple[Any, ...]:  # type: ignore[override]
        if ctx.needs_input_grad[1]:
            raise LabelGradientError(
                "TopkSoftmaxLoss cannot backpropagate to label inputs."
            )
        grad_scores = None
        if ctx.needs_input_grad[0]:
            (grad_scores,) = ctx.saved_tensors
            if grad_output.item() != 1:
                grad_scores = grad_scores * grad_output
        return grad_scores, None, None


@register_loss(name="topk_softmax", config_model=TopkLossConfig)
class TopkSoftmaxLoss(nn.Module):
    """Top-k softmax loss as a drop-in classification criterion.

    Parameters
    ----------
    top_k:
        The ``top_k - 1`` largest negatives are exempt from the loss.
        ``top_k=1`` is plain softmax cross-entropy.
    num_threads:
        Worker threads the batch is partitioned across.
    """

    def __init__(self, top_k: int = 1, num_threads: int = 1) -> None:
        super().__init__()
        self.config = TopkLossConfig(top_k=top_k, num_threads=num_threads)

    @property
    def top_k(self) -> int:
        return self.config.top_k

    def forward(self, logits: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        """Compute the loss; gradients flow to ``logits`` only."""
        return _TopkSoftmaxFunction.apply(logits, targets, self.config)  # type: ignore[no-any-return]

    def extra_repr(self) -> str:
        return f"top_k={self.config.top_k}"
