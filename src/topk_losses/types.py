"""Type aliases and containers for topk_losses inter-module contracts."""

from typing import NamedTuple, TypedDict

import torch


class ScoreBatch(TypedDict):
    """A batch of per-class scores with their ground-truth labels.

    scores: Float tensor of shape (N, C), one row of class scores per example.
    labels: Tensor of shape (N,), integer class indices in [0, C).
    """

    scores: torch.Tensor
    labels: torch.Tensor


class LossAndGradient(NamedTuple):
    """Batch-averaged loss and its gradient with respect to the scores.

    loss: 0-dim tensor.
    gradient: Tensor of shape (N, C), same dtype as the scores.
    """

    loss: torch.Tensor
    gradient: torch.Tensor
