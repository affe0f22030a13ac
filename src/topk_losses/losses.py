"""Loss factory for classification training with top-k losses."""

from __future__ import annotations

import torch.nn as nn

from topk_losses.hinge import TopkHingeLoss
from topk_losses.softmax import TopkSoftmaxLoss

LOSS_NAMES = ("topk_softmax", "topk_hinge", "cross_entropy")


def build_loss_fn(
    name: str,
    top_k: int = 1,
    gamma: float = 1.0,
    num_threads: int = 1,
) -> nn.Module:
    """Factory for loss functions.

    Parameters
    ----------
    name:
        Loss function name: ``"topk_softmax"``, ``"topk_hinge"`` or
        ``"cross_entropy"``.
    top_k:
        Number of top-scoring negatives the top-k losses focus on
        (ignored for cross_entropy).
    gamma:
        Smoothing constant for the hinge loss (ignored otherwise).
    num_threads:
        Worker threads for the top-k losses.

    Returns
    -------
    nn.Module
        The configured loss function, called as ``loss_fn(logits, targets)``.
    """
    if name == "topk_softmax":
        return TopkSoftmaxLoss(top_k=top_k, num_threads=num_threads)
    if name == "topk_hinge":
        return TopkHingeLoss(top_k=top_k, gamma=gamma, num_threads=num_threads)
    if name == "cross_entropy":
        return nn.CrossEntropyLoss()
    msg = f"Unknown loss function: {name!r}. Use one of {', '.join(LOSS_NAMES)}."
    raise ValueError(msg)
