"""Pydantic frozen configuration models for the top-k losses."""

from __future__ import annotations

import torch
from loguru import logger
from pydantic import BaseModel, Field

from topk_losses.errors import InvalidConfigurationError


class TopkLossConfig(BaseModel, frozen=True):
    """Configuration shared by both top-k losses.

    ``top_k >= 1`` is validated at construction time.  The upper bound
    ``top_k < num_classes`` depends on the batch and is checked by
    :meth:`bind` before any per-example work.  Frozen: no mutation after
    creation.
    """

    top_k: int = Field(default=1, ge=1)
    num_threads: int = Field(default=1, ge=1)

    def bind(self, scores: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        """Validate a batch against this configuration.

        Returns the labels as a ``long`` tensor of shape ``(N,)``.

        Raises:
            InvalidConfigurationError: ``scores`` is not ``(N, C)``, the
                batch is empty, ``top_k >= C``, the label count differs from ``N`` or a
                label lies outside ``[0, C)``.
        """
        if scores.ndim != 2:
            raise InvalidConfigurationError(
                f"scores must have shape (N, C), got {tuple(scores.shape)}"
            )
        num_examples, num_classes = scores.shape
        if num_examples == 0:
            raise InvalidConfigurationError("cannot bind an empty batch")
        if self.top_k >= num_classes:
            raise InvalidConfigurationError(
                f"top_k must be less than num_classes "
                f"(top_k={self.top_k}, num_classes={num_classes})"
            )
        if labels.numel() != num_examples:
            raise InvalidConfigurationError(
                "Number of labels must match the number of examples in a "
                f"minibatch ({labels.numel()} != {num_examples})"
            )
        targets = labels.detach().reshape(-1).long()
        if int(targets.min()) < 0 or int(targets.max()) >= num_classes:
            raise InvalidConfigurationError(
                f"labels must lie in [0, {num_classes})"
            )
        logger.debug(
            f"Bound top-k loss (top_k={self.top_k}) to batch "
            f"N={num_examples}, C={num_classes}"
        )
        return targets


class TopkHingeConfig(TopkLossConfig, frozen=True):
    """Configuration for the smoothed top-k hinge loss.

    ``gamma`` is the smoothing constant.  It fixes the box-and-sum
    projection bounds: every negative contributes at most ``gamma / top_k``
    and all of them together at most ``gamma``.
    """

    gamma: float = Field(default=1.0, gt=0.0)

    @property
    def lo(self) -> float:
        return 0.0

    @property
    def hi(self) -> float:
        return self.gamma / self.top_k

    @property
    def rhs(self) -> float:
        return self.gamma
