"""Top-k hinge and top-k softmax losses for multiclass classification."""

from topk_losses.config import TopkHingeConfig, TopkLossConfig
from topk_losses.errors import InvalidConfigurationError, LabelGradientError
from topk_losses.hinge import TopkHingeLoss, topk_hinge_loss
from topk_losses.losses import build_loss_fn
from topk_losses.projection import (
    BisectionProjection,
    KnapsackProjection,
    ProjectionOracle,
)
from topk_losses.softmax import TopkSoftmaxLoss, topk_softmax_loss
from topk_losses.types import LossAndGradient, ScoreBatch

__version__ = "0.1.0"

__all__ = [
    "BisectionProjection",
    "InvalidConfigurationError",
    "KnapsackProjection",
    "LabelGradientError",
    "LossAndGradient",
    "ProjectionOracle",
    "ScoreBatch",
    "TopkHingeConfig",
    "TopkHingeLoss",
    "TopkLossConfig",
    "TopkSoftmaxLoss",
    "build_loss_fn",
    "topk_hinge_loss",
    "topk_softmax_loss",
]
