"""Tests for the Lightning classification model trained with top-k losses."""

from __future__ import annotations

import lightning as L
import pytest
import torch
from torch.utils.data import DataLoader, TensorDataset

from topk_losses.hinge import TopkHingeLoss
from topk_losses.model import TopkClassificationModel
from topk_losses.softmax import TopkSoftmaxLoss

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def feature_batch() -> tuple[torch.Tensor, torch.Tensor]:
    """B=8 feature vectors of size 16 over 5 classes."""
    generator = torch.Generator().manual_seed(0)
    return (
        torch.randn(8, 16, generator=generator),
        torch.randint(0, 5, (8,), generator=generator),
    )


@pytest.fixture()
def loader(feature_batch: tuple[torch.Tensor, torch.Tensor]) -> DataLoader:
    features, labels = feature_batch
    return DataLoader(TensorDataset(features, labels), batch_size=4)


def _trainer() -> L.Trainer:
    return L.Trainer(
        fast_dev_run=True,
        accelerator="cpu",
        logger=False,
        enable_checkpointing=False,
        enable_progress_bar=False,
        enable_model_summary=False,
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_default_loss_is_topk_softmax(self) -> None:
        model = TopkClassificationModel(in_features=16, num_classes=5)
        assert isinstance(model.loss_fn, TopkSoftmaxLoss)

    def test_hinge_loss_selected(self) -> None:
        model = TopkClassificationModel(
            in_features=16, num_classes=5, loss="topk_hinge", top_k=2
        )
        assert isinstance(model.loss_fn, TopkHingeLoss)
        assert model.loss_fn.top_k == 2

    def test_topk_metric_follows_loss(self) -> None:
        model = TopkClassificationModel(in_features=16, num_classes=5, top_k=3)
        assert model.val_topk.top_k == 3
        assert model.val_top1.top_k == 1

    def test_hparams_saved(self) -> None:
        model = TopkClassificationModel(in_features=16, num_classes=5, top_k=2)
        assert model.hparams["num_classes"] == 5
        assert model.hparams["top_k"] == 2
        assert model.hparams["loss"] == "topk_softmax"

    def test_unknown_loss_raises(self) -> None:
        with pytest.raises(ValueError):
            TopkClassificationModel(in_features=16, num_classes=5, loss="hinge")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class TestSteps:
    def test_forward_shape(
        self, feature_batch: tuple[torch.Tensor, torch.Tensor]
    ) -> None:
        model = TopkClassificationModel(in_features=16, num_classes=5)
        assert model(feature_batch[0]).shape == (8, 5)

    @pytest.mark.parametrize("loss", ["topk_softmax", "topk_hinge"])
    def test_loss_backpropagates_to_weights(
        self, feature_batch: tuple[torch.Tensor, torch.Tensor], loss: str
    ) -> None:
        model = TopkClassificationModel(
            in_features=16, num_classes=5, loss=loss, top_k=2
        )
        features, labels = feature_batch
        value = model.loss_fn(model(features), labels)
        assert value.ndim == 0
        assert torch.isfinite(value)
        value.backward()
        assert model.model.weight.grad is not None
        assert torch.isfinite(model.model.weight.grad).all()

    def test_configure_optimizers_uses_adamw(self) -> None:
        model = TopkClassificationModel(
            in_features=16, num_classes=5, learning_rate=1e-2
        )
        optimizer = model.configure_optimizers()
        assert isinstance(optimizer, torch.optim.AdamW)
        assert optimizer.param_groups[0]["lr"] == pytest.approx(1e-2)

    @pytest.mark.parametrize("loss", ["topk_softmax", "topk_hinge"])
    def test_fast_dev_run(self, loader: DataLoader, loss: str) -> None:
        model = TopkClassificationModel(
            in_features=16, num_classes=5, loss=loss, top_k=2
        )
        before = model.model.weight.detach().clone()
        _trainer().fit(model, train_dataloaders=loader, val_dataloaders=loader)
        assert not torch.equal(before, model.model.weight.detach())
