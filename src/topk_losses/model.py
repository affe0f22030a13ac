"""LightningModule training a linear classifier with a top-k loss."""

from __future__ import annotations

import lightning as L
import torch
from torchmetrics.classification import MulticlassAccuracy

from topk_losses.losses import build_loss_fn


class TopkClassificationModel(L.LightningModule):
    """Linear head over precomputed features, trained with a top-k loss.

    Batches are ``(features, labels)`` pairs with features of shape
    ``(B, in_features)``.  Validation reports top-1 accuracy and top-k
    accuracy for the loss's own ``top_k``, the metric a top-k loss
    optimizes for.
    """

    def __init__(
        self,
        in_features: int,
        num_classes: int,
        loss: str = "topk_softmax",
        top_k: int = 1,
        gamma: float = 1.0,
        learning_rate: float = 1e-3,
        weight_decay: float = 1e-4,
    ) -> None:
        super().__init__()
        self.save_hyperparameters()
        self.model = torch.nn.Linear(in_features, num_classes)
        self.loss_fn = build_loss_fn(loss, top_k=top_k, gamma=gamma)

        self.train_top1 = MulticlassAccuracy(
            num_classes=num_classes, top_k=1, average="micro"
        )
        self.val_top1 = MulticlassAccuracy(
            num_classes=num_classes, top_k=1, average="micro"
        )
        self.val_topk = MulticlassAccuracy(
            num_classes=num_classes, top_k=min(top_k, num_classes), average="micro"
        )

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        return self.model(features)  # type: ignore[no-any-return]

    def training_step(
        self, batch: tuple[torch.Tensor, torch.Tensor], batch_idx: int
    ) -> torch.Tensor:
        features, labels = batch
        logits = self(features)
        loss: torch.Tensor = self.loss_fn(logits, labels)
        self.log("train/loss", loss, on_step=True, on_epoch=True, prog_bar=True)
        self.train_top1.update(logits, labels)
        return loss

    def on_train_epoch_end(self) -> None:
        self.log("train/acc_top1", self.train_top1.compute())
        self.train_top1.reset()

    def validation_step(
        self, batch: tuple[torch.Tensor, torch.Tensor], batch_idx: int
    ) -> None:
        features, labels = batch
        logits = self(features)
        loss = self.loss_fn(logits, labels)
        self.log("val/loss", loss, on_step=False, on_epoch=True, prog_bar=True)
        self.val_top1.update(logits, labels)
        self.val_topk.update(logits, labels)

    def on_validation_epoch_end(self) -> None:
        self.log("val/acc_top1", self.val_top1.compute(), prog_bar=True)
        self.log("val/acc_topk", self.val_topk.compute())
        self.val_top1.reset()
        self.val_topk.reset()

    def configure_optimizers(self) -> torch.optim.Optimizer:
        return torch.optim.AdamW(
            self.parameters(),
            lr=self.hparams["learning_rate"],
            weight_decay=self.hparams["weight_decay"],
        )
