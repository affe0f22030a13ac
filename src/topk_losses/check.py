"""Gradient check entrypoint for the top-k losses.

Usage:
    topk-losses-check                                   # defaults
    topk-losses-check loss=topk_hinge                   # other loss
    topk-losses-check loss.top_k=3 eps=1e-3 atol=4e-3   # top-3, small step
    topk-losses-check num_classes=100 loss.num_threads=4
"""

import sys
from typing import NamedTuple

import hydra
import lightning as L
import torch
import torch.nn as nn
from loguru import logger
from omegaconf import DictConfig, OmegaConf
from rich.console import Console
from rich.table import Table

# CRITICAL: import losses to trigger @register_loss BEFORE Hydra parses config
import topk_losses.losses  # noqa: F401
from topk_losses.types import ScoreBatch


class CheckResult(NamedTuple):
    loss_name: str
    top_k: int
    loss: float
    max_gradient_sum: float
    passed: bool


def make_score_batch(
    num_examples: int, num_classes: int, score_std: float
) -> ScoreBatch:
    """Gaussian double-precision scores with uniform random labels."""
    scores = torch.randn(num_examples, num_classes, dtype=torch.float64) * score_std
    labels = torch.randint(0, num_classes, (num_examples,))
    return {"scores": scores, "labels": labels}


def run_check(cfg: DictConfig) -> CheckResult:
    """Compare analytic and central-difference gradients for ``cfg.loss``."""
    L.seed_everything(cfg.get("seed", 1701))
    loss_fn: nn.Module = hydra.utils.instantiate(cfg.loss)
    batch = make_score_batch(cfg.num_examples, cfg.num_classes, cfg.score_std)
    labels = batch["labels"]
    scores = batch["scores"].requires_grad_()

    loss = loss_fn(scores, labels)
    loss.backward()
    assert scores.grad is not None
    # Translation invariance: every gradient row sums to zero.
    max_gradient_sum = float(scores.grad.sum(dim=1).abs().max())

    passed = torch.autograd.gradcheck(
        lambda s: loss_fn(s, labels),
        (scores,),
        eps=cfg.eps,
        atol=cfg.atol,
        rtol=cfg.rtol,
        raise_exception=False,
    )
    return CheckResult(
        loss_name=type(loss_fn).__name__,
        top_k=int(cfg.loss.top_k),
        loss=float(loss),
        max_gradient_sum=max_gradient_sum,
        passed=bool(passed),
    )


def print_result(result: CheckResult, console: Console | None = None) -> None:
    table = Table(title="Gradient check")
    for column in ("loss", "top_k", "value", "max |row sum|", "status"):
        table.add_column(column)
    table.add_row(
        result.loss_name,
        str(result.top_k),
        f"{result.loss:.6g}",
        f"{result.max_gradient_sum:.2e}",
        "[green]passed[/green]" if result.passed else "[red]FAILED[/red]",
    )
    (console or Console()).print(table)


@hydra.main(version_base=None, config_path="conf", config_name="check")
def main(cfg: DictConfig) -> None:
    """Run the gradient check with the given Hydra config."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    result = run_check(cfg)
    print_result(result)
    if not result.passed:
        logger.error(
            f"{result.loss_name} (top_k={result.top_k}) failed the gradient check "
            f"at eps={cfg.eps}"
        )
        sys.exit(1)
    logger.info(f"{result.loss_name} (top_k={result.top_k}) passed")


if __name__ == "__main__":
    main()
