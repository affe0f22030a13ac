"""Shared pytest fixtures for topk_losses tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest
import torch

BatchFactory = Callable[..., tuple[torch.Tensor, torch.Tensor]]


def _separated_scores(
    num_examples: int,
    num_classes: int,
    std: float,
    min_gap: float,
    generator: torch.Generator,
) -> torch.Tensor:
    """Gaussian double scores whose classes are more than ``min_gap`` apart.

    Finite differences with a step well below ``min_gap`` never swap two
    classes across the top-k boundary, so the local gradient stays valid.
    """
    rows: list[torch.Tensor] = []
    while len(rows) < num_examples:
        row = torch.randn(num_classes, generator=generator, dtype=torch.float64) * std
        if row.sort().values.diff().min() > min_gap:
            rows.append(row)
    return torch.stack(rows)


@pytest.fixture()
def make_batch() -> BatchFactory:
    """Factory: ``make_batch(num_examples, num_classes, seed=, std=, min_gap=)``.

    Returns ``(scores, labels)`` with float64 scores and uniform labels.
    """

    def _make(
        num_examples: int,
        num_classes: int,
        seed: int = 1701,
        std: float = 10.0,
        min_gap: float = 0.0,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        generator = torch.Generator().manual_seed(seed)
        scores = _separated_scores(num_examples, num_classes, std, min_gap, generator)
        labels = torch.randint(0, num_classes, (num_examples,), generator=generator)
        return scores, labels

    return _make


@pytest.fixture()
def score_batch(make_batch: BatchFactory) -> tuple[torch.Tensor, torch.Tensor]:
    """N=10 examples over C=5 classes, std 10, classes at least 0.1 apart."""
    return make_batch(10, 5, min_gap=0.1)
