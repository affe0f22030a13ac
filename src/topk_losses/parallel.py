"""Partition a batch across worker threads by example index."""

from __future__ import annotations

import concurrent.futures
from collections.abc import Callable

import torch
from loguru import logger

# (scores, labels) of one partition -> (float64 loss sum, gradient rows)
PartitionFn = Callable[[torch.Tensor, torch.Tensor], tuple[torch.Tensor, torch.Tensor]]


def run_partitioned(
    fn: PartitionFn,
    scores: torch.Tensor,
    labels: torch.Tensor,
    num_threads: int = 1,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Apply ``fn`` to contiguous example ranges and combine the results.

    Examples never read or write each other's rows, so each partition runs
    on its own thread with its own scratch.  Partial loss sums are added in
    partition order, which keeps the reduction reproducible for a given
    ``num_threads``.

    Returns:
        ``(loss_sum, gradient)`` for the whole batch.
    """
    num_parts = min(num_threads, scores.shape[0])
    if num_parts <= 1:
        return fn(scores, labels)

    score_parts = torch.tensor_split(scores, num_parts)
    label_parts = torch.tensor_split(labels, num_parts)
    logger.debug(
        f"Partitioning {scores.shape[0]} examples across {num_parts} threads"
    )
    with concurrent.futures.ThreadPoolExecutor(max_workers=num_parts) as executor:
        results = list(executor.map(fn, score_parts, label_parts))

    loss_sum = results[0][0]
    for partial, _ in results[1:]:
        loss_sum = loss_sum + partial
    gradient = torch.cat([part for _, part in results], dim=0)
    return loss_sum, gradient
