"""Per-batch scratch arena that relocates ground-truth scores to slot 0.

Both losses look at an example as "the ground-truth class" versus "the
other C - 1 classes".  :class:`Workspace` keeps, for every example, a slot
order over the classes (``order``) and the scores gathered in that order
(``values``).  Slot 0 always holds the ground truth.  After
:meth:`Workspace.select_top_k` the negatives are partially reordered so the
``top_k`` largest ones come first, the ``top_k``-th largest sits exactly at
slot ``top_k`` and the rest form the tail::

    slot:  0              1 .. k-1     k           k+1 .. C-1
    role:  ground_truth   top_block    boundary    tail

Values computed per slot are mapped back to class order with
:meth:`Workspace.scatter`, the exact inverse of the gather.
"""

from __future__ import annotations

from dataclasses import dataclass

import torch


@dataclass
class Workspace:
    order: torch.Tensor
    values: torch.Tensor
    top_k: int | None = None

    @classmethod
    def ground_truth_first(
        cls, scores: torch.Tensor, labels: torch.Tensor
    ) -> Workspace:
        """Swap each example's ground-truth class with class 0."""
        num_examples, num_classes = scores.shape
        order = (
            torch.arange(num_classes, device=scores.device)
            .expand(num_examples, num_classes)
            .clone()
        )
        rows = torch.arange(num_examples, device=scores.device)
        order[rows, labels] = 0
        order[:, 0] = labels
        return cls(order=order, values=scores.gather(1, order))

    def select_top_k(self, top_k: int) -> Workspace:
        """Partially reorder the negatives around the ``top_k``-th largest.

        Only the ``top_k`` largest negatives are ranked; the tail keeps its
        original relative order.
        """
        num_examples, num_classes = self.values.shape
        negatives = self.values[:, 1:]
        top = torch.topk(negatives, top_k, dim=1, largest=True, sorted=True)
        in_tail = torch.ones_like(negatives, dtype=torch.bool)
        in_tail.scatter_(1, top.indices, False)
        # Every row keeps exactly C - 1 - top_k tail entries.
        tail = in_tail.nonzero()[:, 1].view(num_examples, num_classes - 1 - top_k)
        ranked = torch.cat([top.indices, tail], dim=1)
        order = torch.cat(
            [self.order[:, :1], self.order[:, 1:].gather(1, ranked)], dim=1
        )
        values = torch.cat(
            [self.values[:, :1], negatives.gather(1, ranked)], dim=1
        )
        return Workspace(order=order, values=values, top_k=top_k)

    def scatter(self, slot_values: torch.Tensor) -> torch.Tensor:
        """Map ``(N, C)`` values from slot order back to class order."""
        return torch.empty_like(slot_values).scatter_(1, self.order, slot_values)

    # ------------------------------------------------------------------
    # Named roles
    # ------------------------------------------------------------------
    @property
    def ground_truth(self) -> torch.Tensor:
        return self.values[:, 0]

    @property
    def negatives(self) -> torch.Tensor:
        return self.values[:, 1:]

    @property
    def top_block(self) -> torch.Tensor:
        return self.values[:, 1 : self._selected_k()]

    @property
    def boundary(self) -> torch.Tensor:
        return self.values[:, self._selected_k()]

    @property
    def tail(self) -> torch.Tensor:
        return self.values[:, self._selected_k() + 1 :]

    def _selected_k(self) -> int:
        if self.top_k is None:
            raise RuntimeError("select_top_k() must be called before using top-k roles")
        return self.top_k
