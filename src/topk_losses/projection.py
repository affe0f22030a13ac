"""Euclidean projection onto a box with a budget on the sum.

The feasible set is ``{z : lo <= z_j <= hi, sum_j z_j = rhs}`` (or
``sum_j z_j <= rhs`` for the inequality form).  The projection of ``v`` is
``clip(v - t, lo, hi)`` for a scalar threshold ``t``, so an oracle only has
to find ``t``; every other quantity follows from the clip.

All methods work on a batch of vectors ``v`` of shape ``(N, m)`` and return
one threshold per row.
"""

from __future__ import annotations

from typing import Protocol

import torch

from topk_losses.errors import InvalidConfigurationError


class ProjectionOracle(Protocol):
    """Contract the top-k hinge loss relies on."""

    def thresholds(
        self, v: torch.Tensor, lo: float, hi: float, rhs: float
    ) -> torch.Tensor: ...

    def dot_prox(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor: ...

    def dot_prox_prox(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor: ...

    def prox_(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor: ...


def check_bounds(size: int, lo: float, hi: float, rhs: float) -> None:
    """Raise if no vector of length ``size`` fits the box and the budget."""
    if not lo < hi:
        raise InvalidConfigurationError(f"lo must be below hi (lo={lo}, hi={hi})")
    # Round-off slack: e.g. 49 * (1 / 49) < 1 in floating point.
    tol = 1e-9 * max(1.0, abs(rhs))
    if not size * lo - tol <= rhs <= size * hi + tol:
        raise InvalidConfigurationError(
            f"rhs={rhs} is not reachable with {size} entries in [{lo}, {hi}]"
        )


class _ClipProjection:
    """Shared clip arithmetic; subclasses find the equality threshold."""

    def __init__(self, inequality: bool = True) -> None:
        self.inequality = inequality

    def thresholds(
        self, v: torch.Tensor, lo: float, hi: float, rhs: float
    ) -> torch.Tensor:
        """Threshold ``t`` per row such that ``clip(v - t, lo, hi)`` is the projection."""
        check_bounds(v.shape[1], lo, hi, rhs)
        t = self._equality_thresholds(v, lo, hi, rhs)
        if self.inequality:
            # Budget inactive: the plain clip is already feasible.
            slack = v.clamp(lo, hi).sum(dim=1) <= rhs
            t = torch.where(slack, torch.zeros_like(t), t)
        return t

    def _equality_thresholds(
        self, v: torch.Tensor, lo: float, hi: float, rhs: float
    ) -> torch.Tensor:
        raise NotImplementedError

    def dot_prox(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor:
        """Inner product of the projection with ``v``."""
        return (self._clip(t, v, lo, hi) * v).sum(dim=1)

    def dot_prox_prox(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor:
        """Squared norm of the projection."""
        return self._clip(t, v, lo, hi).square().sum(dim=1)

    def prox_(
        self, t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor:
        """Overwrite ``v`` with its projection and return it."""
        return v.sub_(t.unsqueeze(1)).clamp_(lo, hi)

    @staticmethod
    def _clip(
        t: torch.Tensor, v: torch.Tensor, lo: float, hi: float
    ) -> torch.Tensor:
        return (v - t.unsqueeze(1)).clamp(lo, hi)


class KnapsackProjection(_ClipProjection):
    """Exact threshold search over the sorted breakpoints of the clip.

    ``f(t) = sum_j clip(v_j - t, lo, hi)`` is piecewise linear and
    non-increasing in ``t``.  Entry ``j`` leaves the upper bound at
    ``v_j - hi`` and reaches the lower bound at ``v_j - lo``; between two
    consecutive breakpoints the slope is minus the number of entries strictly
    inside the box.  Sorting the ``2m`` breakpoints gives ``f`` at every one of
    them via a cumulative sum, and ``t`` is recovered by linear interpolation
    on the segment where ``f`` crosses ``rhs``.
    """

    def _equality_thresholds(
        self, v: torch.Tensor, lo: float, hi: float, rhs: float
    ) -> torch.Tensor:
        num_rows, size = v.shape
        events = torch.cat([v - hi, v - lo], dim=1)
        steps = torch.cat(
            [
                torch.ones(num_rows, size, dtype=v.dtype, device=v.device),
                -torch.ones(num_rows, size, dtype=v.dtype, device=v.device),
            ],
            dim=1,
        )
        events, perm = events.sort(dim=1)
        interior = steps.gather(1, perm).cumsum(dim=1)

        # f at each breakpoint, starting from every entry at hi.
        drops = (interior[:, :-1] * events.diff(dim=1)).cumsum(dim=1)
        f = size * hi - torch.cat([drops.new_zeros(num_rows, 1), drops], dim=1)

        above = (f > rhs).sum(dim=1, keepdim=True)
        left = above.clamp(min=1, max=2 * size - 1) - 1
        slope = interior.gather(1, left).clamp(min=1)
        t = events.gather(1, left) + (f.gather(1, left) - rhs) / slope
        # f never exceeds rhs (size * hi == rhs): every t up to the first
        # breakpoint is a solution.
        t = torch.where(above == 0, events[:, :1], t)
        return t.squeeze(1)


class BisectionProjection(_ClipProjection):
    """Reference oracle: bisection on ``t`` until the bracket collapses.

    Slow but independent of the breakpoint bookkeeping in
    :class:`KnapsackProjection`; used to cross-check it.
    """

    def __init__(self, inequality: bool = True, iterations: int = 200) -> None:
        super().__init__(inequality=inequality)
        self.iterations = iterations

    def _equality_thresholds(
        self, v: torch.Tensor, lo: float, hi: float, rhs: float
    ) -> torch.Tensor:
        # f(left) = m * hi >= rhs and f(right) = m * lo <= rhs.
        left = v.min(dim=1).values - hi
        right = v.max(dim=1).values - lo
        for _ in range(self.iterations):
            mid = 0.5 * (left + right)
            total = self._clip(mid, v, lo, hi).sum(dim=1)
            left = torch.where(total > rhs, mid, left)
            right = torch.where(total > rhs, right, mid)
        return 0.5 * (left + right)
