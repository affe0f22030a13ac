"""Smoke test: verify the topk_losses package is importable."""

import topk_losses


def test_package_version() -> None:
    """Package must declare a __version__ string."""
    assert isinstance(topk_losses.__version__, str)
    assert topk_losses.__version__ == "0.1.0"


def test_public_losses_exported() -> None:
    assert topk_losses.TopkSoftmaxLoss is not None
    assert topk_losses.TopkHingeLoss is not None
    assert callable(topk_losses.topk_softmax_loss)
    assert callable(topk_losses.topk_hinge_loss)
