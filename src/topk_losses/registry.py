"""Hydra ConfigStore registration for loss modules."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from hydra.core.config_store import ConfigStore
from loguru import logger
from pydantic import BaseModel

LOSS_GROUP = "loss"

T = TypeVar("T")


def register_loss(
    name: str, config_model: type[BaseModel]
) -> Callable[[type[T]], type[T]]:
    """Decorator storing a loss class in the ConfigStore ``loss`` group.

    The node's ``_target_`` points at the decorated class and its remaining
    keys are the defaults of ``config_model``, so a Hydra config can pick a
    loss with ``loss=<name>`` and override e.g. ``loss.top_k=5``.

    Arguments:
        name: Config name inside the ``loss`` group.
        config_model: Frozen pydantic model whose field defaults seed the node.
    """

    def _process_class(target_cls: type[T]) -> type[T]:
        target_path = f"{target_cls.__module__}.{target_cls.__name__}"
        node: dict[str, Any] = {"_target_": target_path}
        node.update(config_model().model_dump())

        logger.debug(
            f"Registering {target_cls.__name__} as '{name}' in group '{LOSS_GROUP}'"
        )
        ConfigStore.instance().store(group=LOSS_GROUP, name=name, node=node)
        return target_cls

    return _process_class
