"""Process-local state store, used for tests and ``--store memory``."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.store.base import StateStore, StoreValue

logger = get_logger(__name__)


class InMemoryStateStore(StateStore):
    """Dict-backed store; writes notify listeners synchronously."""

    def __init__(self, initial: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        super().__init__()
        self._values: dict[str, dict[str, Any]] = {}
        for path, value in (initial or {}).items():
            self._values[path] = copy.deepcopy(dict(value))

    async def read(self, path: str) -> StoreValue:
        value = self._values.get(path)
        return copy.deepcopy(value) if value is not None else None

    def set(self, path: str, value: Mapping[str, Any]) -> None:
        """Store ``value`` at ``path``; listeners run only if the value changed."""
        new_value = copy.deepcopy(dict(value))
        if self._values.get(path) == new_value:
            return
        self._values[path] = new_value
        logger.debug("Value set", extra={"path": path})
        self._notify(path, new_value)

    def delete(self, path: str) -> None:
        if self._values.pop(path, None) is None:
            return
        logger.debug("Value deleted", extra={"path": path})
        self._notify(path, None)
