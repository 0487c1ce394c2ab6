"""External state store boundary.

Stores hold JSON-object values at slash-separated key paths. Consumers take a
one-shot ``read`` and register change listeners with ``subscribe``. Listeners
are synchronous callables receiving the new value, or ``None`` when the path is
deleted. They fire only for changes made after registration, never with the
value current at subscribe time.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from grokel_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)

StoreValue = Mapping[str, Any] | None
ChangeCallback = Callable[[StoreValue], None]


@dataclass(eq=False)
class StoreSubscription:
    """Registration token returned by :meth:`StateStore.subscribe`; compared by identity."""

    path: str
    callback: ChangeCallback


class StateStore(ABC):
    """Key-path value store with change listeners.

    Subclasses supply :meth:`read` and feed changes through :meth:`_notify`;
    listener bookkeeping lives here.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[StoreSubscription]] = {}

    @abstractmethod
    async def read(self, path: str) -> StoreValue:
        """Return the current value at ``path`` or ``None`` if absent."""

    async def start(self) -> None:
        """Connect to the backing service, if any."""

    async def stop(self) -> None:
        """Disconnect from the backing service, if any."""

    async def subscribe(self, path: str, callback: ChangeCallback) -> StoreSubscription:
        subscription = StoreSubscription(path=path, callback=callback)
        self._listeners.setdefault(path, []).append(subscription)
        logger.debug(
            "Listener added",
            extra={"path": path, "listeners": len(self._listeners[path])},
        )
        return subscription

    async def unsubscribe(self, subscription: StoreSubscription) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(subscription.path)
        if not listeners:
            return False
        for index, registered in enumerate(listeners):
            if registered is subscription:
                del listeners[index]
                break
        else:
            return False
        if not listeners:
            del self._listeners[subscription.path]
        logger.debug("Listener removed", extra={"path": subscription.path, "listeners": len(listeners)})
        return True

    def listener_count(self, path: str | None = None) -> int:
        if path is not None:
            return len(self._listeners.get(path, ()))
        return sum(len(listeners) for listeners in self._listeners.values())

    def _notify(self, path: str, value: StoreValue) -> None:
        """Deliver a change to every listener on ``path`` in registration order."""
        for subscription in list(self._listeners.get(path, ())):
            snapshot = copy.deepcopy(value) if value is not None else None
            try:
                subscription.callback(snapshot)
            except Exception:
                logger.exception("Store listener raised", extra={"path": path})
