"""External state store backends."""

from grokel_bridge.store.base import ChangeCallback, StateStore, StoreSubscription, StoreValue
from grokel_bridge.store.exceptions import SubscriptionDetachError
from grokel_bridge.store.memory import InMemoryStateStore
from grokel_bridge.store.mqtt import MQTTStateStore

__all__ = [
    "ChangeCallback",
    "InMemoryStateStore",
    "MQTTStateStore",
    "StateStore",
    "StoreSubscription",
    "StoreValue",
    "SubscriptionDetachError",
]
