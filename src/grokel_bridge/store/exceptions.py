"""Exception types for state store subscriptions."""

from __future__ import annotations

from grokel_bridge.protocol.exceptions import GrokelError


class SubscriptionDetachError(GrokelError):
    """The store did not confirm removal of a change listener.

    Teardown logs this and carries on; a leaked listener only ever reaches a
    closed session, which drops whatever it is handed.

    Attributes:
        path: Store path the listener was registered on
        reason: Specific failure reason (e.g., "timeout", "not_registered")
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path: str = path
        self.reason: str = reason
        super().__init__(f"Subscription detach failed for {path!r}: {reason}")
