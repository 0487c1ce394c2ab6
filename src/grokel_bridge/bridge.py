"""State subscription bridge.

Attaches one store listener per configured path to each device session and
turns store values into outbound color messages. Each path has a fixed value
shape; paths are never merged, whichever one changed is forwarded.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grokel_bridge.const import (
    DESIRED_STATE_SUBSCRIPTION,
    GROKEL_DESIRED_STATE_PATH,
    GROKEL_PREVIEW_PATH,
    PREVIEW_SUBSCRIPTION,
)
from grokel_bridge.correlation import correlation_context
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.metrics import record_store_event
from grokel_bridge.protocol import ColorValue, HSVColor, InvalidArgumentError, RGBColor
from grokel_bridge.sessions.session import DeviceSession, SubscriptionHandle
from grokel_bridge.store.base import StateStore, StoreValue

logger = get_logger(__name__)


class RGBValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)


class HSVValue(BaseModel):
    """HSV already in frame units (hue degrees, saturation/value 0-255)."""

    model_config = ConfigDict(extra="ignore")

    h: int = Field(ge=0, le=360)
    s: int = Field(ge=0, le=255)
    v: int = Field(ge=0, le=255)


def parse_color(raw: object) -> ColorValue | None:
    """Read an ``{r,g,b}`` or ``{h,s,v}`` mapping; None when incomplete or out of range."""
    if not isinstance(raw, Mapping):
        return None
    try:
        if all(key in raw for key in ("r", "g", "b")):
            rgb = RGBValue.model_validate(raw)
            return RGBColor(rgb.r, rgb.g, rgb.b)
        if all(key in raw for key in ("h", "s", "v")):
            hsv = HSVValue.model_validate(raw)
            return HSVColor(hsv.h, hsv.s, hsv.v)
    except ValidationError:
        return None
    return None


def nested_color(value: Mapping[str, Any]) -> ColorValue | None:
    """Desired-state shape: ``{"color": {...}, ...}``."""
    return parse_color(value.get("color"))


def direct_color(value: Mapping[str, Any]) -> ColorValue | None:
    """Preview shape: the color fields sit at the top level."""
    return parse_color(value)


@dataclass(frozen=True)
class PathSpec:
    """One watched store path per device.

    Attributes:
        name: Subscription name, used in logs and metrics
        template: Store path with a ``{device_id}`` placeholder
        extract: Pulls a color out of a value at this path
        restore_on_attach: Read the current value on connect and send it immediately
    """

    name: str
    template: str
    extract: Callable[[Mapping[str, Any]], ColorValue | None]
    restore_on_attach: bool = False

    def path_for(self, device_id: str) -> str:
        return self.template.format(device_id=device_id)


def default_path_specs(
    desired_state_template: str = GROKEL_DESIRED_STATE_PATH,
    preview_template: str = GROKEL_PREVIEW_PATH,
) -> tuple[PathSpec, ...]:
    return (
        PathSpec(DESIRED_STATE_SUBSCRIPTION, desired_state_template, nested_color, restore_on_attach=True),
        PathSpec(PREVIEW_SUBSCRIPTION, preview_template, direct_color),
    )


class SubscriptionBridge:
    """Connects device sessions to the external state store."""

    def __init__(self, store: StateStore, specs: Sequence[PathSpec] | None = None) -> None:
        self.store = store
        self.specs: tuple[PathSpec, ...] = tuple(specs) if specs is not None else default_path_specs()

    async def attach(self, session: DeviceSession) -> None:
        """Subscribe every path for ``session``, then push the restore value(s).

        Listeners are registered before the one-shot read so a change landing
        in between is not lost.
        """
        for spec in self.specs:
            path = spec.path_for(session.device_id)
            callback = functools.partial(self._on_change, session, spec, path)
            subscription = await self.store.subscribe(path, callback)
            session.handles[spec.name] = SubscriptionHandle(spec.name, path, self.store, subscription)

        for spec in self.specs:
            if not spec.restore_on_attach:
                continue
            path = session.handles[spec.name].path
            value = await self.store.read(path)
            if value is None:
                logger.debug("No stored state to restore", extra={"device_id": session.device_id, "path": path})
                continue
            self._forward(session, spec, path, value, restore=True)

    async def detach(self, session: DeviceSession, timeout: float) -> bool:
        """Detach all of ``session``'s handles concurrently; each is bounded by ``timeout``.

        Returns False if any detach was abandoned.
        """
        handles = list(session.handles.values())
        if not handles:
            return True
        results = await asyncio.gather(*(handle.detach(timeout) for handle in handles))
        return all(results)

    def _on_change(self, session: DeviceSession, spec: PathSpec, path: str, value: StoreValue) -> None:
        with correlation_context(session.correlation_id, auto_generate=False):
            self._forward(session, spec, path, value)

    def _forward(
        self,
        session: DeviceSession,
        spec: PathSpec,
        path: str,
        value: StoreValue,
        restore: bool = False,
    ) -> None:
        if not session.accepting:
            record_store_event(spec.name, "dropped")
            return
        if value is None:
            record_store_event(spec.name, "absent")
            return

        color = spec.extract(value)
        if color is None:
            logger.debug(
                "Ignoring value without a usable color",
                extra={"device_id": session.device_id, "path": path},
            )
            record_store_event(spec.name, "ignored")
            return

        try:
            delivered = session.send_color(color)
        except InvalidArgumentError as e:
            logger.warning(
                "Cannot encode color: %s",
                e,
                extra={"device_id": session.device_id, "path": path, "reason": e.reason},
            )
            record_store_event(spec.name, "invalid")
            return

        record_store_event(spec.name, "forwarded" if delivered else "dropped")
        if delivered:
            logger.info(
                "Restoring stored color" if restore else "Forwarding color update",
                extra={"device_id": session.device_id, "subscription": spec.name, "color": color},
            )
