"""Event correlation and dispatch.

Frames arrive from the event stream as JSON objects discriminated by
``type``. For each frame the dispatcher:

1. finds the fields that hold entity snapshots (from the event's model in
   the API description, or conventional field names when the model is
   unknown),
2. resolves each snapshot to its single ResourceProxy and applies it,
3. delivers the Event to, in this order:
   - global listeners registered for the frame's type
   - global wildcard (``"*"``) listeners
   - for each resolved proxy (field order, each proxy once), its instance
     listeners for the type or the wildcard

Within a tier listeners run in registration order. Each listener list is
copied before iteration, so listeners may subscribe and unsubscribe freely
during a dispatch; a listener present when the tier started is still
called. once-listeners are removed before they are invoked and never fire
twice.

Client-side notifications (connection state, pongs, decode errors) go
through the same tables with no resource correlation.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import FrameDecodeError
from .resources import WILDCARD, Listener, ResourceProxy, ResourceRegistry
from .swagger.schema import ModelSpec, split_type

logger = logging.getLogger(__name__)

# Client-side notification types
FRAME_DECODE_ERROR = "FrameDecodeError"
WEBSOCKET_CONNECTED = "WebSocketConnected"
WEBSOCKET_RECONNECTING = "WebSocketReconnecting"
WEBSOCKET_MAX_RETRIES = "WebSocketMaxRetries"
WEBSOCKET_PONG = "WebSocketPong"

# Used for event types the loaded description has no model for.
CONVENTIONAL_FIELDS: dict[str, str] = {
    "channel": "Channel",
    "bridge": "Bridge",
    "playback": "Playback",
    "recording": "LiveRecording",
    "endpoint": "Endpoint",
    "device_state": "DeviceState",
    "mailbox": "Mailbox",
}

EventCallback = Callable[..., Any]


@dataclass
class Event:
    """One decoded frame (or client-side notification).

    ``data`` is the frame as received; ``resources`` maps each field that
    referenced an entity to its proxy (or list of proxies).
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, ResourceProxy | list[ResourceProxy]] = field(default_factory=dict)

    @property
    def application(self) -> str | None:
        return self.data.get("application")

    @property
    def timestamp(self) -> str | None:
        return self.data.get("timestamp")

    @property
    def proxies(self) -> list[ResourceProxy]:
        """Distinct resolved proxies, in field order."""
        seen: list[ResourceProxy] = []
        for value in self.resources.values():
            for proxy in value if isinstance(value, list) else [value]:
                if not any(p is proxy for p in seen):
                    seen.append(proxy)
        return seen

    def __getitem__(self, name: str) -> Any:
        if name in self.resources:
            return self.resources[name]
        return self.data[name]

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """Parse one frame.

    Raises:
        FrameDecodeError: If it is not a JSON object with a string ``type``
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise FrameDecodeError(f"invalid JSON: {e}", raw) from e
    if not isinstance(data, dict):
        raise FrameDecodeError("frame is not a JSON object", raw)
    if not isinstance(data.get("type"), str) or not data["type"]:
        raise FrameDecodeError("frame has no 'type'", raw)
    return data


class EventDispatcher:
    """Per-type subscription table plus resource correlation."""

    def __init__(self, registry: ResourceRegistry, models: Mapping[str, ModelSpec] | None = None):
        self._registry = registry
        self._models: dict[str, ModelSpec] = dict(models or {})
        self._listeners: dict[str, list[Listener]] = {}

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    def set_models(self, models: Mapping[str, ModelSpec]) -> None:
        self._models = dict(models)

    # Subscriptions

    def subscribe(
        self, event_type: str, callback: EventCallback, once: bool = False
    ) -> Callable[[], None]:
        """Subscribe to one event type, or ``"*"`` for everything.

        The callback receives the Event and may be sync or async.

        Returns:
            Unsubscribe function
        """
        listener = Listener(event_type, callback, once)
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self._remove(listener)

        return unsubscribe

    def unsubscribe(self, event_type: str, callback: EventCallback | None = None) -> int:
        """Remove listeners of ``event_type`` (only ``callback``'s if given)."""
        current = self._listeners.get(event_type, [])
        keep = [lst for lst in current if callback is not None and lst.callback != callback]
        self._listeners[event_type] = keep
        return len(current) - len(keep)

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(lst) for lst in self._listeners.values())

    def _remove(self, listener: Listener) -> None:
        current = self._listeners.get(listener.event_type)
        if current and listener in current:
            current.remove(listener)

    # Correlation

    def _resource_fields(
        self, event_type: str, data: Mapping[str, Any]
    ) -> list[tuple[str, str, bool]]:
        """(field, kind, is_list) for every field of the frame holding snapshots."""
        model = self._models.get(event_type)
        if model is None:
            return [
                (name, kind, False) for name, kind in CONVENTIONAL_FIELDS.items() if name in data
            ]

        fields = []
        for prop in model.properties.values():
            item_type, is_list = split_type(prop.data_type)
            if item_type is not None and self._registry.is_resource_type(item_type):
                fields.append((prop.name, item_type, is_list))
        return fields

    def correlate(self, data: dict[str, Any]) -> Event:
        """Build an Event from a decoded frame, resolving and updating proxies."""
        event_type = data["type"]
        resources: dict[str, ResourceProxy | list[ResourceProxy]] = {}

        for name, kind, is_list in self._resource_fields(event_type, data):
            value = data.get(name)
            if value is None:
                continue
            if is_list and isinstance(value, list):
                proxies = [self._registry.resolve(kind, item) for item in value]
                resources[name] = [p for p in proxies if p is not None]
            else:
                proxy = self._registry.resolve(kind, value)
                if proxy is not None:
                    resources[name] = proxy

        return Event(type=event_type, data=data, resources=resources)

    # Dispatch

    async def dispatch_frame(self, raw: str | bytes) -> Event | None:
        """Decode, correlate and deliver one frame. Never raises for bad frames."""
        try:
            data = decode_frame(raw)
        except FrameDecodeError as e:
            await self._frame_error(e.reason, raw)
            return None

        try:
            event = self.correlate(data)
        except Exception as e:
            await self._frame_error(f"cannot correlate {data['type']} event: {e}", raw)
            return None

        await self.dispatch(event)
        return event

    async def dispatch(self, event: Event) -> None:
        """Deliver an already correlated Event to every matching listener."""
        await self._deliver(self._snapshot(event.type), event)
        await self._deliver(self._snapshot(WILDCARD), event)
        for proxy in event.proxies:
            for listener in proxy.listeners_for(event.type):
                await self._invoke(listener, proxy._remove, event, proxy)

    async def notify(self, event_type: str, data: dict[str, Any] | None = None) -> Event:
        """Emit a client-side notification (no resource correlation)."""
        event = Event(type=event_type, data={"type": event_type, **(data or {})})
        await self.dispatch(event)
        return event

    async def _frame_error(self, reason: str, raw: str | bytes) -> None:
        logger.warning(f"Dropping malformed event frame: {reason}")
        text = raw if isinstance(raw, str) else raw.decode("utf-8", "replace")
        event = Event(
            type=FRAME_DECODE_ERROR,
            data={"type": FRAME_DECODE_ERROR, "reason": reason, "raw": text},
        )
        await self._deliver(self._snapshot(WILDCARD), event)

    def _snapshot(self, event_type: str) -> list[Listener]:
        return list(self._listeners.get(event_type, []))

    async def _deliver(self, listeners: list[Listener], event: Event) -> None:
        for listener in listeners:
            await self._invoke(listener, self._remove, event)

    async def _invoke(
        self, listener: Listener, remove: Callable[[Listener], None], event: Event, *extra: Any
    ) -> None:
        if listener.once:
            if listener.fired:
                return
            listener.fired = True
            remove(listener)

        try:
            result = listener.callback(event, *extra)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Error in listener for {event.type}")
