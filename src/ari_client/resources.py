"""Resource registry and proxies.

Every server entity the client hears about (through an operation result or
an event) is mirrored by exactly one ResourceProxy per (kind, id). The
registry creates proxies lazily and never does I/O; snapshots replace a
proxy's fields wholesale.

Proxies also carry per-instance listeners, and expose the operations that
address them with the id parameter(s) already bound:

    channel = registry.get_or_create("Channel", "1712345.1")
    await channel.answer()          # channels.answer(channelId="1712345.1")
    channel.once("StasisEnd", on_end)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .swagger.operations import ResourceGroupApi

logger = logging.getLogger(__name__)

WILDCARD = "*"
ID_SEPARATOR = "/"

ResourceId = str | tuple[str, str]


@dataclass(frozen=True)
class ResourceKind:
    """How one entity kind is identified in snapshots and in operations."""

    name: str
    group: str
    id_fields: tuple[str, ...]
    id_params: tuple[str, ...]
    path_prefix: str

    @property
    def composite(self) -> bool:
        return len(self.id_fields) > 1

    def make_id(self, value: ResourceId) -> str:
        """Normalize an id (string or ordered components) to its key form."""
        if isinstance(value, tuple):
            if len(value) != len(self.id_fields):
                raise ValueError(
                    f"{self.name} ids have {len(self.id_fields)} components: {value!r}"
                )
            for component in value:
                if not component or ID_SEPARATOR in component:
                    raise ValueError(f"invalid {self.name} id component: {component!r}")
            return ID_SEPARATOR.join(value)

        text = str(value)
        if self.composite and len(text.split(ID_SEPARATOR, 1)) != 2:
            raise ValueError(f"{self.name} id must look like 'a{ID_SEPARATOR}b': {text!r}")
        if not text:
            raise ValueError(f"empty {self.name} id")
        return text

    def split_id(self, value: str) -> tuple[str, ...]:
        if not self.composite:
            return (value,)
        return tuple(value.split(ID_SEPARATOR, len(self.id_fields) - 1))

    def id_from_snapshot(self, snapshot: Mapping[str, Any]) -> str | None:
        """Extract the key form of the id from a snapshot, if it has one."""
        components = [snapshot.get(f) for f in self.id_fields]
        if any(c is None or c == "" for c in components):
            return None
        if self.composite:
            return self.make_id(tuple(str(c) for c in components))  # type: ignore[arg-type]
        return str(components[0])


RESOURCE_KINDS: dict[str, ResourceKind] = {
    kind.name: kind
    for kind in (
        ResourceKind(
            "Application", "applications", ("name",), ("applicationName",), "/applications"
        ),
        ResourceKind("Bridge", "bridges", ("id",), ("bridgeId",), "/bridges"),
        ResourceKind("Channel", "channels", ("id",), ("channelId",), "/channels"),
        ResourceKind("DeviceState", "deviceStates", ("name",), ("deviceName",), "/deviceStates"),
        ResourceKind(
            "Endpoint", "endpoints", ("technology", "resource"), ("tech", "resource"), "/endpoints"
        ),
        ResourceKind(
            "LiveRecording", "recordings", ("name",), ("recordingName",), "/recordings/live"
        ),
        ResourceKind("Mailbox", "mailboxes", ("name",), ("mailboxName",), "/mailboxes"),
        ResourceKind("Playback", "playbacks", ("id",), ("playbackId",), "/playbacks"),
        ResourceKind("Sound", "sounds", ("id",), ("soundId",), "/sounds"),
        ResourceKind(
            "StoredRecording", "recordings", ("name",), ("recordingName",), "/recordings/stored"
        ),
    )
}


@dataclass(eq=False)
class Listener:
    """A registered callback: event type (or wildcard), once flag, callback."""

    event_type: str
    callback: Callable[..., Any]
    once: bool = False
    fired: bool = False

    def matches(self, event_type: str) -> bool:
        return self.event_type == WILDCARD or self.event_type == event_type


class ResourceProxy:
    """Local mirror of one server entity.

    Snapshot fields are readable as attributes (``channel.state``) or items
    (``channel["state"]``). Attribute lookups that are not fields fall back
    to the operations addressing this entity.
    """

    def __init__(self, registry: ResourceRegistry, kind: ResourceKind, resource_id: str):
        self._registry = registry
        self._kind = kind
        self._id = resource_id
        self._fields: dict[str, Any] = {}
        self._listeners: list[Listener] = []

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def id(self) -> str:
        return self._id

    @property
    def fields(self) -> dict[str, Any]:
        """Copy of the latest snapshot."""
        return dict(self._fields)

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        fields = self.__dict__.get("_fields", {})
        if name in fields:
            return fields[name]
        operation = self._registry.bound_operation(self, name)
        if operation is not None:
            return operation
        raise AttributeError(f"{self._kind.name} {self._id!r} has no field or operation {name!r}")

    def __repr__(self) -> str:
        return f"<{self._kind.name} {self._id}>"

    # Instance listeners

    def on(
        self, event_type: str, callback: Callable[..., Any], once: bool = False
    ) -> Callable[[], None]:
        """Listen for events of ``event_type`` (or ``"*"``) referencing this entity.

        The callback receives ``(event, proxy)``.

        Returns:
            Unsubscribe function
        """
        listener = Listener(event_type, callback, once)
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self._remove(listener)

        return unsubscribe

    def once(self, event_type: str, callback: Callable[..., Any]) -> Callable[[], None]:
        return self.on(event_type, callback, once=True)

    def off(self, event_type: str | None = None, callback: Callable[..., Any] | None = None) -> int:
        """Remove listeners by type and/or callback; no arguments removes all.

        Returns:
            Number of listeners removed
        """
        keep = [
            lst
            for lst in self._listeners
            if not (
                (event_type is None or lst.event_type == event_type)
                and (callback is None or lst.callback == callback)
            )
        ]
        removed = len(self._listeners) - len(keep)
        self._listeners = keep
        return removed

    def listeners_for(self, event_type: str) -> list[Listener]:
        """Snapshot of the listeners matching ``event_type``, in registration order."""
        return [lst for lst in self._listeners if lst.matches(event_type)]

    def _remove(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


class ResourceRegistry:
    """Maps (kind, id) to the single proxy for that entity."""

    def __init__(self, kinds: Mapping[str, ResourceKind] | None = None):
        self._kinds = dict(kinds or RESOURCE_KINDS)
        self._proxies: dict[tuple[str, str], ResourceProxy] = {}
        self._groups: Mapping[str, ResourceGroupApi] = {}

    @property
    def kinds(self) -> dict[str, ResourceKind]:
        return dict(self._kinds)

    def kind(self, kind: str | ResourceKind) -> ResourceKind:
        if isinstance(kind, ResourceKind):
            return kind
        try:
            return self._kinds[kind]
        except KeyError:
            raise ValueError(f"unknown resource kind: {kind!r}") from None

    def is_resource_type(self, type_name: str | None) -> bool:
        return type_name is not None and type_name in self._kinds

    def get(self, kind: str | ResourceKind, resource_id: ResourceId) -> ResourceProxy | None:
        k = self.kind(kind)
        return self._proxies.get((k.name, k.make_id(resource_id)))

    def get_or_create(self, kind: str | ResourceKind, resource_id: ResourceId) -> ResourceProxy:
        """Return the proxy for (kind, id), creating an empty one if needed."""
        k = self.kind(kind)
        key = (k.name, k.make_id(resource_id))
        proxy = self._proxies.get(key)
        if proxy is None:
            proxy = ResourceProxy(self, k, key[1])
            self._proxies[key] = proxy
        return proxy

    def apply_snapshot(self, proxy: ResourceProxy, fields: Mapping[str, Any]) -> ResourceProxy:
        """Replace every tracked field of ``proxy`` with ``fields``."""
        proxy._fields = dict(fields)
        return proxy

    def resolve(self, kind: str | ResourceKind, snapshot: Any) -> ResourceProxy | None:
        """Get-or-create the proxy a snapshot describes and apply it.

        Returns None when the snapshot is not an object or carries no id.
        """
        if not isinstance(snapshot, Mapping):
            return None
        k = self.kind(kind)
        resource_id = k.id_from_snapshot(snapshot)
        if resource_id is None:
            logger.debug(f"{k.name} snapshot without id, not tracked: {snapshot!r}")
            return None
        return self.apply_snapshot(self.get_or_create(k, resource_id), snapshot)

    def attach_operations(self, groups: Mapping[str, ResourceGroupApi]) -> None:
        """Make group operations available as bound methods on proxies."""
        self._groups = groups

    def bound_operation(self, proxy: ResourceProxy, name: str) -> Callable[..., Any] | None:
        """Return the operation ``name`` with the proxy's id parameter(s) filled in.

        Only operations under the kind's path prefix whose path addresses the
        entity by all of its id parameters qualify.
        """
        kind = proxy.kind
        group = self._groups.get(kind.group)
        if group is None or name not in group:
            return None
        operation = group[name]
        if not operation.spec.path.startswith(kind.path_prefix):
            return None
        if not set(kind.id_params) <= set(operation.spec.placeholders):
            return None
        bound = dict(zip(kind.id_params, kind.split_id(proxy.id), strict=True))
        return functools.partial(operation, bound)

    def clear(self) -> None:
        self._proxies.clear()

    def __len__(self) -> int:
        return len(self._proxies)

    def __iter__(self) -> Iterator[ResourceProxy]:
        return iter(list(self._proxies.values()))
