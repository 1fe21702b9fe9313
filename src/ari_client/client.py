"""ARI client facade.

Wires the transport, API description loader, operation synthesizer,
resource registry, event dispatcher and connection supervisor together.

Usage:
    client = await connect("http://localhost:8088/ari", "user", "secret")

    async def on_start(event):
        channel = event["channel"]
        channel.once("StasisEnd", lambda event, channel: print("hung up", channel.id))
        await channel.answer()

    client.on("StasisStart", on_start)
    await client.start("my-app")
    ...
    await client.close()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from .config import ClientConfig
from .events import Event, EventCallback, EventDispatcher
from .resources import ResourceId, ResourceProxy, ResourceRegistry
from .supervisor import ConnectFn, ConnectionState, ConnectionSupervisor
from .swagger import (
    ApiDescription,
    OperationSpec,
    ResourceGroupApi,
    SpecLoader,
    split_type,
    synthesize,
)
from .transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


def proxy_results(registry: ResourceRegistry) -> Callable[[OperationSpec, Any], Any]:
    """Result hook turning entity results into registry proxies.

    Applies to operations whose declared result is a known resource kind
    (``Channel``) or a list of one (``List[Channel]``); other results pass
    through. Items without an id are returned unchanged.
    """

    def hook(spec: OperationSpec, result: Any) -> Any:
        item_type, is_list = split_type(spec.response_class)
        if not registry.is_resource_type(item_type):
            return result
        if is_list and isinstance(result, list):
            converted = []
            for item in result:
                proxy = registry.resolve(item_type, item)
                converted.append(item if proxy is None else proxy)
            return converted
        if not is_list and isinstance(result, dict):
            proxy = registry.resolve(item_type, result)
            return result if proxy is None else proxy
        return result

    return hook


class ARIClient:
    """A connected client: operation groups, proxies and event subscriptions.

    Resource groups are attributes (``client.channels.list()``); the full
    mapping is ``client.apis``. Build one with ``connect()``.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        connect: ConnectFn | None = None,
    ):
        self.config = config
        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(
            config.username, config.password, timeout=config.timeout
        )
        self.registry = ResourceRegistry()
        self.dispatcher = EventDispatcher(self.registry)
        self.supervisor = ConnectionSupervisor(config, self.dispatcher, connect=connect)
        self._description: ApiDescription | None = None
        self._apis: dict[str, ResourceGroupApi] = {}

    async def load(self) -> ApiDescription:
        """Load the API description and synthesize every operation.

        Raises:
            SpecLoadError: If the description cannot be fetched or parsed
            OperationBindingError: If an operation cannot be synthesized
        """
        loader = SpecLoader(self._transport, self.config.spec_format)
        description = await loader.load(self.config.root_url)
        apis = synthesize(description, self._transport, proxy_results(self.registry))

        self._description = description
        self._apis = apis
        self.registry.attach_operations(apis)
        self.dispatcher.set_models(description.models)
        return description

    @property
    def api(self) -> ApiDescription | None:
        """The loaded API description, None before ``load()``."""
        return self._description

    @property
    def apis(self) -> dict[str, ResourceGroupApi]:
        return dict(self._apis)

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    def __getattr__(self, name: str) -> ResourceGroupApi:
        if name.startswith("_"):
            raise AttributeError(name)
        apis = self.__dict__.get("_apis", {})
        if name in apis:
            return apis[name]
        raise AttributeError(f"ARIClient has no attribute or resource group {name!r}")

    def __dir__(self) -> list[str]:
        return [*super().__dir__(), *self._apis]

    # Proxies

    def resource(self, kind: str, resource_id: ResourceId) -> ResourceProxy:
        """The proxy for (kind, id), created empty if not yet known."""
        return self.registry.get_or_create(kind, resource_id)

    # Events

    def on(
        self, event_type: str, callback: EventCallback, once: bool = False
    ) -> Callable[[], None]:
        """Subscribe to ``event_type`` or ``"*"``. Returns an unsubscribe function."""
        return self.dispatcher.subscribe(event_type, callback, once=once)

    def once(self, event_type: str, callback: EventCallback) -> Callable[[], None]:
        return self.dispatcher.subscribe(event_type, callback, once=True)

    def off(self, event_type: str, callback: EventCallback | None = None) -> int:
        """Remove global listeners for ``event_type`` (only ``callback`` if given)."""
        return self.dispatcher.unsubscribe(event_type, callback)

    async def emit(self, event_type: str, data: dict[str, Any] | None = None) -> Event:
        """Deliver a client-side notification to the global listeners."""
        return await self.dispatcher.notify(event_type, data)

    # Event stream

    async def start(self, applications: str | Sequence[str], subscribe_all: bool = False) -> None:
        await self.supervisor.start(applications, subscribe_all=subscribe_all)

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def ping(self) -> None:
        await self.supervisor.ping()

    async def close(self) -> None:
        """Stop the event stream and release the HTTP transport."""
        await self.supervisor.stop()
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> ARIClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def connect(
    base_url: str | None = None,
    username: str = "",
    password: str = "",
    *,
    config: ClientConfig | None = None,
    transport: Transport | None = None,
    connect: ConnectFn | None = None,
) -> ARIClient:
    """Create a client and load its operation surface.

    Args:
        base_url: ARI root, e.g. ``http://localhost:8088/ari``
        username: ARI user
        password: ARI password
        config: Full configuration (takes precedence over the above)
        transport: Transport to use instead of a new HttpTransport
        connect: WebSocket connect factory (defaults to websockets.connect)

    Raises:
        SpecLoadError: If the API description cannot be loaded
    """
    if config is None:
        config = ClientConfig(username=username, password=password)
        if base_url:
            config.base_url = base_url

    client = ARIClient(config, transport=transport, connect=connect)
    try:
        await client.load()
    except Exception:
        await client.close()
        raise

    logger.info(f"Connected to {config.base_url}")
    return client
