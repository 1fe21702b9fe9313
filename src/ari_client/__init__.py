"""ARI client - Asterisk REST Interface client built from the server's API description.

Operations are synthesized at connect time from the Swagger 1.1 documents
the server publishes; server entities are mirrored as resource proxies and
events from the WebSocket stream are dispatched to global and per-entity
listeners.
"""

from .client import ARIClient, connect, proxy_results
from .config import ClientConfig
from .errors import (
    ARIError,
    FrameDecodeError,
    OperationBindingError,
    OperationCallError,
    SpecLoadError,
    StreamConnectionError,
    TransportError,
)
from .events import Event, EventDispatcher
from .resources import RESOURCE_KINDS, ResourceKind, ResourceProxy, ResourceRegistry
from .supervisor import ConnectionState, ConnectionSupervisor
from .transport import HttpTransport, Transport, TransportResponse

__all__ = [
    # Client
    "ARIClient",
    "ClientConfig",
    "connect",
    "proxy_results",
    # Errors
    "ARIError",
    "TransportError",
    "SpecLoadError",
    "OperationBindingError",
    "OperationCallError",
    "StreamConnectionError",
    "FrameDecodeError",
    # Events & resources
    "Event",
    "EventDispatcher",
    "RESOURCE_KINDS",
    "ResourceKind",
    "ResourceProxy",
    "ResourceRegistry",
    # Event stream
    "ConnectionState",
    "ConnectionSupervisor",
    # Transport
    "HttpTransport",
    "Transport",
    "TransportResponse",
]
