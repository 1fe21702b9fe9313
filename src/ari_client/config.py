"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

DEFAULT_BASE_URL = "http://localhost:8088/ari"


@dataclass
class ClientConfig:
    """Configuration for ARIClient.

    ``base_url`` is the ARI root as seen by this client, e.g.
    ``https://pbx.example.com/ari``. Both the API description URL and the
    event stream URL are derived from it, so a reverse proxy in front of
    Asterisk is honoured for REST calls and events alike.
    """

    base_url: str = DEFAULT_BASE_URL
    username: str = ""
    password: str = ""

    # HTTP
    timeout: float = 30.0
    spec_format: str = "json"

    # Event stream reconnection
    auto_reconnect: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_backoff: float = 2.0
    max_reconnect_attempts: int = 10

    # Keep-alive handled by the websockets library
    ping_interval: float | None = 30.0
    ping_timeout: float | None = 10.0

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build a config from ARI_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, object] = {
            "base_url": os.getenv("ARI_URL", DEFAULT_BASE_URL),
            "username": os.getenv("ARI_USERNAME", ""),
            "password": os.getenv("ARI_PASSWORD", ""),
        }
        if timeout := os.getenv("ARI_TIMEOUT"):
            values["timeout"] = float(timeout)
        if attempts := os.getenv("ARI_MAX_RECONNECT_ATTEMPTS"):
            values["max_reconnect_attempts"] = int(attempts)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)  # type: ignore[arg-type]

    @property
    def root_url(self) -> str:
        """URL of the API description root index."""
        return f"{self.base_url.rstrip('/')}/api-docs/resources.json"

    @property
    def events_url(self) -> str:
        """WebSocket URL of the event stream (without query string)."""
        parts = urlsplit(self.base_url.rstrip("/"))
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, f"{parts.path}/events", "", ""))

    @property
    def api_key(self) -> str | None:
        if not self.username:
            return None
        return f"{self.username}:{self.password}"
