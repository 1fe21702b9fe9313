"""Single-shot HTTP transport.

One request in, one response out. No retries, no caching: the caller
decides what a failure means. Network failures are raised as
TransportError; any HTTP status (including 4xx/5xx) is a normal response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from .errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Status, headers and raw body of one HTTP exchange."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip().lower()


@runtime_checkable
class Transport(Protocol):
    """Protocol for the HTTP primitive used by the loader and operations."""

    async def issue(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> TransportResponse:
        """Issue one request.

        Raises:
            TransportError: If no response could be obtained
        """
        ...

    async def close(self) -> None: ...


class HttpTransport:
    """Transport backed by httpx.AsyncClient.

    Basic-auth credentials, when given, are attached to every request.
    A preconfigured ``httpx.AsyncClient`` may be injected (tests pass one
    built on ``httpx.MockTransport``); an injected client is not closed.
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._auth = httpx.BasicAuth(username, password or "") if username else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def issue(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> TransportResponse:
        kwargs: dict[str, Any] = {"headers": headers or {}}
        if body is not None:
            kwargs["content"] = body
        if self._auth is not None:
            kwargs["auth"] = self._auth

        logger.debug(f"{method} {url}")
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}", method=method, url=url) from e

        return TransportResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.content,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
