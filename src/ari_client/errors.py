"""Exception hierarchy for the ARI client.

Every error raised by the client derives from ARIError so callers can
catch the whole family at once:

- TransportError: the HTTP request never produced a response
- SpecLoadError: the API description could not be loaded (startup fails)
- OperationBindingError: caller arguments do not fit an operation (no I/O done)
- OperationCallError: the server answered with a non-2xx status
- StreamConnectionError: the event stream could not be opened or used
- FrameDecodeError: an event frame could not be decoded (never escapes the engine)
"""

from __future__ import annotations

import json
from typing import Any


class ARIError(Exception):
    """Base class for all ARI client errors."""


class TransportError(ARIError):
    """Network-level failure: connection refused, timeout, TLS error..."""

    def __init__(self, message: str, *, method: str | None = None, url: str | None = None):
        super().__init__(message)
        self.method = method
        self.url = url


class SpecLoadError(ARIError):
    """The API description (root index or a group document) failed to load."""

    def __init__(self, message: str, *, url: str, status: int | None = None):
        detail = f"{message} (url={url}"
        if status is not None:
            detail += f", status={status}"
        detail += ")"
        super().__init__(detail)
        self.url = url
        self.status = status


class OperationBindingError(ARIError, TypeError):
    """Arguments could not be bound to an operation's parameters.

    Raised before any network I/O: missing required parameter, unknown
    argument, or an operation whose path template cannot be satisfied.
    """

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(f"{operation}: {message}" if operation else message)
        self.operation = operation


class OperationCallError(ARIError):
    """The server answered an operation with a non-2xx status.

    The raw body is kept as bytes: error bodies are not guaranteed to be
    well-formed JSON.
    """

    def __init__(
        self,
        operation: str,
        status: int,
        body: bytes,
        *,
        url: str,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(f"{operation} failed with HTTP {status} ({url})")
        self.operation = operation
        self.status = status
        self.body = body
        self.url = url
        self.headers = headers or {}

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON, returning None if it is not valid JSON."""
        try:
            return json.loads(self.body)
        except ValueError:
            return None


class StreamConnectionError(ARIError, ConnectionError):
    """The event stream could not be opened, or was used while closed."""


class FrameDecodeError(ARIError):
    """An event frame was not a JSON object with a string ``type``."""

    def __init__(self, reason: str, raw: str | bytes):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw
