"""Event stream connection supervisor.

Owns the WebSocket to ``/ari/events`` and its lifecycle:

    DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING -> CLOSED

Frames read from the socket are handed to the EventDispatcher in arrival
order. An unexpected close triggers reconnection with exponential backoff;
each attempt is announced with a ``WebSocketReconnecting`` notification,
recovery with ``WebSocketConnected``. After the last failed attempt the
supervisor moves to CLOSED and emits a single ``WebSocketMaxRetries``;
it stays closed until ``start()`` is called again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any
from urllib.parse import quote, urlencode

import websockets

from .config import ClientConfig
from .errors import StreamConnectionError
from .events import (
    WEBSOCKET_CONNECTED,
    WEBSOCKET_MAX_RETRIES,
    WEBSOCKET_PONG,
    WEBSOCKET_RECONNECTING,
    EventDispatcher,
)

logger = logging.getLogger(__name__)

# websockets.connect, or a stand-in with the same call shape
ConnectFn = Callable[..., Awaitable[Any]]


class ConnectionState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ConnectionSupervisor:
    """Keeps the event stream open and feeds frames to the dispatcher."""

    def __init__(
        self,
        config: ClientConfig,
        dispatcher: EventDispatcher,
        connect: ConnectFn | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self._dispatcher = dispatcher
        self._connect = connect or websockets.connect
        self._sleep = sleep
        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._applications: list[str] = []
        self._subscribe_all = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def applications(self) -> list[str]:
        return list(self._applications)

    def build_url(self) -> str:
        """Event stream URL for the current applications."""
        query = [("app", ",".join(self._applications))]
        if self.config.api_key:
            query.append(("api_key", self.config.api_key))
        if self._subscribe_all:
            query.append(("subscribeAll", "true"))
        return f"{self.config.events_url}?{urlencode(query, quote_via=quote, safe=',')}"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based)."""
        delay = self.config.reconnect_delay * self.config.reconnect_backoff ** (attempt - 1)
        return min(delay, self.config.max_reconnect_delay)

    async def start(self, applications: str | Sequence[str], subscribe_all: bool = False) -> None:
        """Open the event stream for ``applications``.

        Returns once the connection is open.

        Raises:
            StreamConnectionError: If already started or the connection fails
        """
        if self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        ):
            raise StreamConnectionError(f"Event stream already {self._state.value}")

        apps = [applications] if isinstance(applications, str) else list(applications)
        if not apps:
            raise ValueError("at least one application name is required")

        self._applications = apps
        self._subscribe_all = subscribe_all
        self._state = ConnectionState.CONNECTING
        try:
            self._ws = await self._open()
        except Exception as e:
            self._state = ConnectionState.CLOSED
            raise StreamConnectionError(f"Failed to open event stream: {e}") from e

        self._state = ConnectionState.CONNECTED
        logger.info(f"Event stream connected for {', '.join(apps)}")
        self._task = asyncio.create_task(self._run())
        await self._dispatcher.notify(WEBSOCKET_CONNECTED, {"attempt": 0})

    async def stop(self) -> None:
        """Close the stream from any state and cancel pending reconnection."""
        self._state = ConnectionState.CLOSED

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Event stream closed")

    async def ping(self) -> None:
        """Send a ping and emit ``WebSocketPong`` when the pong arrives.

        Raises:
            StreamConnectionError: If not connected or no pong in time
        """
        if self._state != ConnectionState.CONNECTED or self._ws is None:
            raise StreamConnectionError("Event stream not connected")

        try:
            waiter = await self._ws.ping()
            await asyncio.wait_for(waiter, timeout=self.config.ping_timeout)
        except TimeoutError as e:
            raise StreamConnectionError("No pong received") from e
        except websockets.ConnectionClosed as e:
            raise StreamConnectionError(f"Event stream closed during ping: {e}") from e

        await self._dispatcher.notify(WEBSOCKET_PONG)

    async def _open(self) -> Any:
        return await self._connect(
            self.build_url(),
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )

    async def _run(self) -> None:
        """Read frames until stopped; reconnect on unexpected close."""
        while True:
            try:
                async for message in self._ws:
                    await self._dispatcher.dispatch_frame(message)
                reason = "closed by server"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__

            if self._state == ConnectionState.CLOSED:
                return
            logger.warning(f"Event stream lost: {reason}")
            if not self.config.auto_reconnect:
                self._state = ConnectionState.CLOSED
                await self._discard_socket()
                return
            if not await self._reconnect():
                return

    async def _discard_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    async def _reconnect(self) -> bool:
        self._state = ConnectionState.RECONNECTING
        await self._discard_socket()
        max_attempts = self.config.max_reconnect_attempts

        for attempt in range(1, max_attempts + 1):
            delay = self.backoff_delay(attempt)
            await self._dispatcher.notify(
                WEBSOCKET_RECONNECTING, {"attempt": attempt, "delay": delay}
            )
            await self._sleep(delay)
            if self._state != ConnectionState.RECONNECTING:
                return False

            try:
                self._ws = await self._open()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Reconnect attempt {attempt}/{max_attempts} failed: {e}")
                continue

            self._state = ConnectionState.CONNECTED
            logger.info(f"Event stream reconnected after {attempt} attempt(s)")
            await self._dispatcher.notify(WEBSOCKET_CONNECTED, {"attempt": attempt})
            return True

        logger.error(f"Event stream lost, giving up after {max_attempts} attempts")
        self._state = ConnectionState.CLOSED
        await self._dispatcher.notify(WEBSOCKET_MAX_RETRIES, {"attempts": max_attempts})
        return False
