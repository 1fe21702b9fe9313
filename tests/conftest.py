"""Pytest configuration and shared fixtures.

The fake server answers the API description documents below through
``httpx.MockTransport``; the fake event stream stands in for
``websockets.connect``.
"""

import asyncio
import copy
import json

import httpx
import pytest

from ari_client.config import ClientConfig
from ari_client.transport import HttpTransport

BASE_URL = "http://localhost:8088/ari"
ROOT_URL = f"{BASE_URL}/api-docs/resources.json"


def _path_param(name):
    return {"name": name, "paramType": "path", "required": True, "allowMultiple": False, "dataType": "string"}


RESOURCES_DOC = {
    "_copyright": "Copyright (C) 2012 - 2013, Digium, Inc.",
    "apiVersion": "2.0.0",
    "swaggerVersion": "1.1",
    "basePath": BASE_URL,
    "apis": [
        {"path": "/api-docs/channels.{format}", "description": "Channel resources"},
        {"path": "/api-docs/bridges.{format}", "description": "Bridge resources"},
        {"path": "/api-docs/endpoints.{format}", "description": "Endpoint resources"},
        {"path": "/api-docs/events.{format}", "description": "WebSocket resource"},
    ],
}

CHANNELS_DOC = {
    "apiVersion": "2.0.0",
    "swaggerVersion": "1.1",
    "basePath": BASE_URL,
    "resourcePath": "/api-docs/channels.{format}",
    "apis": [
        {
            "path": "/channels",
            "operations": [
                {
                    "httpMethod": "GET",
                    "summary": "List all active channels in Asterisk.",
                    "nickname": "list",
                    "responseClass": "List[Channel]",
                },
                {
                    "httpMethod": "POST",
                    "summary": "Create a new channel (originate).",
                    "nickname": "originate",
                    "responseClass": "Channel",
                    "parameters": [
                        {"name": "endpoint", "paramType": "query", "required": True, "dataType": "string"},
                        {"name": "app", "paramType": "query", "required": False, "dataType": "string"},
                        {"name": "timeout", "paramType": "query", "required": False, "dataType": "int"},
                        {"name": "variables", "paramType": "body", "required": False, "dataType": "containers"},
                    ],
                },
            ],
        },
        {
            "path": "/channels/{channelId}",
            "operations": [
                {
                    "httpMethod": "GET",
                    "summary": "Channel details.",
                    "nickname": "get",
                    "responseClass": "Channel",
                    "parameters": [_path_param("channelId")],
                },
                {
                    "httpMethod": "DELETE",
                    "summary": "Delete (i.e. hangup) a channel.",
                    "nickname": "hangup",
                    "responseClass": "void",
                    "parameters": [
                        _path_param("channelId"),
                        {"name": "reason", "paramType": "query", "required": False, "dataType": "string"},
                    ],
                },
            ],
        },
        {
            "path": "/channels/{channelId}/answer",
            "operations": [
                {
                    "httpMethod": "POST",
                    "summary": "Answer a channel.",
                    "nickname": "answer",
                    "responseClass": "void",
                    "parameters": [_path_param("channelId")],
                }
            ],
        },
        {
            "path": "/channels/{channelId}/play",
            "operations": [
                {
                    "httpMethod": "POST",
                    "summary": "Start playback of media.",
                    "nickname": "play",
                    "responseClass": "Playback",
                    "parameters": [
                        _path_param("channelId"),
                        {
                            "name": "media",
                            "paramType": "query",
                            "required": True,
                            "allowMultiple": True,
                            "dataType": "string",
                        },
                        {"name": "lang", "paramType": "query", "required": False, "dataType": "string"},
                    ],
                }
            ],
        },
    ],
    "models": {
        "Channel": {
            "id": "Channel",
            "description": "A specific communication connection between Asterisk and an Endpoint.",
            "properties": {
                "id": {"required": True, "type": "string", "description": "Unique identifier of the channel."},
                "name": {"required": True, "type": "string"},
                "state": {"required": True, "type": "string"},
            },
        }
    },
}

BRIDGES_DOC = {
    "apiVersion": "2.0.0",
    "swaggerVersion": "1.1",
    "basePath": "http://internal:8088/ari",
    "resourcePath": "/api-docs/bridges.{format}",
    "apis": [
        {
            "path": "/bridges",
            "operations": [
                {"method": "GET", "nickname": "list", "type": "List[Bridge]"},
                {
                    "method": "POST",
                    "nickname": "create",
                    "type": "Bridge",
                    "parameters": [
                        {"name": "type", "paramType": "query", "required": False, "dataType": "string"},
                        {"name": "name", "paramType": "query", "required": False, "dataType": "string"},
                    ],
                },
            ],
        },
        {
            "path": "/bridges/{bridgeId}/addChannel",
            "operations": [
                {
                    "method": "POST",
                    "nickname": "addChannel",
                    "type": "void",
                    "parameters": [
                        _path_param("bridgeId"),
                        {
                            "name": "channel",
                            "paramType": "query",
                            "required": True,
                            "allowMultiple": True,
                            "dataType": "string",
                        },
                    ],
                }
            ],
        },
    ],
    "models": {
        "Bridge": {
            "id": "Bridge",
            "descr": "The merging of media from one or more channels.",
            "properties": {
                "id": {"required": True, "dataType": "string", "descr": "Unique identifier for this bridge"},
                "bridge_type": {"required": True, "dataType": "string"},
                "channels": {"required": True, "dataType": "List[string]"},
            },
        }
    },
}

ENDPOINTS_DOC = {
    "apiVersion": "2.0.0",
    "swaggerVersion": "1.1",
    "basePath": BASE_URL,
    "resourcePath": "/api-docs/endpoints.{format}",
    "apis": [
        {
            "path": "/endpoints",
            "operations": [{"httpMethod": "GET", "nickname": "list", "responseClass": "List[Endpoint]"}],
        },
        {
            "path": "/endpoints/{tech}/{resource}",
            "operations": [
                {
                    "httpMethod": "GET",
                    "nickname": "get",
                    "responseClass": "Endpoint",
                    "parameters": [_path_param("tech"), _path_param("resource")],
                }
            ],
        },
    ],
    "models": {
        "Endpoint": {
            "id": "Endpoint",
            "properties": {
                "technology": {"required": True, "type": "string"},
                "resource": {"required": True, "type": "string"},
                "state": {"required": False, "type": "string"},
            },
        }
    },
}

EVENTS_DOC = {
    "apiVersion": "2.0.0",
    "swaggerVersion": "1.2",
    "basePath": BASE_URL,
    "resourcePath": "/api-docs/events.{format}",
    "apis": [
        {
            "path": "/events",
            "operations": [
                {
                    "httpMethod": "GET",
                    "upgrade": "websocket",
                    "nickname": "eventWebsocket",
                    "responseClass": "Message",
                    "parameters": [
                        {
                            "name": "app",
                            "paramType": "query",
                            "required": True,
                            "allowMultiple": True,
                            "dataType": "string",
                        }
                    ],
                }
            ],
        },
        {
            "path": "/events/user/{eventName}",
            "operations": [
                {
                    "httpMethod": "POST",
                    "nickname": "userEvent",
                    "responseClass": "void",
                    "parameters": [
                        _path_param("eventName"),
                        {"name": "application", "paramType": "query", "required": True, "dataType": "string"},
                        {"name": "variables", "paramType": "body", "required": False, "dataType": "containers"},
                    ],
                }
            ],
        },
    ],
    "models": {
        "Message": {
            "id": "Message",
            "properties": {"type": {"required": True, "type": "string"}},
            "subTypes": ["Event"],
        },
        "Event": {
            "id": "Event",
            "extends": "Message",
            "properties": {
                "application": {"required": True, "type": "string"},
                "timestamp": {"required": True, "type": "Date"},
            },
            "subTypes": ["StasisStart", "StasisEnd", "ChannelEnteredBridge", "EndpointStateChange"],
        },
        "StasisStart": {
            "id": "StasisStart",
            "extends": "Event",
            "properties": {
                "args": {"required": True, "type": "List[string]"},
                "channel": {"required": True, "type": "Channel"},
                "replace_channel": {"required": False, "type": "Channel"},
            },
        },
        "StasisEnd": {
            "id": "StasisEnd",
            "extends": "Event",
            "properties": {"channel": {"required": True, "type": "Channel"}},
        },
        "ChannelEnteredBridge": {
            "id": "ChannelEnteredBridge",
            "extends": "Event",
            "properties": {
                "bridge": {"required": True, "type": "Bridge"},
                "channel": {"required": False, "type": "Channel"},
            },
        },
        "EndpointStateChange": {
            "id": "EndpointStateChange",
            "extends": "Event",
            "properties": {"endpoint": {"required": True, "type": "Endpoint"}},
        },
    },
}

# Operations across every group document above
OPERATION_COUNT = 13

API_DOCUMENTS = {
    "/ari/api-docs/resources.json": RESOURCES_DOC,
    "/ari/api-docs/channels.json": CHANNELS_DOC,
    "/ari/api-docs/bridges.json": BRIDGES_DOC,
    "/ari/api-docs/endpoints.json": ENDPOINTS_DOC,
    "/ari/api-docs/events.json": EVENTS_DOC,
}


class FakeAriServer:
    """httpx.MockTransport handler serving the API documents plus canned routes."""

    def __init__(self, documents):
        self.documents = documents
        self.routes = {}
        self.requests = []

    def route(self, method, path, response):
        """Answer ``method path`` with an httpx.Response or a callable(request)."""
        self.routes[(method, path)] = response

    def handler(self, request):
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is not None:
            return response(request) if callable(response) else response
        if request.method == "GET" and request.url.path in self.documents:
            return httpx.Response(200, json=self.documents[request.url.path])
        return httpx.Response(404, json={"message": "Resource not found"})

    def requests_to(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def api_requests(self):
        """Requests other than description document fetches."""
        return [r for r in self.requests if "/api-docs/" not in r.url.path]


class FakeWebSocket:
    """In-memory event stream connection."""

    _CLOSE = object()

    def __init__(self, url):
        self.url = url
        self.closed = False
        self.pings = 0
        self._queue = asyncio.Queue()

    def feed(self, frame):
        """Queue one frame (dicts are JSON-encoded)."""
        self._queue.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self):
        """Simulate the server closing the connection."""
        self._queue.put_nowait(self._CLOSE)

    def fail(self, error):
        """Make the next read raise ``error``, as a reset connection would."""
        self._queue.put_nowait(error)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is self._CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True
        self._queue.put_nowait(self._CLOSE)

    async def ping(self):
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(0.001)
        return waiter


class FakeConnector:
    """Stand-in for websockets.connect that hands out FakeWebSockets."""

    def __init__(self):
        self.urls = []
        self.kwargs = []
        self.sockets = []
        self.fail_next = 0
        self.fail_always = False

    async def __call__(self, url, **kwargs):
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self.fail_always or self.fail_next > 0:
            self.fail_next = max(self.fail_next - 1, 0)
            raise OSError("Connection refused")
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def current(self):
        return self.sockets[-1]


async def settle(rounds=20):
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def api_documents():
    return copy.deepcopy(API_DOCUMENTS)


@pytest.fixture
def ari_server(api_documents):
    return FakeAriServer(api_documents)


@pytest.fixture
def http_transport(ari_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(ari_server.handler))
    return HttpTransport("user", "secret", client=client)


@pytest.fixture
def client_config():
    return ClientConfig(
        base_url=BASE_URL,
        username="user",
        password="secret",
        reconnect_delay=0.5,
        max_reconnect_delay=4.0,
        max_reconnect_attempts=3,
    )


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def settle_tasks():
    return settle


@pytest.fixture
def sleeps():
    """Recorded backoff delays; pair with ``no_sleep``."""
    return []


@pytest.fixture
def no_sleep(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)
        await asyncio.sleep(0)

    return fake_sleep
