"""Operation synthesis.

Every OperationSpec in a loaded ApiDescription becomes one Operation: a
generic invoker interpreting the OperationSpec as data. There is no per-endpoint
code; irregularities of the description are absorbed by the schema layer.

Usage:
    groups = synthesize(description, transport)
    channel = await groups["channels"].originate(endpoint="PJSIP/1000", app="demo")
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any
from urllib.parse import quote, urlencode

from ..errors import OperationBindingError, OperationCallError
from ..transport import Transport, TransportResponse
from .schema import ApiDescription, OperationSpec, ParameterSpec, ResourceGroupDoc

logger = logging.getLogger(__name__)

# Called with (spec, decoded result); its return value becomes the call's result.
ResultHook = Callable[[OperationSpec, Any], Any]

BODY_ARGUMENT = "body"


def _wire_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, list | tuple | set | frozenset)


def _encode_body(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value).encode("utf-8")


def decode_response(response: TransportResponse) -> Any:
    """Decode a successful response body.

    Empty bodies decode to None, JSON to Python objects, anything else
    (recording files, sounds) is returned as raw bytes.
    """
    if not response.body:
        return None
    content_type = response.content_type
    if content_type and content_type != "application/json" and not content_type.endswith("+json"):
        return response.body
    try:
        return json.loads(response.body)
    except ValueError:
        return response.body


class Operation:
    """A callable bound to one OperationSpec and its group's base URL."""

    def __init__(
        self,
        spec: OperationSpec,
        base_url: str,
        transport: Transport,
        result_hook: ResultHook | None = None,
    ):
        self.spec = spec
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._result_hook = result_hook
        self._params: dict[str, ParameterSpec] = {p.name: p for p in spec.parameters}

        path_params = {p.name: p for p in spec.params_in("path")}
        for placeholder in spec.placeholders:
            param = path_params.get(placeholder)
            if param is None or not param.required:
                raise OperationBindingError(
                    f"path placeholder {{{placeholder}}} has no required path parameter",
                    operation=self.qualified_name,
                )

        body_params = spec.params_in("body")
        if len(body_params) > 1:
            raise OperationBindingError(
                f"declares {len(body_params)} body parameters, at most one is allowed",
                operation=self.qualified_name,
            )
        self._body_param = body_params[0] if body_params else None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def qualified_name(self) -> str:
        return f"{self.spec.group}.{self.spec.name}"

    def __repr__(self) -> str:
        return f"<Operation {self.qualified_name} {self.spec.method} {self.spec.path}>"

    def build_request(self, arguments: Mapping[str, Any]) -> tuple[str, bytes | None]:
        """Bind arguments to parameters and return (url, body).

        Raises:
            OperationBindingError: Missing required or unknown arguments
        """
        args = {k: v for k, v in arguments.items() if v is not None}
        direct_body = None
        if BODY_ARGUMENT not in self._params:
            direct_body = args.pop(BODY_ARGUMENT, None)

        unknown = sorted(set(args) - set(self._params))
        if unknown:
            raise OperationBindingError(
                f"unknown argument(s): {', '.join(unknown)}", operation=self.qualified_name
            )

        missing = [p.name for p in self.spec.parameters if p.required and p.name not in args]
        if self._body_param and direct_body is not None and self._body_param.name in missing:
            missing.remove(self._body_param.name)
        if missing:
            raise OperationBindingError(
                f"missing required parameter(s): {', '.join(missing)}",
                operation=self.qualified_name,
            )

        path = self.spec.path
        for param in self.spec.params_in("path"):
            if param.name in args:
                encoded = quote(_wire_value(args[param.name]), safe="")
                path = path.replace(f"{{{param.name}}}", encoded)

        query: list[tuple[str, str]] = []
        for param in self.spec.params_in("query"):
            if param.name not in args:
                continue
            value = args[param.name]
            if _is_sequence(value):
                query.extend((param.name, _wire_value(item)) for item in value)
            else:
                query.append((param.name, _wire_value(value)))

        body_value = direct_body
        if body_value is None and self._body_param is not None:
            body_value = args.get(self._body_param.name)

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query, quote_via=quote)}"
        return url, _encode_body(body_value) if body_value is not None else None

    async def __call__(self, arguments: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Any:
        """Invoke the operation.

        Arguments may be given as a mapping, as keyword arguments, or both.

        Raises:
            OperationBindingError: Before any I/O, if arguments do not bind
            OperationCallError: If the server answers with a non-2xx status
            TransportError: If no response was obtained
        """
        url, body = self.build_request({**(arguments or {}), **kwargs})

        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"

        response = await self._transport.issue(self.spec.method, url, headers, body)
        if not response.ok:
            logger.debug(f"{self.qualified_name} -> HTTP {response.status}")
            raise OperationCallError(
                self.qualified_name,
                response.status,
                response.body,
                url=url,
                headers=response.headers,
            )

        result = decode_response(response)
        if self._result_hook is not None:
            return self._result_hook(self.spec, result)
        return result


class ResourceGroupApi:
    """The operations of one resource group, by name.

    Operations are reachable as attributes (``api.channels.list()``) or
    items (``api.channels["list"]()``).
    """

    def __init__(self, doc: ResourceGroupDoc, operations: dict[str, Operation]):
        self.doc = doc
        self._operations = operations

    @property
    def name(self) -> str:
        return self.doc.name

    @property
    def operations(self) -> dict[str, Operation]:
        return dict(self._operations)

    def __getattr__(self, name: str) -> Operation:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._operations[name]
        except KeyError:
            raise AttributeError(
                f"resource group {self.doc.name!r} has no operation {name!r}"
            ) from None

    def __getitem__(self, name: str) -> Operation:
        return self._operations[name]

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[str]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __dir__(self) -> list[str]:
        return [*super().__dir__(), *self._operations]

    def __repr__(self) -> str:
        return f"<ResourceGroupApi {self.doc.name} ({len(self._operations)} operations)>"


def synthesize(
    description: ApiDescription,
    transport: Transport,
    result_hook: ResultHook | None = None,
) -> dict[str, ResourceGroupApi]:
    """Build one ResourceGroupApi per group of a ready description.

    Raises:
        OperationBindingError: If any operation's path cannot be satisfied
    """
    if not description.ready:
        raise ValueError("cannot synthesize operations from a description that is not ready")

    groups: dict[str, ResourceGroupApi] = {}
    for name, doc in description.groups.items():
        operations = {
            op_name: Operation(spec, doc.base_url, transport, result_hook)
            for op_name, spec in doc.operations.items()
        }
        groups[name] = ResourceGroupApi(doc, operations)
    return groups
