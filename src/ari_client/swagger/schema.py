"""Internal schema for the server's API description.

The server publishes a Swagger 1.1 style description whose field names are
not entirely consistent (``type`` vs ``dataType``, ``description`` vs
``descr``, ``httpMethod`` vs ``method``, ``responseClass`` vs ``type``).
These models accept either spelling on input and expose one canonical
attribute name, so nothing downstream has to care which one a server used.

All models are frozen: the description is built once at startup and only
read afterwards.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")
CONTAINER_RE = re.compile(r"^(List|Set|Array)\[(.+)\]$")

ParamLocation = Literal["path", "query", "body"]
PARAM_LOCATIONS = ("path", "query", "body")


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def split_type(declared: str | None) -> tuple[str | None, bool]:
    """Split a declared type into (item type, is_list).

    ``"List[Channel]"`` -> ``("Channel", True)``; ``"Channel"`` -> ``("Channel", False)``.
    """
    if not declared:
        return None, False
    match = CONTAINER_RE.match(declared.strip())
    if match:
        return match.group(2).strip(), True
    return declared.strip(), False


def _supported_params(data: dict[str, Any]) -> tuple[Any, ...]:
    # header and form parameters are not sent by the synthesized operations
    kept = []
    for param in data.get("parameters") or ():
        location = param.get("paramType") if isinstance(param, dict) else None
        if location is not None and location not in PARAM_LOCATIONS:
            logger.warning(
                f"Ignoring {location} parameter {param.get('name')!r} "
                f"of operation {data.get('nickname')}"
            )
            continue
        kept.append(param)
    return tuple(kept)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ParameterSpec(_Frozen):
    """One declared operation parameter."""

    name: str
    location: ParamLocation
    required: bool = False
    data_type: str | None = None
    allow_multiple: bool = False
    default_value: Any = None
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "paramType" not in data:
            return data
        return {
            "name": data.get("name"),
            "location": data.get("paramType"),
            "required": bool(data.get("required", False)),
            "data_type": _first(data, "type", "dataType"),
            "allow_multiple": bool(data.get("allowMultiple", False)),
            "default_value": data.get("defaultValue"),
            "description": _first(data, "description", "descr") or "",
        }


class PropertySpec(_Frozen):
    """One property of a model definition."""

    name: str
    data_type: str | None = None
    required: bool = False
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "data_type" in data:
            return data
        return {
            "name": data.get("name"),
            "data_type": _first(data, "type", "dataType"),
            "required": bool(data.get("required", False)),
            "description": _first(data, "description", "descr") or "",
        }


class ModelSpec(_Frozen):
    """A named model: map of property name to its declared type."""

    name: str
    description: str = ""
    extends: str | None = None
    sub_types: tuple[str, ...] = ()
    properties: dict[str, PropertySpec] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "sub_types" in data:
            return data
        raw_props = data.get("properties") or {}
        return {
            "name": _first(data, "name", "id"),
            "description": _first(data, "description", "descr") or "",
            "extends": data.get("extends"),
            "sub_types": tuple(data.get("subTypes") or ()),
            "properties": {
                prop_name: {**prop, "name": prop_name} if isinstance(prop, dict) else prop
                for prop_name, prop in raw_props.items()
            },
        }


class OperationSpec(_Frozen):
    """One operation: method, path template and ordered parameters."""

    name: str
    group: str
    method: str = "GET"
    path: str
    parameters: tuple[ParameterSpec, ...] = ()
    response_class: str | None = None
    summary: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "nickname" not in data:
            return data
        return {
            "name": data.get("nickname"),
            "group": data.get("group"),
            "method": str(_first(data, "httpMethod", "method") or "GET").upper(),
            "path": data.get("path"),
            "parameters": _supported_params(data),
            "response_class": _first(data, "responseClass", "type"),
            "summary": data.get("summary") or "",
        }

    @property
    def placeholders(self) -> list[str]:
        """Names of the ``{placeholders}`` in the path template, in order."""
        return PLACEHOLDER_RE.findall(self.path)

    def params_in(self, location: ParamLocation) -> list[ParameterSpec]:
        return [p for p in self.parameters if p.location == location]


class ResourceGroupDoc(_Frozen):
    """One resource group: its resolved base URL, operations and models."""

    name: str
    base_path: str
    base_url: str
    operations: dict[str, OperationSpec] = Field(default_factory=dict)
    models: dict[str, ModelSpec] = Field(default_factory=dict)


class ApiDescription(_Frozen):
    """The complete, loaded API description.

    Only the loader builds one, and only once every group document has
    been fetched and parsed; ``ready`` is the marker of that.
    """

    url: str
    api_version: str | None = None
    swagger_version: str | None = None
    groups: dict[str, ResourceGroupDoc] = Field(default_factory=dict)
    ready: bool = False

    @property
    def operation_count(self) -> int:
        return sum(len(group.operations) for group in self.groups.values())

    @property
    def models(self) -> dict[str, ModelSpec]:
        """All models across groups. Later groups win on a name clash."""
        merged: dict[str, ModelSpec] = {}
        for group in self.groups.values():
            merged.update(group.models)
        return merged
