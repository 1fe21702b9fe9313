"""API description handling: schema, loader and operation synthesis."""

from .loader import SpecLoader, resolve_base_url, resolve_group_url
from .operations import Operation, ResourceGroupApi, ResultHook, synthesize
from .schema import (
    ApiDescription,
    ModelSpec,
    OperationSpec,
    ParameterSpec,
    PropertySpec,
    ResourceGroupDoc,
    split_type,
)

__all__ = [
    "ApiDescription",
    "ModelSpec",
    "Operation",
    "OperationSpec",
    "ParameterSpec",
    "PropertySpec",
    "ResourceGroupApi",
    "ResourceGroupDoc",
    "ResultHook",
    "SpecLoader",
    "resolve_base_url",
    "resolve_group_url",
    "split_type",
    "synthesize",
]
