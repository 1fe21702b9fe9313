"""API description loader.

Fetches the root index (``.../api-docs/resources.json``), then every
resource group document it references, concurrently, and normalizes the
lot into an ApiDescription.

Loading is all-or-nothing: the first failing fetch cancels the others and
raises SpecLoadError. A partially loaded description is never returned.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from ..errors import SpecLoadError, TransportError
from ..transport import Transport
from .schema import ApiDescription, ModelSpec, OperationSpec, ResourceGroupDoc

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "/ari"

_FORMAT_SUFFIX_RE = re.compile(r"\.(\{format\}|json)$")


def resolve_group_url(root_url: str, ref_path: str, spec_format: str = "json") -> str:
    """Turn a group reference from the root index into a document URL.

    ``/api-docs/channels.{format}`` referenced from
    ``http://host/ari/api-docs/resources.json`` resolves to
    ``http://host/ari/api-docs/channels.json``: the documentation prefix
    segment is dropped because the root index already lives under it.
    """
    doc_base = root_url.split("?", 1)[0].rsplit("/", 1)[0]
    segments = ref_path.lstrip("/").split("/", 1)
    relative = segments[1] if len(segments) == 2 else segments[0]
    relative = relative.replace("{format}", spec_format)
    return f"{doc_base}/{relative}"


def resolve_base_url(root_url: str, base_path: str | None) -> str:
    """Resolve a group's declared basePath against the URL the caller used.

    An absolute basePath only contributes its path: the scheme and host are
    always taken from ``root_url``, since the server may advertise its own
    internal address (``http://internal:8088/ari``) while being reached
    through a proxy (``https://public.example.com``).
    """
    root = urlsplit(root_url)
    declared = base_path or DEFAULT_BASE_PATH
    if declared.lower().startswith(("http://", "https://")):
        path = urlsplit(declared).path or DEFAULT_BASE_PATH
    else:
        path = declared if declared.startswith("/") else f"/{declared}"
    return f"{root.scheme}://{root.netloc}{path.rstrip('/')}"


def group_name(resource_path: str) -> str:
    """``/api-docs/channels.{format}`` -> ``channels``."""
    last = resource_path.rstrip("/").rsplit("/", 1)[-1]
    return _FORMAT_SUFFIX_RE.sub("", last)


def parse_group_document(doc: dict[str, Any], *, root_url: str, ref_path: str) -> ResourceGroupDoc:
    """Normalize one group document.

    Raises:
        ValidationError, KeyError, TypeError: If the document is malformed
    """
    name = group_name(doc.get("resourcePath") or ref_path)
    base_url = resolve_base_url(root_url, doc.get("basePath"))

    operations: dict[str, OperationSpec] = {}
    for api in doc.get("apis") or []:
        for op in api.get("operations") or []:
            spec = OperationSpec.model_validate({**op, "path": api["path"], "group": name})
            if spec.name in operations:
                logger.warning(f"Duplicate operation {name}.{spec.name}, keeping the last one")
            operations[spec.name] = spec

    models = {
        model_name: ModelSpec.model_validate({**raw, "name": model_name})
        for model_name, raw in (doc.get("models") or {}).items()
    }

    return ResourceGroupDoc(
        name=name,
        base_path=doc.get("basePath") or DEFAULT_BASE_PATH,
        base_url=base_url,
        operations=operations,
        models=models,
    )


class SpecLoader:
    """Loads an ApiDescription over a Transport."""

    def __init__(self, transport: Transport, spec_format: str = "json"):
        self._transport = transport
        self._spec_format = spec_format

    async def load(self, root_url: str) -> ApiDescription:
        """Fetch and normalize the complete API description.

        Raises:
            SpecLoadError: If the root index or any group document fails
        """
        root = await self._fetch_json(root_url)
        refs = root.get("apis")
        if not isinstance(refs, list):
            raise SpecLoadError("root index has no 'apis' list", url=root_url)

        ref_paths: list[str] = []
        for ref in refs:
            if not isinstance(ref, dict) or not isinstance(ref.get("path"), str):
                raise SpecLoadError(f"invalid group reference: {ref!r}", url=root_url)
            ref_paths.append(ref["path"])

        doc_urls = [resolve_group_url(root_url, p, self._spec_format) for p in ref_paths]
        docs = await self._fetch_all(doc_urls)

        groups: dict[str, ResourceGroupDoc] = {}
        for ref_path, doc_url, doc in zip(ref_paths, doc_urls, docs, strict=True):
            try:
                group = parse_group_document(doc, root_url=root_url, ref_path=ref_path)
            except (ValidationError, KeyError, TypeError, AttributeError) as e:
                raise SpecLoadError(f"invalid group document: {e}", url=doc_url) from e
            groups[group.name] = group
            logger.debug(
                f"Loaded group {group.name}: {len(group.operations)} operations, "
                f"{len(group.models)} models, base {group.base_url}"
            )

        description = ApiDescription(
            url=root_url,
            api_version=root.get("apiVersion"),
            swagger_version=root.get("swaggerVersion"),
            groups=groups,
            ready=True,
        )
        logger.info(
            f"API description loaded from {root_url}: {len(groups)} groups, "
            f"{description.operation_count} operations"
        )
        return description

    async def _fetch_all(self, urls: list[str]) -> list[dict[str, Any]]:
        """Fetch every URL concurrently; the first failure cancels the rest."""
        if not urls:
            return []

        tasks = [asyncio.create_task(self._fetch_json(url)) for url in urls]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        failed = [t for t in tasks if t in done and t.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()  # type: ignore[misc]

        return [t.result() for t in tasks]

    async def _fetch_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self._transport.issue("GET", url, {"Accept": "application/json"})
        except TransportError as e:
            raise SpecLoadError(f"transport failure: {e}", url=url) from e

        if not response.ok:
            raise SpecLoadError("unexpected HTTP status", url=url, status=response.status)

        try:
            data = json.loads(response.body)
        except ValueError as e:
            raise SpecLoadError(f"malformed JSON: {e}", url=url, status=response.status) from e

        if not isinstance(data, dict):
            raise SpecLoadError("expected a JSON object", url=url, status=response.status)
        return data
