"""Audit sink contract and audit-detail rendering.

Excluded attributes are pruned from audit details with a pure tree transform:
``prune_attributes`` returns a pruned copy plus a patch, and
``restore_attributes`` applies the patch to get the original back. Owned
composite sub-entities are walked recursively and patched by their guid.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

import structlog

from Metaport.canonical_json import canonical_json_bytes
from Metaport.identity import ActorIdentity
from Metaport.result import ImportResult
from Metaport.schemas import is_owned_entity

log = structlog.get_logger()


class AuditSink(Protocol):
    async def write(
        self,
        identity: ActorIdentity,
        result: ImportResult,
        started_at: datetime,
        ended_at: datetime,
        creation_order: list[str],
    ) -> None: ...


class ExcludedAttributesCache:
    """Per-type excluded attribute names, resolved lazily from configuration.

    Owned by whichever sink renders audit details; never module-global.
    """

    def __init__(self, config: Mapping[str, list[str]] | None = None) -> None:
        self._config = {k: list(v) for k, v in (config or {}).items()}
        self._resolved: dict[str, frozenset[str]] = {}

    def for_type(self, type_name: str | None) -> frozenset[str]:
        if not type_name:
            return frozenset()
        cached = self._resolved.get(type_name)
        if cached is None:
            cached = frozenset(self._config.get(type_name, ()))
            self._resolved[type_name] = cached
        return cached

    def __len__(self) -> int:
        return len(self._resolved)


def prune_attributes(
    payload: Mapping[str, Any], excluded: ExcludedAttributesCache
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(pruned, patch)`` for an entity payload.

    ``patch`` is ``{"attributes": {name: original}, "owned": {guid: child_patch}}``
    with empty sections omitted; an empty patch means nothing was pruned.
    """
    names = excluded.for_type(payload.get("typeName"))
    attributes = payload.get("attributes") or {}
    pruned_attrs: dict[str, Any] = {}
    removed: dict[str, Any] = {}
    owned: dict[str, Any] = {}

    def _walk(value: Any) -> Any:
        if is_owned_entity(value):
            child, child_patch = prune_attributes(value, excluded)
            if child_patch:
                owned[value["guid"]] = child_patch
            return child
        return value

    for name, value in attributes.items():
        if name in names:
            removed[name] = value
            pruned_attrs[name] = None
        elif isinstance(value, list):
            pruned_attrs[name] = [_walk(item) for item in value]
        else:
            pruned_attrs[name] = _walk(value)

    patch: dict[str, Any] = {}
    if removed:
        patch["attributes"] = removed
    if owned:
        patch["owned"] = owned
    return {**payload, "attributes": pruned_attrs}, patch


def restore_attributes(pruned: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Inverse of ``prune_attributes``: returns a copy with the patch applied."""
    if not patch:
        return dict(pruned)
    removed = patch.get("attributes", {})
    owned = patch.get("owned", {})

    def _walk(value: Any) -> Any:
        if is_owned_entity(value) and value["guid"] in owned:
            return restore_attributes(value, owned[value["guid"]])
        return value

    restored: dict[str, Any] = {}
    for name, value in (pruned.get("attributes") or {}).items():
        if name in removed:
            restored[name] = removed[name]
        elif isinstance(value, list):
            restored[name] = [_walk(item) for item in value]
        else:
            restored[name] = _walk(value)
    return {**pruned, "attributes": restored}


def render_audit_detail(
    payload: Mapping[str, Any],
    excluded: ExcludedAttributesCache,
    *,
    prefix: str,
    max_bytes: int,
) -> str:
    """Serialize an entity for its audit record.

    Excluded attributes are pruned; if the record still exceeds ``max_bytes``
    attribute values are dropped altogether.
    """
    pruned, _ = prune_attributes(payload, excluded)
    detail = prefix + canonical_json_bytes(pruned).decode("utf-8")
    if len(detail.encode("utf-8")) > max_bytes:
        log.warning(
            "audit.detail.too_long",
            type_name=payload.get("typeName"),
            guid=payload.get("guid"),
            size=len(detail.encode("utf-8")),
            max_size=max_bytes,
        )
        stripped = {**pruned, "attributes": {k: None for k in pruned.get("attributes", {})}}
        detail = prefix + canonical_json_bytes(stripped).decode("utf-8")
    return detail
