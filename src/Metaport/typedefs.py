"""Type registry view and the type-def store contract.

``TypeDefStore`` is the durable, async source of truth. ``TypeRegistry`` is the
synchronous read view the pipeline hands to handlers; the importer refreshes it
from the store once reconciliation has finished writing.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from Metaport.schemas import AttributeDef, TypeCategory, TypeDefinition


class TypeDefStore(Protocol):
    async def get(self, name: str) -> TypeDefinition | None: ...

    async def all(self) -> list[TypeDefinition]: ...

    async def create(self, definitions: list[TypeDefinition]) -> None: ...

    async def update(self, definitions: list[TypeDefinition]) -> None: ...


class InMemoryTypeDefStore:
    """Dict-backed store; useful for embedding and tests."""

    def __init__(self, definitions: Iterable[TypeDefinition] = ()) -> None:
        self._defs: dict[str, TypeDefinition] = {d.name: d for d in definitions}
        self.writes: list[tuple[str, str]] = []

    async def get(self, name: str) -> TypeDefinition | None:
        return self._defs.get(name)

    async def all(self) -> list[TypeDefinition]:
        return list(self._defs.values())

    async def create(self, definitions: list[TypeDefinition]) -> None:
        for d in definitions:
            if d.name in self._defs:
                raise ValueError(f"type {d.name} already exists")
        for d in definitions:
            self._defs[d.name] = d
            self.writes.append(("create", d.name))

    async def update(self, definitions: list[TypeDefinition]) -> None:
        for d in definitions:
            if d.name not in self._defs:
                raise ValueError(f"type {d.name} does not exist")
        for d in definitions:
            self._defs[d.name] = d
            self.writes.append(("update", d.name))


class TypeRegistry:
    """Read-only lookups over a snapshot of type definitions."""

    def __init__(self, definitions: Iterable[TypeDefinition] = ()) -> None:
        self._defs: dict[str, TypeDefinition] = {}
        self.replace_all(definitions)

    def replace_all(self, definitions: Iterable[TypeDefinition]) -> None:
        self._defs = {d.name: d for d in definitions}

    @classmethod
    async def load(cls, store: TypeDefStore) -> TypeRegistry:
        return cls(await store.all())

    def get(self, name: str) -> TypeDefinition | None:
        return self._defs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._defs

    def names(self, category: TypeCategory | None = None) -> list[str]:
        return sorted(
            n for n, d in self._defs.items() if category is None or d.category == category
        )

    def is_a(self, type_name: str, ancestor: str) -> bool:
        """True if ``type_name`` is ``ancestor`` or inherits from it."""
        seen: set[str] = set()
        pending = [type_name]
        while pending:
            current = pending.pop()
            if current == ancestor:
                return True
            if current in seen:
                continue
            seen.add(current)
            d = self._defs.get(current)
            if d is not None:
                pending.extend(d.super_types)
        return False

    def attribute_def(self, type_name: str, attribute: str) -> AttributeDef | None:
        """Resolve an attribute on a type or any of its super types."""
        seen: set[str] = set()
        pending = [type_name]
        while pending:
            current = pending.pop(0)
            if current in seen:
                continue
            seen.add(current)
            d = self._defs.get(current)
            if d is None:
                continue
            found = d.attribute(attribute)
            if found is not None:
                return found
            pending.extend(d.super_types)
        return None
