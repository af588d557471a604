"""Type-definition reconciliation against the live type-def store.

Policy per bundled definition:

- absent from the store             -> CREATED
- structurally identical            -> SKIPPED
- only additive differences         -> UPDATED
  (new optional attributes, new enum elements)
- an existing attribute's type or the definition's category changes, or a new
  mandatory attribute appears                               -> REJECTED

``updateTypeDefinition == "false"`` bypasses all of this; any other value,
including an absent option, reconciles.

Verdicts for every definition are decided before anything is written. One
REJECTED verdict raises ``ImportConflictError`` and leaves the store untouched.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import structlog

from Metaport.errors import ImportConflictError, MalformedPackageError
from Metaport.metrics import inc_counter
from Metaport.schemas import EnumElementDef, TypeDefinition, TypesDef
from Metaport.typedefs import TypeDefStore

log = structlog.get_logger()


class ReconciliationOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TypeDefVerdict:
    name: str
    category: str
    outcome: ReconciliationOutcome
    definition: TypeDefinition | None = None
    attribute_name: str | None = None
    existing_type: str | None = None
    reason: str | None = None


def _merge_additions(existing: TypeDefinition, incoming: TypeDefinition) -> TypeDefinition | None:
    """Existing definition extended with whatever ``incoming`` adds, or None if nothing."""
    new_attrs = [a for a in incoming.attribute_defs if existing.attribute(a.name) is None]

    known = set(existing.element_values())
    used = {e.ordinal for e in existing.element_defs if e.ordinal is not None}
    new_elements: list[EnumElementDef] = []
    for element in incoming.element_defs:
        if element.value in known:
            continue
        known.add(element.value)
        ordinal = element.ordinal
        if ordinal is None or ordinal in used:
            ordinal = max(used, default=-1) + 1
        used.add(ordinal)
        new_elements.append(element.model_copy(update={"ordinal": ordinal}))

    if not new_attrs and not new_elements:
        return None
    return existing.model_copy(
        update={
            "attribute_defs": [*existing.attribute_defs, *new_attrs],
            "element_defs": [*existing.element_defs, *new_elements],
        }
    )


def compare(existing: TypeDefinition | None, incoming: TypeDefinition) -> TypeDefVerdict:
    category = incoming.category.value
    if existing is None:
        return TypeDefVerdict(incoming.name, category, ReconciliationOutcome.CREATED, incoming)

    if existing.category != incoming.category:
        return TypeDefVerdict(
            incoming.name,
            category,
            ReconciliationOutcome.REJECTED,
            existing_type=existing.category.value,
            reason=f"category would change from {existing.category.value} to {category}",
        )

    if existing.structural_hash() == incoming.structural_hash():
        return TypeDefVerdict(
            incoming.name, category, ReconciliationOutcome.SKIPPED, reason="identical"
        )

    for attr in incoming.attribute_defs:
        current = existing.attribute(attr.name)
        if current is not None and current.type_name != attr.type_name:
            return TypeDefVerdict(
                incoming.name,
                category,
                ReconciliationOutcome.REJECTED,
                attribute_name=attr.name,
                existing_type=current.type_name,
                reason=f"attribute type would change from {current.type_name} to {attr.type_name}",
            )
    for attr in incoming.attribute_defs:
        if not attr.is_optional and existing.attribute(attr.name) is None:
            # Instances already stored have no value for it
            return TypeDefVerdict(
                incoming.name,
                category,
                ReconciliationOutcome.REJECTED,
                attribute_name=attr.name,
                reason=f"new attribute {attr.name} is mandatory",
            )

    merged = _merge_additions(existing, incoming)
    if merged is None:
        return TypeDefVerdict(
            incoming.name, category, ReconciliationOutcome.SKIPPED, reason="no additive change"
        )
    return TypeDefVerdict(incoming.name, category, ReconciliationOutcome.UPDATED, merged)


class TypeDefReconciler:
    """Decides and applies the fate of every type definition bundled in a package."""

    def __init__(self, store: TypeDefStore) -> None:
        self.store = store

    async def plan(self, types_def: TypesDef) -> list[TypeDefVerdict]:
        seen: set[str] = set()
        verdicts: list[TypeDefVerdict] = []
        for incoming in types_def.definitions():
            if incoming.name in seen:
                raise MalformedPackageError(
                    "type definition bundled more than once", type_name=incoming.name
                )
            seen.add(incoming.name)
            existing = await self.store.get(incoming.name)
            verdicts.append(compare(existing, incoming))
        return verdicts

    async def reconcile(self, types_def: TypesDef, update_flag: str | None) -> list[TypeDefVerdict]:
        """Reconcile bundled definitions; ``update_flag == "false"`` skips entirely.

        An absent flag behaves like ``"true"``.

        Raises:
            ImportConflictError: If any definition is REJECTED; nothing is written
        """
        if update_flag == "false":
            log.info("importer.typedefs.reconciliation_skipped", bundled=types_def.count())
            return []

        verdicts = await self.plan(types_def)

        rejected = [v for v in verdicts if v.outcome is ReconciliationOutcome.REJECTED]
        if rejected:
            first = rejected[0]
            inc_counter("importer.typedefs.rejected", len(rejected))
            log.error(
                "importer.typedefs.rejected",
                conflicts=[
                    {"type_name": v.name, "attribute_name": v.attribute_name, "existing_type": v.existing_type}
                    for v in rejected
                ],
            )
            raise ImportConflictError(
                f"type {first.name}: {first.reason}",
                type_name=first.name,
                attribute_name=first.attribute_name,
                existing_type=first.existing_type,
                conflicts=len(rejected),
            )

        creates = [v.definition for v in verdicts if v.outcome is ReconciliationOutcome.CREATED]
        updates = [v.definition for v in verdicts if v.outcome is ReconciliationOutcome.UPDATED]
        if creates:
            await self.store.create([d for d in creates if d is not None])
        if updates:
            await self.store.update([d for d in updates if d is not None])

        for v in verdicts:
            inc_counter(f"importer.typedefs.{v.outcome.value}")
            log.debug(f"importer.typedef.{v.outcome.value}", type_name=v.name, category=v.category, reason=v.reason)
        log.info(
            "importer.typedefs.reconciled",
            created=len(creates),
            updated=len(updates),
            skipped=len(verdicts) - len(creates) - len(updates),
        )
        return verdicts
