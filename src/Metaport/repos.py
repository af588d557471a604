# repos.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from Metaport import models
from Metaport.schemas import Entity, TypeDefinition


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- type definitions ---


def _to_definition(row: models.TypeDefRecord) -> TypeDefinition:
    return TypeDefinition.model_validate(row.definition)


async def get_type_def(s: AsyncSession, name: str) -> TypeDefinition | None:
    row = await s.get(models.TypeDefRecord, name)
    return _to_definition(row) if row is not None else None


async def list_type_defs(s: AsyncSession) -> list[TypeDefinition]:
    rows = (await s.execute(select(models.TypeDefRecord).order_by(models.TypeDefRecord.name))).scalars()
    return [_to_definition(r) for r in rows]


async def type_def_exists(s: AsyncSession, name: str) -> bool:
    q = select(func.count()).select_from(models.TypeDefRecord).where(models.TypeDefRecord.name == name)
    return bool((await s.execute(q)).scalar_one())


async def insert_type_defs(s: AsyncSession, definitions: list[TypeDefinition]) -> None:
    for d in definitions:
        s.add(
            models.TypeDefRecord(
                name=d.name,
                category=d.category.value,
                definition=d.model_dump(mode="json", by_alias=True),
                structural_hash=d.structural_hash(),
            )
        )
    await s.flush()


async def update_type_defs(s: AsyncSession, definitions: list[TypeDefinition]) -> None:
    for d in definitions:
        row = await s.get(models.TypeDefRecord, d.name)
        if row is None:
            raise LookupError(f"type {d.name} does not exist")
        row.definition = d.model_dump(mode="json", by_alias=True)
        row.structural_hash = d.structural_hash()
        row.version = row.version + 1
        row.updated_at = _utcnow()
    await s.flush()


# --- entities ---


async def get_entity(s: AsyncSession, guid: str) -> models.EntityRecord | None:
    return await s.get(models.EntityRecord, guid)


async def upsert_entity(s: AsyncSession, entity: Entity) -> bool:
    """Insert or replace an entity; returns True when it was newly created."""
    payload = entity.to_payload()
    row = await s.get(models.EntityRecord, entity.guid)
    if row is None:
        s.add(
            models.EntityRecord(
                guid=entity.guid,
                type_name=entity.type_name,
                payload=payload,
                content_hash=entity.content_hash(),
                status=entity.status,
            )
        )
        await s.flush()
        return True
    row.type_name = entity.type_name
    row.payload = payload
    row.content_hash = entity.content_hash()
    row.status = entity.status
    row.updated_at = _utcnow()
    await s.flush()
    return False


async def get_entity_payloads(s: AsyncSession, guids: list[str]) -> dict[str, dict[str, Any]]:
    if not guids:
        return {}
    q = select(models.EntityRecord).where(models.EntityRecord.guid.in_(guids))
    return {r.guid: r.payload for r in (await s.execute(q)).scalars()}


async def count_entities(s: AsyncSession) -> int:
    return int((await s.execute(select(func.count()).select_from(models.EntityRecord))).scalar_one())


# --- audits ---


async def write_import_audit(
    s: AsyncSession,
    *,
    import_id: str,
    package_id: str | None,
    user: str,
    host: str | None,
    client_address: str | None,
    status: str,
    metrics: dict[str, int],
    creation_order: list[str],
    result: dict[str, Any],
    start_position: int,
    resume_position: int | None,
    started_at: datetime,
    ended_at: datetime,
) -> models.ImportAudit:
    row = models.ImportAudit(
        import_id=import_id,
        package_id=package_id,
        user=user,
        host=host,
        client_address=client_address,
        status=status,
        metrics=dict(metrics),
        creation_order=list(creation_order),
        result=result,
        start_position=start_position,
        resume_position=resume_position,
        started_at=started_at,
        ended_at=ended_at,
    )
    s.add(row)
    await s.flush()
    return row


async def write_entity_audit(
    s: AsyncSession,
    *,
    import_id: str,
    sequence_no: int,
    entity_guid: str,
    type_name: str | None,
    user: str,
    detail: str,
) -> None:
    s.add(
        models.EntityAudit(
            import_id=import_id,
            sequence_no=sequence_no,
            entity_guid=entity_guid,
            type_name=type_name,
            user=user,
            detail=detail,
        )
    )
    await s.flush()


async def list_import_audits(s: AsyncSession, package_id: str | None = None) -> list[models.ImportAudit]:
    q = select(models.ImportAudit).order_by(models.ImportAudit.id)
    if package_id is not None:
        q = q.where(models.ImportAudit.package_id == package_id)
    return list((await s.execute(q)).scalars())


async def list_entity_audits(s: AsyncSession, import_id: str) -> list[models.EntityAudit]:
    q = (
        select(models.EntityAudit)
        .where(models.EntityAudit.import_id == import_id)
        .order_by(models.EntityAudit.sequence_no)
    )
    return list((await s.execute(q)).scalars())
