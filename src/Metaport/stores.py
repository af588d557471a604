"""SQLAlchemy-backed implementations of the importer's collaborators."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from Metaport import repos
from Metaport.audit import ExcludedAttributesCache, render_audit_detail
from Metaport.config import Settings
from Metaport.db import session_scope
from Metaport.errors import FatalPersistenceError
from Metaport.identity import ActorIdentity
from Metaport.persister import PersistOutcome, PersistStatus
from Metaport.result import ImportResult
from Metaport.schemas import Entity, TypeDefinition

log = structlog.get_logger()

AUDIT_PREFIX = "Imported: "


class SqlTypeDefStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._sm = sessionmaker

    async def get(self, name: str) -> TypeDefinition | None:
        async with session_scope(self._sm) as s:
            return await repos.get_type_def(s, name)

    async def all(self) -> list[TypeDefinition]:
        async with session_scope(self._sm) as s:
            return await repos.list_type_defs(s)

    async def create(self, definitions: list[TypeDefinition]) -> None:
        # One transaction for the whole batch
        async with session_scope(self._sm) as s:
            await repos.insert_type_defs(s, definitions)

    async def update(self, definitions: list[TypeDefinition]) -> None:
        async with session_scope(self._sm) as s:
            await repos.update_type_defs(s, definitions)


class SqlEntityPersister:
    """Writes each entity in its own transaction so progress survives an abort.

    Entities of unknown types and constraint violations are per-entity
    failures; losing the database connection is fatal.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._sm = sessionmaker

    async def persist(self, entity: Entity) -> PersistOutcome:
        try:
            async with session_scope(self._sm) as s:
                if not await repos.type_def_exists(s, entity.type_name):
                    return PersistOutcome(
                        entity.guid, PersistStatus.FAILED, f"unknown type {entity.type_name}"
                    )
                created = await repos.upsert_entity(s, entity)
        except IntegrityError as exc:
            return PersistOutcome(entity.guid, PersistStatus.FAILED, str(exc.orig))
        except OperationalError as exc:
            raise FatalPersistenceError(
                f"entity store unavailable: {exc.orig}", entity_guid=entity.guid
            ) from exc
        return PersistOutcome(
            entity.guid, PersistStatus.CREATED if created else PersistStatus.UPDATED
        )


class SqlAuditSink:
    """Durable home of import results: one run row plus one row per emitted entity."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
        *,
        excluded_attributes: ExcludedAttributesCache | None = None,
        max_detail_bytes: int = 10_485_760,
    ) -> None:
        self._sm = sessionmaker
        self.excluded_attributes = excluded_attributes or ExcludedAttributesCache()
        self.max_detail_bytes = max_detail_bytes

    @classmethod
    def from_settings(
        cls, settings: Settings, sessionmaker: async_sessionmaker[AsyncSession] | None = None
    ) -> SqlAuditSink:
        return cls(
            sessionmaker,
            excluded_attributes=ExcludedAttributesCache(settings.audit_excluded_attributes),
            max_detail_bytes=settings.audit_max_detail_bytes,
        )

    async def write(
        self,
        identity: ActorIdentity,
        result: ImportResult,
        started_at: datetime,
        ended_at: datetime,
        creation_order: list[str],
    ) -> None:
        async with session_scope(self._sm) as s:
            await repos.write_import_audit(
                s,
                import_id=result.import_id,
                package_id=result.package_id,
                user=identity.user,
                host=identity.host,
                client_address=identity.client_address,
                status=result.status.value if result.status else "FAIL",
                metrics=result.metrics,
                creation_order=creation_order,
                result=result.to_dict(),
                start_position=result.start_position,
                resume_position=result.resume_position,
                started_at=started_at,
                ended_at=ended_at,
            )
            failed = set(result.failed_entities)
            payloads = await repos.get_entity_payloads(s, creation_order)
            for seq, guid in enumerate(creation_order, start=1):
                # A stored row for a failed guid is left over from an earlier run
                payload = None if guid in failed else payloads.get(guid)
                if payload is None:
                    # Emitted but never stored by this run
                    detail = AUDIT_PREFIX + guid
                    type_name = None
                else:
                    detail = render_audit_detail(
                        payload,
                        self.excluded_attributes,
                        prefix=AUDIT_PREFIX,
                        max_bytes=self.max_detail_bytes,
                    )
                    type_name = payload.get("typeName")
                await repos.write_entity_audit(
                    s,
                    import_id=result.import_id,
                    sequence_no=seq,
                    entity_guid=guid,
                    type_name=type_name,
                    user=identity.user,
                    detail=detail,
                )
        log.info(
            "audit.import.written",
            import_id=result.import_id,
            status=result.status.value if result.status else None,
            entities=len(creation_order),
        )
