# tests/conftest.py

import os
from collections.abc import AsyncIterator, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Point any app code that falls back to Metaport.db.get_engine at a throwaway
# in-memory database before app modules are imported.
os.environ["METAPORT_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from Metaport.config import Settings  # noqa: E402
from Metaport.db import create_engine_for, create_schema  # noqa: E402
from Metaport.errors import FatalPersistenceError  # noqa: E402
from Metaport.metrics import reset_counters  # noqa: E402
from Metaport.package import build_package  # noqa: E402
from Metaport.persister import PersistOutcome, PersistStatus  # noqa: E402
from Metaport.schemas import (  # noqa: E402
    AttributeDef,
    EnumElementDef,
    Entity,
    PackageInfo,
    TypeCategory,
    TypeDefinition,
    TypesDef,
)


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    eng = create_engine_for("sqlite+aiosqlite:///:memory:")
    await create_schema(eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:", import_temp_directory=None)


# --- package builders ---


def _dataset_types() -> list[TypeDefinition]:
    return [
        TypeDefinition(
            category=TypeCategory.ENUM,
            name="table_kind",
            element_defs=[EnumElementDef(value="MANAGED", ordinal=0), EnumElementDef(value="EXTERNAL", ordinal=1)],
        ),
        TypeDefinition(category=TypeCategory.CLASSIFICATION, name="PII"),
        TypeDefinition(
            category=TypeCategory.ENTITY,
            name="DataSet",
            attribute_defs=[
                AttributeDef(name="qualifiedName", type_name="string", is_optional=False, is_unique=True),
                AttributeDef(name="name", type_name="string"),
                AttributeDef(name="owner", type_name="string"),
            ],
        ),
        TypeDefinition(
            category=TypeCategory.ENTITY,
            name="hive_table",
            super_types=["DataSet"],
            attribute_defs=[
                AttributeDef(name="clusterName", type_name="string"),
                AttributeDef(name="kind", type_name="table_kind"),
            ],
        ),
    ]


@pytest.fixture
def type_definitions() -> list[TypeDefinition]:
    return _dataset_types()


@pytest.fixture
def types_def() -> TypesDef:
    return TypesDef.of(_dataset_types())


def _tables(count: int, cluster: str = "cl1") -> list[Entity]:
    return [
        Entity(
            guid=f"guid-{i:03d}",
            type_name="hive_table",
            attributes={
                "qualifiedName": f"sales.t{i}@{cluster}",
                "name": f"t{i}",
                "clusterName": cluster,
                "owner": None if i % 2 else "etl",
            },
        )
        for i in range(count)
    ]


@pytest.fixture
def entity_factory() -> Callable[..., list[Entity]]:
    return _tables


@pytest.fixture
def package_factory() -> Callable[..., bytes]:
    def _build(
        entities: list[Entity] | None = None,
        *,
        count: int = 5,
        types_def: TypesDef | None = None,
        package_id: str = "pkg-001",
        export_request: dict | None = None,
    ) -> bytes:
        return build_package(
            package_info=PackageInfo(
                package_id=package_id,
                source_server="cl1",
                export_request=export_request or {"itemsToExport": [{"typeName": "hive_db"}]},
            ),
            types_def=types_def if types_def is not None else TypesDef.of(_dataset_types()),
            entities=entities if entities is not None else _tables(count),
        )

    return _build


# --- fake collaborators ---


class FakePersister:
    """Records persisted guids; fails or fatally fails on chosen guids."""

    def __init__(self, *, fail_on=(), fatal_on=(), known=None):
        self.fail_on = set(fail_on)
        self.fatal_on = set(fatal_on)
        self.stored: dict[str, Entity] = dict(known or {})
        self.calls: list[str] = []

    async def persist(self, entity: Entity) -> PersistOutcome:
        self.calls.append(entity.guid)
        if entity.guid in self.fatal_on:
            raise FatalPersistenceError("store went away", entity_guid=entity.guid)
        if entity.guid in self.fail_on:
            return PersistOutcome(entity.guid, PersistStatus.FAILED, "constraint violated")
        created = entity.guid not in self.stored
        self.stored[entity.guid] = entity
        return PersistOutcome(entity.guid, PersistStatus.CREATED if created else PersistStatus.UPDATED)


class FakeAuditSink:
    def __init__(self):
        self.records: list[dict] = []

    async def write(self, identity, result, started_at, ended_at, creation_order):
        self.records.append(
            {
                "identity": identity,
                "result": result,
                "started_at": started_at,
                "ended_at": ended_at,
                "creation_order": list(creation_order),
            }
        )


@pytest.fixture
def persister_factory() -> Callable[..., FakePersister]:
    return FakePersister


@pytest.fixture
def audit_sink() -> FakeAuditSink:
    return FakeAuditSink()
