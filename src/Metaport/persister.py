"""Entity persistence contract and the per-entity failure policy."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from Metaport.config import Settings
from Metaport.schemas import Entity


class PersistStatus(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class PersistOutcome:
    guid: str
    status: PersistStatus
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not PersistStatus.FAILED


class EntityPersister(Protocol):
    async def persist(self, entity: Entity) -> PersistOutcome:
        """Write one entity.

        Returns a FAILED outcome for a per-entity problem; raises
        ``FatalPersistenceError`` when nothing further can be written.
        """
        ...


@dataclass(frozen=True)
class FailurePolicy:
    """How per-entity persistence failures affect the run.

    With ``continue_on_entity_error`` (the default) failures are counted and
    the stream continues; otherwise the first failure aborts the stream.
    """

    continue_on_entity_error: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> FailurePolicy:
        return cls(continue_on_entity_error=settings.import_continue_on_entity_error)
