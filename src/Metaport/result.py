"""Aggregate record of one import run."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from Metaport.identity import ActorIdentity
from Metaport.reconciler import TypeDefVerdict
from Metaport.schemas import ImportRequest


class OperationStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAIL = "FAIL"


class ResultFinalizedError(RuntimeError):
    """Raised when a finalized ImportResult is mutated."""


@dataclass
class ImportResult:
    """Counts, timings and status of a run.

    Mutable while the run is in progress; ``finalize`` freezes the status and
    every later mutation raises ``ResultFinalizedError``.
    """

    request: ImportRequest
    identity: ActorIdentity
    import_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    package_id: str | None = None
    metrics: dict[str, int] = field(default_factory=dict)
    status: OperationStatus | None = None
    creation_order: list[str] = field(default_factory=list)
    type_def_verdicts: list[TypeDefVerdict] = field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    start_position: int = 0
    resume_position: int | None = None
    abort_reason: dict[str, Any] | None = None
    failed_entities: list[str] = field(default_factory=list)
    _finalized: bool = field(default=False, init=False, repr=False)

    def _check_mutable(self) -> None:
        if self._finalized:
            raise ResultFinalizedError(f"import result {self.import_id} is already finalized")

    def increment_metric(self, name: str, by: int = 1) -> None:
        self._check_mutable()
        self.metrics[name] = self.metrics.get(name, 0) + by

    def metric(self, name: str) -> int:
        return self.metrics.get(name, 0)

    def record_type_defs(self, verdicts: list[TypeDefVerdict]) -> None:
        self._check_mutable()
        self.type_def_verdicts = list(verdicts)
        for v in verdicts:
            self.increment_metric(f"typedef:{v.category.lower()}:{v.outcome.value}")

    def abort(self, reason: dict[str, Any]) -> None:
        self._check_mutable()
        self.abort_reason = dict(reason)

    def record_entity_failure(self, guid: str, type_name: str) -> None:
        """Count an entity the persister refused; it stays in the creation order."""
        self._check_mutable()
        self.failed_entities.append(guid)
        self.increment_metric("entity:failed")
        self.increment_metric(f"entity:{type_name}:failed")

    @property
    def persisted(self) -> int:
        return self.metric("entity:created") + self.metric("entity:updated")

    @property
    def finalized(self) -> bool:
        return self._finalized

    def finalize(
        self,
        *,
        creation_order: list[str],
        resume_position: int,
        ended_at: datetime,
    ) -> OperationStatus:
        """Freeze the result: SUCCESS if the stream drained, else PARTIAL_SUCCESS/FAIL."""
        self._check_mutable()
        self.creation_order = list(creation_order)
        self.resume_position = resume_position
        self.ended_at = ended_at
        if self.started_at is not None:
            self.metrics["duration"] = int((ended_at - self.started_at).total_seconds() * 1000)
        if self.abort_reason is None:
            self.status = OperationStatus.SUCCESS
        elif self.persisted > 0:
            self.status = OperationStatus.PARTIAL_SUCCESS
        else:
            self.status = OperationStatus.FAIL
        self._finalized = True
        return self.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "importId": self.import_id,
            "packageId": self.package_id,
            "request": self.request.model_dump(by_alias=True, exclude_none=True),
            "identity": self.identity.to_dict(),
            "status": self.status.value if self.status else None,
            "metrics": dict(sorted(self.metrics.items())),
            "creationOrder": list(self.creation_order),
            "failedEntities": list(self.failed_entities),
            "typeDefs": [
                {"name": v.name, "category": v.category, "outcome": v.outcome.value}
                for v in self.type_def_verdicts
            ],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "startPosition": self.start_position,
            "resumePosition": self.resume_position,
            "abortReason": self.abort_reason,
        }
