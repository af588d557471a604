"""Package import orchestration.

``ImportService.run`` drives one import end to end:

1. validate the request (before any container I/O)
2. open the package as a ``PackageSource``
3. install the transform pipeline from the request options
4. reconcile bundled type definitions against the type-def store
5. apply the resume anchor, if any
6. stream entities into the persister, counting per-entity failures
7. finalize the ``ImportResult`` and hand it to the audit sink
8. close the source on every exit path

Errors before the first persisted entity propagate as ``ImporterError`` with
no entity side effects. Once streaming has begun, any error (fatal persister
signal, rejected entity, failed transform, unreadable entry, or an exception
the persister did not classify) and cancellation end the stream and are
reported through the result status instead. The result is still audited.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Mapping

import structlog
from structlog.contextvars import bound_contextvars

from Metaport.audit import AuditSink
from Metaport.config import Settings, load_settings
from Metaport.errors import (
    STREAM_ABORTS,
    FatalPersistenceError,
    ImporterError,
    InvalidConfigurationError,
)
from Metaport.handlers import HandlerContext
from Metaport.identity import ActorIdentity, run_as
from Metaport.metrics import inc_counter, observe_histogram
from Metaport.package import PackageContainer, open_package
from Metaport.persister import EntityPersister, FailurePolicy
from Metaport.reconciler import ReconciliationOutcome, TypeDefReconciler
from Metaport.result import ImportResult
from Metaport.schemas import ImportRequest
from Metaport.source import PackageSource
from Metaport.transforms import TransformPipeline
from Metaport.typedefs import TypeDefStore, TypeRegistry

log = structlog.get_logger()

ContainerOpener = Callable[..., PackageContainer]


class CancelToken:
    """Caller-side abort switch, honored between entities. Safe across threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ImportService:
    def __init__(
        self,
        type_def_store: TypeDefStore,
        persister: EntityPersister,
        audit_sink: AuditSink,
        *,
        settings: Settings | None = None,
        failure_policy: FailurePolicy | None = None,
        container_opener: ContainerOpener = open_package,
    ) -> None:
        self.type_def_store = type_def_store
        self.persister = persister
        self.audit_sink = audit_sink
        self.settings = settings or load_settings()
        self.failure_policy = failure_policy or FailurePolicy.from_settings(self.settings)
        self._open_container = container_opener

    async def run(
        self,
        package: bytes | BinaryIO,
        request: ImportRequest | Mapping[str, Any] | None,
        identity: ActorIdentity,
        *,
        cancel: CancelToken | None = None,
    ) -> ImportResult:
        """Import a package supplied as bytes or a binary stream."""
        request = ImportRequest.parse(request)
        source: PackageSource | None = None
        log.info("importer.run.start", user=identity.user, client=identity.client_address)
        try:
            source = PackageSource(
                self._open_container(package, temp_directory=self.settings.import_temp_directory)
            )
            return await self.run_source(source, request, identity, cancel=cancel)
        except ImporterError as exc:
            inc_counter("importer.failed")
            log.error("importer.failed", user=identity.user, **exc.to_dict())
            raise
        except Exception as exc:
            inc_counter("importer.failed")
            log.error("importer.failed", user=identity.user, exc_info=True)
            raise ImporterError.wrap(exc) from exc
        finally:
            if source is not None:
                source.close()

    async def run_file(
        self,
        request: ImportRequest | Mapping[str, Any],
        identity: ActorIdentity,
        *,
        cancel: CancelToken | None = None,
    ) -> ImportResult:
        """Import the package named by ``request.file_name``."""
        request = ImportRequest.parse(request)
        file_name = (request.file_name or "").strip()
        if not file_name:
            raise InvalidConfigurationError("fileName parameter not found", option="fileName")

        log.info("importer.run_file", user=identity.user, file_name=file_name)
        try:
            stream = Path(file_name).open("rb")
        except FileNotFoundError as exc:
            raise InvalidConfigurationError(f"{file_name}: file not found", option="fileName") from exc
        except OSError as exc:
            raise InvalidConfigurationError(f"{file_name}: {exc.strerror}", option="fileName") from exc
        with stream:
            return await self.run(stream, request, identity, cancel=cancel)

    async def run_source(
        self,
        source: PackageSource,
        request: ImportRequest,
        identity: ActorIdentity,
        *,
        cancel: CancelToken | None = None,
    ) -> ImportResult:
        """Run the pipeline over an already opened source. The caller closes it."""
        result = ImportResult(
            request=request, identity=identity, package_id=source.package_info.package_id
        )
        with bound_contextvars(
            import_id=result.import_id, package_id=result.package_id, user=identity.user
        ):
            inc_counter("importer.runs")

            registry = await TypeRegistry.load(self.type_def_store)
            context = HandlerContext(
                type_registry=registry, package_info=source.package_info, request=request
            )
            source.install(TransformPipeline.from_request(request, context))

            reconciler = TypeDefReconciler(self.type_def_store)
            verdicts = await reconciler.reconcile(
                source.type_definitions(), request.update_type_definition
            )
            result.record_type_defs(verdicts)
            if any(
                v.outcome in (ReconciliationOutcome.CREATED, ReconciliationOutcome.UPDATED)
                for v in verdicts
            ):
                # Handlers see the registry as it stands after reconciliation
                registry.replace_all(await self.type_def_store.all())

            self._apply_resume_anchor(request, source)
            result.start_position = source.start_position

            started_at = _now()
            result.started_at = started_at
            await self._drain(source, result, cancel)
            ended_at = _now()

            status = result.finalize(
                creation_order=source.creation_order,
                resume_position=source.resume_position,
                ended_at=ended_at,
            )
            observe_histogram("importer.duration_ms", result.metric("duration"))
            inc_counter(f"importer.status.{status.value.lower()}")

            await run_as(
                identity,
                lambda who: self.audit_sink.write(
                    who, result, started_at, ended_at, result.creation_order
                ),
            )
            log.info(
                "importer.run.complete",
                status=status.value,
                emitted=len(result.creation_order),
                resume_position=result.resume_position,
                metrics=result.metrics,
            )
            return result

    def _apply_resume_anchor(self, request: ImportRequest, source: PackageSource) -> None:
        if request.start_guid is not None:
            source.set_position_by_entity_id(request.start_guid)
        elif request.start_position is not None:
            source.set_position(request.start_position)

    async def _drain(
        self, source: PackageSource, result: ImportResult, cancel: CancelToken | None
    ) -> None:
        while True:
            if cancel is not None and cancel.cancelled:
                inc_counter("importer.cancelled")
                log.warning("importer.run.cancelled", position=source.position)
                result.abort(
                    {"kind": "Cancelled", "message": "import cancelled", "position": source.position}
                )
                return

            try:
                entity, ok = source.next_entity()
            except STREAM_ABORTS as exc:
                self._abort(result, "importer.stream.aborted", exc, source.position)
                return
            except Exception as exc:
                self._abort(result, "importer.stream.failed", exc, source.position, exc_info=True)
                return
            if not ok or entity is None:
                return

            try:
                outcome = await self.persister.persist(entity)
            except FatalPersistenceError as exc:
                source.retract(entity.guid)
                self._abort(result, "importer.persister.fatal", exc, source.resume_position)
                return
            except Exception as exc:
                # Unknown whether it was stored, so a resumed run retries it
                source.retract(entity.guid)
                self._abort(
                    result,
                    "importer.persister.failed",
                    ImporterError.wrap(exc, entity_guid=entity.guid),
                    source.resume_position,
                    exc_info=True,
                )
                return

            if outcome.ok:
                result.increment_metric(f"entity:{outcome.status.value}")
                result.increment_metric(f"entity:{entity.type_name}:{outcome.status.value}")
                inc_counter("importer.entities.persisted")
                continue

            result.record_entity_failure(entity.guid, entity.type_name)
            inc_counter("importer.entities.failed")
            log.warning(
                "importer.entity.failed",
                entity_guid=entity.guid,
                type_name=entity.type_name,
                reason=outcome.message,
            )
            if not self.failure_policy.continue_on_entity_error:
                result.abort(
                    {
                        "kind": "EntityFailed",
                        "message": outcome.message,
                        "entity_guid": entity.guid,
                        "position": source.resume_position,
                    }
                )
                return

    @staticmethod
    def _abort(
        result: ImportResult, event: str, exc: BaseException, position: int, *, exc_info: bool = False
    ) -> None:
        """End the stream on ``exc``; the run is still finalized and audited."""
        reason = {**ImporterError.wrap(exc).to_dict(), "position": position}
        inc_counter("importer.aborted")
        log.error(event, exc_info=exc_info, **reason)
        result.abort(reason)


__all__ = ["CancelToken", "ImportService"]
