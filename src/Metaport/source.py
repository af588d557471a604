"""Resumable, position-addressable entity stream over a package container.

Seeking depends only on the immutable container and the requested index or
guid, never on what an earlier run emitted, so a run restarted at a recorded
``resume_position`` continues with exactly the entity that was next.
"""

from __future__ import annotations

from typing import BinaryIO

import structlog

from Metaport.errors import ImporterError, InvalidResumePositionError
from Metaport.package import PackageContainer, open_package
from Metaport.schemas import Entity, PackageInfo, TypesDef
from Metaport.transforms import TransformPipeline

log = structlog.get_logger()


class PackageSource:
    def __init__(self, container: PackageContainer, pipeline: TransformPipeline | None = None):
        self._container = container
        self._pipeline = pipeline or TransformPipeline()
        self._start = 0
        self._cursor = 0
        self._anchored = False
        self._pulled = False
        self._closed = False
        self._creation_order: list[str] = []

    @classmethod
    def open(cls, data: bytes | BinaryIO, *, temp_directory: str | None = None) -> PackageSource:
        return cls(open_package(data, temp_directory=temp_directory))

    # --- package contents ---

    @property
    def package_info(self) -> PackageInfo:
        return self._container.package_info()

    def type_definitions(self) -> TypesDef:
        return self._container.types_def()

    @property
    def entity_count(self) -> int:
        return self._container.entity_count()

    # --- configuration ---

    def install(self, pipeline: TransformPipeline) -> None:
        if self._pulled:
            raise ImporterError("transform pipeline must be installed before the first pull")
        self._pipeline = pipeline

    @property
    def pipeline(self) -> TransformPipeline:
        return self._pipeline

    # --- positioning ---

    @property
    def position(self) -> int:
        """Index of the next entity to emit."""
        return self._cursor

    @property
    def start_position(self) -> int:
        return self._start

    def _check_can_anchor(self) -> None:
        if self._pulled:
            raise InvalidResumePositionError("resume anchor must be applied before the first pull")
        if self._anchored:
            raise InvalidResumePositionError("only one resume anchor may be applied per run")

    def set_position(self, index: int) -> None:
        self._check_can_anchor()
        count = self.entity_count
        if isinstance(index, bool) or not isinstance(index, int) or index < 0 or index > count:
            raise InvalidResumePositionError(
                f"position {index} is out of range for a package of {count} entities",
                reason="out_of_range",
                position=index,
                entity_count=count,
            )
        self._anchored = True
        self._start = self._cursor = index
        log.info("importer.source.position_set", position=index, entity_count=count)

    def set_position_by_entity_id(self, guid: str) -> None:
        self._check_can_anchor()
        index = self._container.index_of(guid)
        if index is None:
            raise InvalidResumePositionError(
                "entity guid not present in package",
                reason="unknown_identifier",
                entity_guid=guid,
            )
        self.set_position(index)

    # --- streaming ---

    def __iter__(self) -> PackageSource:
        return self

    def __next__(self) -> Entity:
        if self._closed:
            raise ImporterError("package source is closed")
        if self._cursor >= self.entity_count:
            raise StopIteration
        self._pulled = True
        entity = self._container.entity_at(self._cursor)
        # A failing stage leaves the cursor on this entity and records nothing
        entity = self._pipeline.apply(entity)
        self._cursor += 1
        self._creation_order.append(entity.guid)
        return entity

    def next_entity(self) -> tuple[Entity | None, bool]:
        try:
            return next(self), True
        except StopIteration:
            return None, False

    def has_next(self) -> bool:
        return self._cursor < self.entity_count

    @property
    def creation_order(self) -> list[str]:
        """Guids emitted in this run, in emission order."""
        return list(self._creation_order)

    def retract(self, guid: str) -> None:
        """Withdraw the last emitted guid after downstream fatally failed on it."""
        if not self._creation_order or self._creation_order[-1] != guid:
            raise ImporterError("only the most recently emitted entity can be retracted", entity_guid=guid)
        self._creation_order.pop()

    @property
    def resume_position(self) -> int:
        """Index a follow-up run should start at to continue this one."""
        return self._start + len(self._creation_order)

    # --- lifecycle ---

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._container.close()
        log.debug("importer.source.closed", emitted=len(self._creation_order))

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> PackageSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
