"""Package container: zip bundle of type definitions plus ordered entities.

Layout::

    package-info.json     PackageInfo (package id, originating export request)
    typesdef.json         TypesDef grouped by category
    export-order.json     list of entity guids in sequence order
    entities/<guid>.json  one Entity payload per guid

The container is immutable once built; every lookup is by sequence index or
guid, so reopening a package and seeking reproduces the same entity.
"""

from __future__ import annotations

import io
import os
import tempfile
import zipfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any, BinaryIO, Protocol

import orjson
import structlog
from pydantic import ValidationError

from Metaport.errors import MalformedPackageError
from Metaport.schemas import Entity, PackageInfo, TypesDef

log = structlog.get_logger()

PACKAGE_INFO_ENTRY = "package-info.json"
TYPESDEF_ENTRY = "typesdef.json"
EXPORT_ORDER_ENTRY = "export-order.json"
ENTITY_ENTRY_PREFIX = "entities/"


class PackageContainer(Protocol):
    def package_info(self) -> PackageInfo: ...

    def types_def(self) -> TypesDef: ...

    def entity_count(self) -> int: ...

    def entity_at(self, index: int) -> Entity: ...

    def index_of(self, guid: str) -> int | None: ...

    def close(self) -> None: ...


def _entity_entry(guid: str) -> str:
    return f"{ENTITY_ENTRY_PREFIX}{guid}.json"


class ZipPackageContainer:
    """Random-access reader over a zip package.

    When ``backing_file`` is set the zip lives in a spooled temp file that is
    removed on ``close()``.
    """

    def __init__(self, fileobj: BinaryIO, *, backing_file: str | None = None):
        self._fileobj = fileobj
        self._backing_file = backing_file
        self._closed = False
        try:
            self._zip = zipfile.ZipFile(fileobj)
        except (zipfile.BadZipFile, OSError) as exc:
            fileobj.close()
            self._release_backing()
            raise MalformedPackageError(f"package is not a readable zip archive: {exc}") from exc
        try:
            self._info = PackageInfo.model_validate(self._read_json(PACKAGE_INFO_ENTRY))
            self._types = TypesDef.model_validate(self._read_json(TYPESDEF_ENTRY, default={}))
            order = self._read_json(EXPORT_ORDER_ENTRY)
        except ValidationError as exc:
            self.close()
            raise MalformedPackageError(f"package metadata is invalid: {exc.errors()[0]['msg']}") from exc
        except MalformedPackageError:
            self.close()
            raise
        if not isinstance(order, list) or not all(isinstance(g, str) for g in order):
            self.close()
            raise MalformedPackageError(f"{EXPORT_ORDER_ENTRY} must be a list of guids")
        self._order: list[str] = order
        self._index: dict[str, int] = {}
        for i, guid in enumerate(order):
            if guid in self._index:
                self.close()
                raise MalformedPackageError("duplicate guid in export order", entity_guid=guid)
            self._index[guid] = i

    def _read_json(self, name: str, default: Any = None) -> Any:
        try:
            raw = self._zip.read(name)
        except KeyError:
            if default is not None:
                return default
            raise MalformedPackageError(f"missing package entry {name}") from None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise MalformedPackageError(f"entry {name} is not valid JSON: {exc}") from exc

    def package_info(self) -> PackageInfo:
        return self._info

    def types_def(self) -> TypesDef:
        return self._types

    def entity_count(self) -> int:
        return len(self._order)

    def entity_at(self, index: int) -> Entity:
        guid = self._order[index]
        payload = self._read_json(_entity_entry(guid))
        try:
            entity = Entity.model_validate(payload)
        except ValidationError as exc:
            raise MalformedPackageError(
                f"entity entry is invalid: {exc.errors()[0]['msg']}", entity_guid=guid
            ) from exc
        if entity.guid != guid:
            raise MalformedPackageError(
                "entity guid does not match its export order slot",
                entity_guid=guid,
                position=index,
            )
        return entity

    def index_of(self, guid: str) -> int | None:
        return self._index.get(guid)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        zf = getattr(self, "_zip", None)
        if zf is not None:
            zf.close()
        self._fileobj.close()
        self._release_backing()

    @property
    def closed(self) -> bool:
        return self._closed

    def _release_backing(self) -> None:
        if self._backing_file is None:
            return
        try:
            os.unlink(self._backing_file)
        except FileNotFoundError:
            pass
        log.debug("package.backing_file.removed", path=self._backing_file)
        self._backing_file = None


def open_package(
    data: bytes | BinaryIO, *, temp_directory: str | None = None
) -> ZipPackageContainer:
    """Open a package from raw bytes or a binary stream.

    With ``temp_directory`` the stream is spooled to disk there rather than
    held in memory.
    """
    if temp_directory:
        os.makedirs(temp_directory, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="metaport-", suffix=".zip", dir=temp_directory)
        with os.fdopen(fd, "wb") as out:
            if isinstance(data, bytes | bytearray):
                out.write(data)
            else:
                for chunk in iter(lambda: data.read(1 << 20), b""):
                    out.write(chunk)
        log.debug("package.spooled", path=path)
        return ZipPackageContainer(open(path, "rb"), backing_file=path)

    if isinstance(data, bytes | bytearray):
        return ZipPackageContainer(io.BytesIO(data))
    return ZipPackageContainer(io.BytesIO(data.read()))


def write_package(
    target: BinaryIO | Path | str,
    *,
    package_info: PackageInfo | dict[str, Any],
    types_def: TypesDef | dict[str, Any] | None = None,
    entities: Iterable[Entity | dict[str, Any]] = (),
) -> None:
    """Write a package zip; entity order is the iteration order of ``entities``."""
    info = (
        package_info
        if isinstance(package_info, PackageInfo)
        else PackageInfo.model_validate(package_info)
    )
    types = (
        types_def
        if isinstance(types_def, TypesDef)
        else TypesDef.model_validate(types_def or {})
    )
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        order: list[str] = []
        for item in entities:
            entity = item if isinstance(item, Entity) else Entity.model_validate(item)
            order.append(entity.guid)
            zf.writestr(_entity_entry(entity.guid), orjson.dumps(entity.to_payload()))
        zf.writestr(PACKAGE_INFO_ENTRY, orjson.dumps(info.model_dump(by_alias=True)))
        zf.writestr(
            TYPESDEF_ENTRY,
            orjson.dumps(types.model_dump(by_alias=True, mode="json")),
        )
        zf.writestr(EXPORT_ORDER_ENTRY, orjson.dumps(order))


def build_package(**kwargs: Any) -> bytes:
    """In-memory variant of ``write_package``."""
    buf = io.BytesIO()
    write_package(buf, **kwargs)
    return buf.getvalue()


__all__ = [
    "PackageContainer",
    "ZipPackageContainer",
    "open_package",
    "write_package",
    "build_package",
]
