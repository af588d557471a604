"""Importer error taxonomy.

Every failure the pipeline reports is an ``ImporterError`` with a ``kind`` and a
``context`` mapping naming whatever makes it actionable (option key, type
name, attribute name, entity guid, position).
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    MALFORMED_PACKAGE = "MalformedPackage"
    INVALID_CONFIGURATION = "InvalidConfiguration"
    IMPORT_CONFLICT = "ImportConflict"
    INVALID_RESUME_POSITION = "InvalidResumePosition"
    ENTITY_REJECTED = "EntityRejected"
    TRANSFORM_FAILED = "TransformFailed"
    FATAL_PERSISTENCE = "FatalPersistence"
    INTERNAL = "Internal"


class ImporterError(Exception):
    """Base error for all importer failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return f"{self.kind.value}: {self.message}"
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.kind.value}: {self.message} ({details})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.context}

    @classmethod
    def wrap(cls, exc: BaseException, **context: Any) -> ImporterError:
        """Return ``exc`` if already an ImporterError, otherwise wrap it as INTERNAL."""
        if isinstance(exc, ImporterError):
            return exc
        return ImporterError(f"{type(exc).__name__}: {exc}", **context)


class MalformedPackageError(ImporterError):
    kind = ErrorKind.MALFORMED_PACKAGE


class InvalidConfigurationError(ImporterError):
    kind = ErrorKind.INVALID_CONFIGURATION


class ImportConflictError(ImporterError):
    """An existing type definition would change incompatibly."""

    kind = ErrorKind.IMPORT_CONFLICT

    def __init__(
        self,
        message: str,
        *,
        type_name: str,
        attribute_name: str | None = None,
        existing_type: str | None = None,
        **context: Any,
    ):
        super().__init__(
            message,
            type_name=type_name,
            attribute_name=attribute_name,
            existing_type=existing_type,
            **context,
        )
        self.type_name = type_name
        self.attribute_name = attribute_name
        self.existing_type = existing_type


class InvalidResumePositionError(ImporterError):
    kind = ErrorKind.INVALID_RESUME_POSITION


class EntityRejectedError(ImporterError):
    """Raised by a handler to refuse an entity; aborts the stream."""

    kind = ErrorKind.ENTITY_REJECTED


class TransformError(ImporterError):
    kind = ErrorKind.TRANSFORM_FAILED


class FatalPersistenceError(ImporterError):
    """Raised by a persister when no further entity can be written."""

    kind = ErrorKind.FATAL_PERSISTENCE


# Errors that stop the entity stream but still yield an audited result
STREAM_ABORTS = (EntityRejectedError, TransformError, FatalPersistenceError)


__all__ = [
    "ErrorKind",
    "ImporterError",
    "MalformedPackageError",
    "InvalidConfigurationError",
    "ImportConflictError",
    "InvalidResumePositionError",
    "EntityRejectedError",
    "TransformError",
    "FatalPersistenceError",
    "STREAM_ABORTS",
]
