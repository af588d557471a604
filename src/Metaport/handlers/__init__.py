"""Programmatic entity handlers.

Handlers are registered by name with ``@entity_handler`` and instantiated per
run from the ``transformers`` option, a JSON list such as::

    [{"name": "replace_cluster_name", "params": {"from": "cl1", "to": "cl2"}},
     "strip_classifications"]

Every handler of a run shares one read-only ``HandlerContext``. A handler sees
only the entity it is given and keeps no state between entities.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, ValidationError

from Metaport.errors import InvalidConfigurationError
from Metaport.schemas import TRANSFORMERS_KEY, Entity, ImportRequest, PackageInfo
from Metaport.typedefs import TypeRegistry


@dataclass(frozen=True)
class HandlerContext:
    type_registry: TypeRegistry
    package_info: PackageInfo
    request: ImportRequest

    @property
    def export_request(self) -> dict[str, Any]:
        """The request that produced the package on the exporting side."""
        return dict(self.package_info.export_request)


class HandlerParams(BaseModel):
    """Base for handler parameters; extend per handler."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class EntityHandler:
    """Base class for handlers. Subclasses override ``transform``."""

    name: str = ""

    def __init__(self, params: HandlerParams, context: HandlerContext) -> None:
        self.params = params
        self.context = context

    def transform(self, entity: Entity) -> Entity:
        return entity


@dataclass
class HandlerSpec:
    name: str
    params_model: type[HandlerParams]
    factory: type[EntityHandler]


_REGISTRY: dict[str, HandlerSpec] = {}


def entity_handler(
    name: str, params_model: type[HandlerParams] = HandlerParams
) -> Callable[[type[EntityHandler]], type[EntityHandler]]:
    def wrap(cls: type[EntityHandler]) -> type[EntityHandler]:
        cls.name = name
        _REGISTRY[name] = HandlerSpec(name, params_model, cls)
        return cls

    return wrap


def all_handlers() -> dict[str, HandlerSpec]:
    return dict(_REGISTRY)


def find_handler(name: str) -> HandlerSpec | None:
    return _REGISTRY.get(name)


def build_handlers(text: str | None, context: HandlerContext) -> list[EntityHandler]:
    """Instantiate handlers from the ``transformers`` option, in declared order."""
    if text is None or not text.strip():
        return []
    try:
        raw = orjson.loads(text)
    except orjson.JSONDecodeError as exc:
        raise InvalidConfigurationError(
            f"transformers is not valid JSON: {exc}", option=TRANSFORMERS_KEY
        ) from exc
    if not isinstance(raw, list):
        raise InvalidConfigurationError(
            "transformers must be a list of handlers", option=TRANSFORMERS_KEY
        )

    handlers: list[EntityHandler] = []
    for position, item in enumerate(raw):
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, Mapping) or not isinstance(item.get("name"), str):
            raise InvalidConfigurationError(
                "each handler needs a name", option=TRANSFORMERS_KEY, position=position
            )
        spec = find_handler(item["name"])
        if spec is None:
            raise InvalidConfigurationError(
                f"unknown handler {item['name']!r}", option=TRANSFORMERS_KEY, position=position
            )
        try:
            params = spec.params_model.model_validate(item.get("params") or {})
        except ValidationError as exc:
            raise InvalidConfigurationError(
                f"invalid params for handler {spec.name}: {exc.errors()[0]['msg']}",
                option=TRANSFORMERS_KEY,
                position=position,
            ) from exc
        handlers.append(spec.factory(params, context))
    return handlers


# Register built-in handlers
from Metaport.handlers import builtin as _builtin  # noqa: E402,F401

__all__ = [
    "HandlerContext",
    "HandlerParams",
    "EntityHandler",
    "entity_handler",
    "all_handlers",
    "find_handler",
    "build_handlers",
]
