"""Declarative attribute transforms and the per-entity transform pipeline.

The ``transforms`` option is a JSON object::

    {
      "hive_table": {"qualifiedName": ["replace:@cl1$:@cl2"]},
      "*":          {"owner": ["default:etl"]}
    }

Rules, applied in listed order:

- ``set:<value>``                      constant replace
- ``replace:<regex>:<replacement>``    regex rewrite (``\\:`` escapes a colon in the regex)
- ``default:<value>``                  set only if the attribute is absent or null
- ``lowercase`` / ``uppercase``        case folding of string values
- ``clear``                            set the attribute to null

Rules for ``"*"`` run before type-specific rules. String rules also apply to
each string element of a list attribute.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import orjson
import structlog

from Metaport.errors import EntityRejectedError, ImporterError, InvalidConfigurationError, TransformError
from Metaport.handlers import EntityHandler, HandlerContext, build_handlers
from Metaport.schemas import TRANSFORMS_KEY, AttributeKind, Entity, ImportRequest, classify_value

log = structlog.get_logger()

WILDCARD_TYPE = "*"


def _split_unescaped(text: str) -> tuple[str, str] | None:
    """Split on the first colon not preceded by a backslash."""
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text) and text[i + 1] == ":":
            i += 2
            continue
        if text[i] == ":":
            return text[:i].replace("\\:", ":"), text[i + 1 :]
        i += 1
    return None


def _map_strings(value: Any, fn: Callable[[str], str]) -> Any:
    kind = classify_value(value)
    if kind is AttributeKind.SCALAR and isinstance(value, str):
        return fn(value)
    if kind is AttributeKind.COLLECTION:
        return [fn(v) if isinstance(v, str) else v for v in value]
    # References and structs are left alone
    return value


@dataclass(frozen=True)
class AttributeRule:
    action: str
    value: str | None = None
    pattern: re.Pattern[str] | None = None

    def _compiled(self) -> re.Pattern[str]:
        if self.pattern is None:
            raise TransformError("replace rule has no pattern", rule=self.action)
        return self.pattern

    def apply(self, attributes: dict[str, Any], name: str) -> None:
        if self.action == "set":
            attributes[name] = self.value
        elif self.action == "default":
            if attributes.get(name) is None:
                attributes[name] = self.value
        elif self.action == "clear":
            if name in attributes:
                attributes[name] = None
        elif name in attributes:
            if self.action == "replace":
                pattern = self._compiled()
                attributes[name] = _map_strings(
                    attributes[name], lambda s: pattern.sub(self.value or "", s)
                )
            elif self.action == "lowercase":
                attributes[name] = _map_strings(attributes[name], str.lower)
            elif self.action == "uppercase":
                attributes[name] = _map_strings(attributes[name], str.upper)

    def describe(self) -> str:
        if self.action == "replace":
            return f"replace:{self._compiled().pattern}:{self.value}"
        if self.value is not None:
            return f"{self.action}:{self.value}"
        return self.action


def parse_rule(text: str) -> AttributeRule:
    """Parse one rule string; raises ValueError on malformed rules."""
    if not isinstance(text, str) or not text:
        raise ValueError(f"rule must be a non-empty string, got {text!r}")
    if text in ("lowercase", "uppercase", "clear"):
        return AttributeRule(action=text)
    action, sep, rest = text.partition(":")
    if not sep:
        raise ValueError(f"unknown rule {text!r}")
    if action in ("set", "default"):
        return AttributeRule(action=action, value=rest)
    if action == "replace":
        parts = _split_unescaped(rest)
        if parts is None:
            raise ValueError(f"replace rule needs '<regex>:<replacement>': {text!r}")
        pattern, replacement = parts
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"invalid regex in {text!r}: {exc}") from exc
        return AttributeRule(action="replace", value=replacement, pattern=compiled)
    raise ValueError(f"unknown rule {text!r}")


@dataclass
class AttributeTransforms:
    """Per-type, per-attribute rule lists parsed from the ``transforms`` option."""

    rules: dict[str, dict[str, list[AttributeRule]]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, text: str | None) -> AttributeTransforms | None:
        if text is None or not text.strip():
            return None
        try:
            raw = orjson.loads(text)
        except orjson.JSONDecodeError as exc:
            raise InvalidConfigurationError(
                f"transforms is not valid JSON: {exc}", option=TRANSFORMS_KEY
            ) from exc
        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: Any) -> AttributeTransforms | None:
        if not isinstance(raw, Mapping):
            raise InvalidConfigurationError(
                "transforms must be an object keyed by type name", option=TRANSFORMS_KEY
            )
        parsed: dict[str, dict[str, list[AttributeRule]]] = {}
        for type_name, attrs in raw.items():
            if not isinstance(attrs, Mapping):
                raise InvalidConfigurationError(
                    "transforms for a type must be an object keyed by attribute name",
                    option=TRANSFORMS_KEY,
                    type_name=type_name,
                )
            per_attr: dict[str, list[AttributeRule]] = {}
            for attr_name, raw_rules in attrs.items():
                if isinstance(raw_rules, str):
                    raw_rules = [raw_rules]
                if not isinstance(raw_rules, list):
                    raise InvalidConfigurationError(
                        "attribute rules must be a string or list of strings",
                        option=TRANSFORMS_KEY,
                        type_name=type_name,
                        attribute_name=attr_name,
                    )
                try:
                    per_attr[attr_name] = [parse_rule(s) for s in raw_rules]
                except ValueError as exc:
                    raise InvalidConfigurationError(
                        str(exc),
                        option=TRANSFORMS_KEY,
                        type_name=type_name,
                        attribute_name=attr_name,
                    ) from exc
            parsed[type_name] = per_attr
        if not parsed:
            return None
        return cls(rules=parsed)

    def apply(self, entity: Entity) -> Entity:
        for type_key in (WILDCARD_TYPE, entity.type_name):
            for attr_name, rules in self.rules.get(type_key, {}).items():
                for rule in rules:
                    rule.apply(entity.attributes, attr_name)
        return entity

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            t: {a: [r.describe() for r in rules] for a, rules in attrs.items()}
            for t, attrs in self.rules.items()
        }


@dataclass
class TransformPipeline:
    """Attribute transforms first, then handlers in declared order."""

    attribute_transforms: AttributeTransforms | None = None
    handlers: list[EntityHandler] = field(default_factory=list)

    @classmethod
    def from_request(cls, request: ImportRequest, context: HandlerContext) -> TransformPipeline:
        pipeline = cls(
            attribute_transforms=AttributeTransforms.from_json(request.transforms),
            handlers=build_handlers(request.transformers, context),
        )
        if pipeline.attribute_transforms is not None:
            log.debug("importer.transforms.installed", transforms=pipeline.attribute_transforms.to_dict())
        if pipeline.handlers:
            log.debug("importer.handlers.installed", handlers=[h.name for h in pipeline.handlers])
        return pipeline

    def is_empty(self) -> bool:
        return self.attribute_transforms is None and not self.handlers

    def apply(self, entity: Entity) -> Entity:
        """Return a transformed copy; ``entity`` itself is left untouched."""
        if self.is_empty():
            return entity
        entity = entity.model_copy(deep=True)
        stage = "transforms"
        try:
            if self.attribute_transforms is not None:
                entity = self.attribute_transforms.apply(entity)
            for handler in self.handlers:
                stage = handler.name
                entity = handler.transform(entity)
        except EntityRejectedError as exc:
            exc.context.setdefault("entity_guid", entity.guid)
            exc.context.setdefault("handler", stage)
            raise
        except ImporterError:
            raise
        except Exception as exc:
            raise TransformError(
                f"{stage} failed: {exc}", entity_guid=entity.guid, type_name=entity.type_name, stage=stage
            ) from exc
        return entity
