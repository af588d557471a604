# schemas.py

from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from Metaport.canonical_json import canonical_json_bytes, compute_canonical_hash
from Metaport.errors import InvalidConfigurationError

TRANSFORMS_KEY = "transforms"
TRANSFORMERS_KEY = "transformers"
UPDATE_TYPE_DEFINITION_KEY = "updateTypeDefinition"


# -----------------------------
# Import request
# -----------------------------


class ImportRequest(BaseModel):
    """Immutable configuration for one import run.

    ``start_position`` and ``start_guid`` are mutually exclusive resume anchors.
    """

    start_position: int | None = Field(default=None, alias="startPosition")
    start_guid: str | None = Field(default=None, alias="startGuid")
    options: dict[str, str] = Field(default_factory=dict)
    file_name: str | None = Field(default=None, alias="fileName")

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    @field_validator("start_position", mode="before")
    @classmethod
    def _parse_position(cls, v: Any):
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("startPosition must be an integer")
        if isinstance(v, str):
            if not v.strip().isdigit():
                raise ValueError(f"startPosition must be a non-negative integer: {v!r}")
            return int(v.strip())
        return v

    @field_validator("start_position")
    @classmethod
    def _non_negative(cls, v: int | None):
        if v is not None and v < 0:
            raise ValueError(f"startPosition must be non-negative: {v}")
        return v

    @field_validator("options")
    @classmethod
    def _validate_update_flag(cls, v: dict[str, str]):
        flag = v.get(UPDATE_TYPE_DEFINITION_KEY)
        if flag is not None and flag not in ("true", "false"):
            raise ValueError(f"{UPDATE_TYPE_DEFINITION_KEY} must be 'true' or 'false', got {flag!r}")
        return v

    @model_validator(mode="after")
    def _single_anchor(self):
        if self.start_guid is not None and self.start_position is not None:
            raise ValueError("startGuid and startPosition are mutually exclusive")
        return self

    @classmethod
    def parse(cls, data: ImportRequest | Mapping[str, Any] | None) -> ImportRequest:
        """Build a request from raw caller input, reporting problems as InvalidConfiguration."""
        if isinstance(data, ImportRequest):
            return data
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as exc:
            first = exc.errors()[0]
            option = ".".join(str(p) for p in first.get("loc", ())) or None
            raise InvalidConfigurationError(
                f"invalid import request: {first.get('msg')}", option=option
            ) from exc

    @property
    def transforms(self) -> str | None:
        return self.options.get(TRANSFORMS_KEY)

    @property
    def transformers(self) -> str | None:
        return self.options.get(TRANSFORMERS_KEY)

    @property
    def update_type_definition(self) -> str | None:
        return self.options.get(UPDATE_TYPE_DEFINITION_KEY)


# -----------------------------
# Entities
# -----------------------------


class AttributeKind(str, enum.Enum):
    SCALAR = "scalar"
    REFERENCE = "reference"
    STRUCT = "struct"
    COLLECTION = "collection"


def classify_value(value: Any) -> AttributeKind:
    """Return the declared variant of an attribute value.

    Object ids (``guid`` + ``typeName`` without an attribute map) are references;
    any other mapping, including owned composite sub-entities, is a struct.
    """
    if isinstance(value, list | tuple):
        return AttributeKind.COLLECTION
    if isinstance(value, Mapping):
        if "guid" in value and "typeName" in value and "attributes" not in value:
            return AttributeKind.REFERENCE
        return AttributeKind.STRUCT
    return AttributeKind.SCALAR


def is_owned_entity(value: Any) -> bool:
    """True for a composite sub-entity embedded in its owner's attributes."""
    return (
        isinstance(value, Mapping)
        and isinstance(value.get("guid"), str)
        and isinstance(value.get("attributes"), Mapping)
    )


class Entity(BaseModel):
    """One typed metadata record streamed from a package."""

    guid: str
    type_name: str = Field(alias="typeName")
    attributes: dict[str, Any] = Field(default_factory=dict)
    classifications: list[str] = Field(default_factory=list)
    status: Literal["ACTIVE", "DELETED"] = "ACTIVE"

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def kind_of(self, attribute: str) -> AttributeKind | None:
        if attribute not in self.attributes:
            return None
        return classify_value(self.attributes[attribute])

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.to_payload())

    def content_hash(self) -> str:
        return compute_canonical_hash(self.to_payload()).hex()


# -----------------------------
# Type definitions
# -----------------------------


class TypeCategory(str, enum.Enum):
    ENUM = "ENUM"
    STRUCT = "STRUCT"
    CLASSIFICATION = "CLASSIFICATION"
    ENTITY = "ENTITY"
    RELATIONSHIP = "RELATIONSHIP"


# Order in which categories are created so that referenced types exist first
CATEGORY_ORDER = [
    TypeCategory.ENUM,
    TypeCategory.STRUCT,
    TypeCategory.CLASSIFICATION,
    TypeCategory.ENTITY,
    TypeCategory.RELATIONSHIP,
]

_GROUP_KEYS = {
    TypeCategory.ENUM: "enumDefs",
    TypeCategory.STRUCT: "structDefs",
    TypeCategory.CLASSIFICATION: "classificationDefs",
    TypeCategory.ENTITY: "entityDefs",
    TypeCategory.RELATIONSHIP: "relationshipDefs",
}


class AttributeDef(BaseModel):
    name: str
    type_name: str = Field(alias="typeName")
    is_optional: bool = Field(default=True, alias="isOptional")
    cardinality: Literal["SINGLE", "LIST", "SET"] = "SINGLE"
    is_unique: bool = Field(default=False, alias="isUnique")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EnumElementDef(BaseModel):
    value: str
    ordinal: int | None = None
    description: str | None = None

    model_config = ConfigDict(extra="ignore")


class TypeDefinition(BaseModel):
    category: TypeCategory
    name: str
    description: str | None = None
    type_version: str = Field(default="1.0", alias="typeVersion")
    super_types: list[str] = Field(default_factory=list, alias="superTypes")
    attribute_defs: list[AttributeDef] = Field(default_factory=list, alias="attributeDefs")
    element_defs: list[EnumElementDef] = Field(default_factory=list, alias="elementDefs")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def attribute(self, name: str) -> AttributeDef | None:
        for attr in self.attribute_defs:
            if attr.name == name:
                return attr
        return None

    def element_values(self) -> list[str]:
        return [e.value for e in self.element_defs]

    def structural_payload(self) -> dict[str, Any]:
        """Fields that define the type's shape; description and version excluded."""
        return {
            "category": self.category.value,
            "name": self.name,
            "superTypes": sorted(self.super_types),
            "attributeDefs": sorted(
                (a.model_dump(by_alias=True) for a in self.attribute_defs),
                key=lambda a: a["name"],
            ),
            "elementDefs": sorted(self.element_values()),
        }

    def structural_hash(self) -> str:
        return compute_canonical_hash(self.structural_payload()).hex()


class TypesDef(BaseModel):
    """Type definitions grouped by category, as bundled in a package."""

    enum_defs: list[TypeDefinition] = Field(default_factory=list, alias="enumDefs")
    struct_defs: list[TypeDefinition] = Field(default_factory=list, alias="structDefs")
    classification_defs: list[TypeDefinition] = Field(
        default_factory=list, alias="classificationDefs"
    )
    entity_defs: list[TypeDefinition] = Field(default_factory=list, alias="entityDefs")
    relationship_defs: list[TypeDefinition] = Field(
        default_factory=list, alias="relationshipDefs"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _stamp_categories(cls, data: Any):
        # Grouped JSON omits the category on each definition
        if not isinstance(data, Mapping):
            return data
        out = dict(data)
        for category, key in _GROUP_KEYS.items():
            items = out.get(key)
            if isinstance(items, list):
                out[key] = [
                    {**item, "category": category.value} if isinstance(item, Mapping) else item
                    for item in items
                ]
        return out

    @classmethod
    def of(cls, definitions: list[TypeDefinition]) -> TypesDef:
        grouped: dict[str, list[TypeDefinition]] = {key: [] for key in _GROUP_KEYS.values()}
        for d in definitions:
            grouped[_GROUP_KEYS[d.category]].append(d)
        return cls.model_validate({k: [d.model_dump(by_alias=True) for d in v] for k, v in grouped.items()})

    def definitions(self) -> Iterator[TypeDefinition]:
        """All definitions in creation (dependency) order."""
        for category in CATEGORY_ORDER:
            yield from getattr(self, _ATTR_NAMES[category])

    def count(self) -> int:
        return sum(1 for _ in self.definitions())

    def is_empty(self) -> bool:
        return self.count() == 0

    def get(self, name: str) -> TypeDefinition | None:
        for d in self.definitions():
            if d.name == name:
                return d
        return None


_ATTR_NAMES = {
    TypeCategory.ENUM: "enum_defs",
    TypeCategory.STRUCT: "struct_defs",
    TypeCategory.CLASSIFICATION: "classification_defs",
    TypeCategory.ENTITY: "entity_defs",
    TypeCategory.RELATIONSHIP: "relationship_defs",
}


# -----------------------------
# Package metadata
# -----------------------------


class PackageInfo(BaseModel):
    """Export-side description of a package, including the request that produced it."""

    package_id: str = Field(alias="packageId")
    source_server: str | None = Field(default=None, alias="sourceServer")
    export_request: dict[str, Any] = Field(default_factory=dict, alias="exportRequest")
    created_at: str | None = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, extra="allow")
