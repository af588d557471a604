# src/Metaport/handlers/builtin.py
from __future__ import annotations

from pydantic import Field

from Metaport.errors import EntityRejectedError
from Metaport.handlers import EntityHandler, HandlerParams, entity_handler
from Metaport.schemas import AttributeKind, Entity

QUALIFIED_NAME = "qualifiedName"
CLUSTER_NAME = "clusterName"


class ReplaceClusterParams(HandlerParams):
    from_cluster: str = Field(alias="from", min_length=1)
    to_cluster: str = Field(alias="to", min_length=1)


@entity_handler("replace_cluster_name", ReplaceClusterParams)
class ReplaceClusterName(EntityHandler):
    """Move entities between clusters: ``name@cl1`` becomes ``name@cl2``."""

    def transform(self, entity: Entity) -> Entity:
        p: ReplaceClusterParams = self.params  # type: ignore[assignment]
        suffix = f"@{p.from_cluster}"
        qn = entity.attributes.get(QUALIFIED_NAME)
        if isinstance(qn, str) and qn.endswith(suffix):
            entity.attributes[QUALIFIED_NAME] = qn[: -len(suffix)] + f"@{p.to_cluster}"
        if entity.attributes.get(CLUSTER_NAME) == p.from_cluster:
            entity.attributes[CLUSTER_NAME] = p.to_cluster
        return entity


class StripClassificationsParams(HandlerParams):
    # Empty means strip every classification
    names: list[str] = Field(default_factory=list)


@entity_handler("strip_classifications", StripClassificationsParams)
class StripClassifications(EntityHandler):
    def transform(self, entity: Entity) -> Entity:
        names = set(self.params.names)  # type: ignore[attr-defined]
        if not names:
            entity.classifications = []
        else:
            entity.classifications = [c for c in entity.classifications if c not in names]
        return entity


class AddClassificationParams(HandlerParams):
    name: str = Field(min_length=1)
    types: list[str] = Field(default_factory=list)


@entity_handler("add_classification", AddClassificationParams)
class AddClassification(EntityHandler):
    def transform(self, entity: Entity) -> Entity:
        p: AddClassificationParams = self.params  # type: ignore[assignment]
        if p.types and not any(self.context.type_registry.is_a(entity.type_name, t) for t in p.types):
            return entity
        if p.name not in entity.classifications:
            entity.classifications.append(p.name)
        return entity


class RejectTypesParams(HandlerParams):
    types: list[str] = Field(min_length=1)
    include_subtypes: bool = True


@entity_handler("reject_types", RejectTypesParams)
class RejectTypes(EntityHandler):
    """Refuse entities of the listed types; the run stops at the first one."""

    def transform(self, entity: Entity) -> Entity:
        p: RejectTypesParams = self.params  # type: ignore[assignment]
        for t in p.types:
            matched = entity.type_name == t or (
                p.include_subtypes and self.context.type_registry.is_a(entity.type_name, t)
            )
            if matched:
                raise EntityRejectedError(
                    f"entities of type {t} are not accepted",
                    entity_guid=entity.guid,
                    type_name=entity.type_name,
                )
        return entity


class RequireAttributesParams(HandlerParams):
    attributes: list[str] = Field(min_length=1)
    types: list[str] = Field(default_factory=list)


def _is_missing(entity: Entity, attribute: str) -> bool:
    kind = entity.kind_of(attribute)
    if kind is None:
        return True
    value = entity.attributes[attribute]
    return value is None or (kind is AttributeKind.COLLECTION and not value)


@entity_handler("require_attributes", RequireAttributesParams)
class RequireAttributes(EntityHandler):
    """Refuse entities where a listed attribute is absent, null or an empty collection."""

    def transform(self, entity: Entity) -> Entity:
        p: RequireAttributesParams = self.params  # type: ignore[assignment]
        if p.types and entity.type_name not in p.types:
            return entity
        missing = [a for a in p.attributes if _is_missing(entity, a)]
        if missing:
            raise EntityRejectedError(
                f"missing required attributes {missing}",
                entity_guid=entity.guid,
                type_name=entity.type_name,
            )
        return entity
