"""Built-in entity handlers and the handler registry."""

import pytest

from Metaport.errors import EntityRejectedError, InvalidConfigurationError
from Metaport.handlers import (
    EntityHandler,
    HandlerContext,
    all_handlers,
    build_handlers,
    entity_handler,
    find_handler,
)
from Metaport.schemas import Entity, ImportRequest, PackageInfo
from Metaport.transforms import TransformPipeline
from Metaport.typedefs import TypeRegistry


@pytest.fixture
def context(type_definitions) -> HandlerContext:
    return HandlerContext(
        TypeRegistry(type_definitions),
        PackageInfo(package_id="p", export_request={"itemsToExport": [{"typeName": "hive_db"}]}),
        ImportRequest(),
    )


def _table(**attributes) -> Entity:
    return Entity(guid="g1", type_name="hive_table", attributes=attributes)


def test_builtins_registered():
    names = set(all_handlers())
    assert {
        "replace_cluster_name",
        "strip_classifications",
        "add_classification",
        "reject_types",
        "require_attributes",
    } <= names


def test_bare_names_and_declared_order(context):
    handlers = build_handlers(
        '["strip_classifications", {"name": "add_classification", "params": {"name": "IMPORTED"}}]',
        context,
    )
    assert [h.name for h in handlers] == ["strip_classifications", "add_classification"]
    entity = Entity(guid="g", type_name="hive_table", classifications=["PII"])
    for h in handlers:
        entity = h.transform(entity)
    assert entity.classifications == ["IMPORTED"]


class TestReplaceClusterName:
    def test_rewrites_suffix_and_cluster(self, context):
        [h] = build_handlers('[{"name": "replace_cluster_name", "params": {"from": "cl1", "to": "cl2"}}]', context)
        out = h.transform(_table(qualifiedName="db.t@cl1", clusterName="cl1"))
        assert out.attributes == {"qualifiedName": "db.t@cl2", "clusterName": "cl2"}

    def test_leaves_other_clusters(self, context):
        [h] = build_handlers('[{"name": "replace_cluster_name", "params": {"from": "cl1", "to": "cl2"}}]', context)
        out = h.transform(_table(qualifiedName="db.t@cl10", clusterName="cl3"))
        assert out.attributes == {"qualifiedName": "db.t@cl10", "clusterName": "cl3"}


class TestClassificationHandlers:
    def test_strip_selected(self, context):
        [h] = build_handlers('[{"name": "strip_classifications", "params": {"names": ["PII"]}}]', context)
        entity = Entity(guid="g", type_name="hive_table", classifications=["PII", "GOLD"])
        assert h.transform(entity).classifications == ["GOLD"]

    def test_add_respects_supertypes(self, context):
        [h] = build_handlers(
            '[{"name": "add_classification", "params": {"name": "PII", "types": ["DataSet"]}}]', context
        )
        assert h.transform(_table()).classifications == ["PII"]
        column = Entity(guid="c", type_name="hive_column")
        assert h.transform(column).classifications == []


class TestRejectingHandlers:
    def test_reject_types_includes_subtypes(self, context):
        [h] = build_handlers('[{"name": "reject_types", "params": {"types": ["DataSet"]}}]', context)
        with pytest.raises(EntityRejectedError) as ei:
            h.transform(_table())
        assert ei.value.context["entity_guid"] == "g1"

    def test_reject_exact_type_only(self, context):
        [h] = build_handlers(
            '[{"name": "reject_types", "params": {"types": ["DataSet"], "include_subtypes": false}}]',
            context,
        )
        assert h.transform(_table()).guid == "g1"

    def test_require_attributes(self, context):
        [h] = build_handlers('[{"name": "require_attributes", "params": {"attributes": ["owner"]}}]', context)
        assert h.transform(_table(owner="etl")).guid == "g1"
        with pytest.raises(EntityRejectedError):
            h.transform(_table(owner=None))

    def test_require_attributes_treats_empty_collection_as_missing(self, context):
        [h] = build_handlers('[{"name": "require_attributes", "params": {"attributes": ["columns"]}}]', context)
        assert h.transform(_table(columns=[{"guid": "c1", "typeName": "hive_column"}])).guid == "g1"
        with pytest.raises(EntityRejectedError):
            h.transform(_table(columns=[]))
        with pytest.raises(EntityRejectedError):
            h.transform(_table())

    def test_pipeline_tags_rejection_with_handler(self, context):
        pipeline = TransformPipeline(
            handlers=build_handlers('[{"name": "reject_types", "params": {"types": ["hive_table"]}}]', context)
        )
        with pytest.raises(EntityRejectedError) as ei:
            pipeline.apply(_table())
        assert ei.value.context["handler"] == "reject_types"


class TestInvalidTransformers:
    @pytest.mark.parametrize(
        "text,position",
        [
            ('[{"name": "no_such_handler"}]', 0),
            ('["strip_classifications", {"params": {}}]', 1),
            ('[{"name": "replace_cluster_name", "params": {"from": "cl1"}}]', 0),
            ('[{"name": "strip_classifications", "params": {"bogus": 1}}]', 0),
        ],
    )
    def test_reports_position(self, context, text, position):
        with pytest.raises(InvalidConfigurationError) as ei:
            build_handlers(text, context)
        assert ei.value.context["option"] == "transformers"
        assert ei.value.context["position"] == position

    def test_not_a_list(self, context):
        with pytest.raises(InvalidConfigurationError):
            build_handlers('{"name": "strip_classifications"}', context)


def test_custom_handler_registration(context):
    @entity_handler("tag_export_source")
    class TagExportSource(EntityHandler):
        def transform(self, entity: Entity) -> Entity:
            items = self.context.export_request.get("itemsToExport", [])
            entity.attributes["exportedFrom"] = items[0]["typeName"] if items else None
            return entity

    assert find_handler("tag_export_source") is not None
    [h] = build_handlers('["tag_export_source"]', context)
    assert h.transform(_table()).attributes["exportedFrom"] == "hive_db"
