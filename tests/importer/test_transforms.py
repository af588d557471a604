"""Attribute transform rules and the transform pipeline."""

import orjson
import pytest

from Metaport.errors import InvalidConfigurationError, TransformError
from Metaport.handlers import HandlerContext
from Metaport.schemas import Entity, ImportRequest, PackageInfo
from Metaport.transforms import AttributeRule, AttributeTransforms, TransformPipeline, parse_rule
from Metaport.typedefs import TypeRegistry


def _entity(**attributes) -> Entity:
    return Entity(guid="g1", type_name="hive_table", attributes=attributes)


def _pipeline(transforms=None, transformers=None) -> TransformPipeline:
    options = {}
    if transforms is not None:
        options["transforms"] = orjson.dumps(transforms).decode()
    if transformers is not None:
        options["transformers"] = orjson.dumps(transformers).decode()
    request = ImportRequest(options=options)
    context = HandlerContext(TypeRegistry(), PackageInfo(package_id="p"), request)
    return TransformPipeline.from_request(request, context)


class TestRules:
    def test_set(self):
        t = AttributeTransforms.from_mapping({"hive_table": {"owner": ["set:admin"]}})
        assert t.apply(_entity(owner="bob")).attributes["owner"] == "admin"

    def test_replace_regex(self):
        t = AttributeTransforms.from_mapping({"hive_table": {"qualifiedName": ["replace:@cl1$:@cl2"]}})
        out = t.apply(_entity(qualifiedName="db.t1@cl1"))
        assert out.attributes["qualifiedName"] == "db.t1@cl2"

    def test_replace_with_escaped_colon(self):
        rule = parse_rule(r"replace:a\:b:c")
        assert rule.pattern.pattern == "a:b"
        assert rule.value == "c"

    def test_replace_applies_to_string_list_elements(self):
        t = AttributeTransforms.from_mapping({"hive_table": {"aliases": ["uppercase"]}})
        assert t.apply(_entity(aliases=["x", 1, "y"])).attributes["aliases"] == ["X", 1, "Y"]

    def test_string_rules_leave_references_and_structs_alone(self):
        ref = {"guid": "db1", "typeName": "hive_db"}
        t = AttributeTransforms.from_mapping({"hive_table": {"db": ["uppercase"], "params": ["uppercase"]}})
        out = t.apply(_entity(db=ref, params={"k": "v"}))
        assert out.attributes["db"] == ref
        assert out.attributes["params"] == {"k": "v"}

    def test_default_only_fills_missing_or_null(self):
        t = AttributeTransforms.from_mapping({"hive_table": {"owner": ["default:etl"]}})
        assert t.apply(_entity(owner=None)).attributes["owner"] == "etl"
        assert t.apply(_entity()).attributes["owner"] == "etl"
        assert t.apply(_entity(owner="bob")).attributes["owner"] == "bob"

    def test_clear_and_lowercase(self):
        t = AttributeTransforms.from_mapping(
            {"hive_table": {"comment": ["clear"], "name": ["lowercase"]}}
        )
        out = t.apply(_entity(comment="x", name="SALES"))
        assert out.attributes == {"comment": None, "name": "sales"}

    def test_case_rules_skip_absent_attribute(self):
        t = AttributeTransforms.from_mapping({"hive_table": {"name": ["lowercase"]}})
        assert "name" not in t.apply(_entity()).attributes

    def test_wildcard_runs_before_type_rules(self):
        t = AttributeTransforms.from_mapping(
            {"hive_table": {"owner": ["uppercase"]}, "*": {"owner": ["set:etl"]}}
        )
        assert t.apply(_entity(owner="bob")).attributes["owner"] == "ETL"

    def test_other_types_untouched(self):
        t = AttributeTransforms.from_mapping({"hive_column": {"owner": ["set:x"]}})
        assert t.apply(_entity(owner="bob")).attributes["owner"] == "bob"

    def test_to_dict_round_trips_rule_text(self):
        raw = {"hive_table": {"qualifiedName": ["replace:@cl1$:@cl2", "lowercase"]}}
        assert AttributeTransforms.from_mapping(raw).to_dict() == raw

    def test_replace_rule_without_pattern_raises(self):
        rule = AttributeRule(action="replace", value="x")
        with pytest.raises(TransformError):
            rule.apply({"name": "t"}, "name")
        with pytest.raises(TransformError):
            rule.describe()


class TestInvalidTransforms:
    @pytest.mark.parametrize(
        "text",
        [
            "{not json",
            "[]",
            '{"hive_table": "set:x"}',
            '{"hive_table": {"owner": 5}}',
            '{"hive_table": {"owner": ["explode"]}}',
            '{"hive_table": {"owner": ["replace:no-replacement"]}}',
            '{"hive_table": {"owner": ["replace:([:x"]}}',
        ],
    )
    def test_rejected_with_option_key(self, text):
        with pytest.raises(InvalidConfigurationError) as ei:
            AttributeTransforms.from_json(text)
        assert ei.value.context["option"] == "transforms"

    def test_blank_means_no_transforms(self):
        assert AttributeTransforms.from_json("  ") is None
        assert AttributeTransforms.from_json(None) is None


class TestPipeline:
    def test_empty_pipeline_is_identity(self):
        pipeline = _pipeline()
        entity = _entity(name="t")
        assert pipeline.is_empty()
        assert pipeline.apply(entity) is entity

    def test_transforms_then_handlers(self):
        pipeline = _pipeline(
            transforms={"hive_table": {"qualifiedName": ["replace:@cl1$:@tmp"]}},
            transformers=[{"name": "replace_cluster_name", "params": {"from": "tmp", "to": "cl2"}}],
        )
        out = pipeline.apply(_entity(qualifiedName="db.t@cl1"))
        assert out.attributes["qualifiedName"] == "db.t@cl2"

    def test_input_entity_not_mutated(self):
        pipeline = _pipeline(transforms={"*": {"owner": ["set:etl"]}})
        entity = _entity(owner="bob")
        pipeline.apply(entity)
        assert entity.attributes["owner"] == "bob"

    def test_deterministic_for_equal_inputs(self):
        pipeline = _pipeline(
            transforms={"*": {"name": ["uppercase"], "owner": ["default:etl"]}},
            transformers=["strip_classifications"],
        )
        a = Entity(guid="g", type_name="hive_table", attributes={"name": "t", "owner": None}, classifications=["PII"])
        b = Entity(guid="g", type_name="hive_table", attributes={"owner": None, "name": "t"}, classifications=["PII"])
        assert pipeline.apply(a).canonical_bytes() == pipeline.apply(b).canonical_bytes()
        assert pipeline.apply(a).canonical_bytes() == pipeline.apply(a).canonical_bytes()
