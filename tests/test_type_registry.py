import pytest

from Metaport.schemas import TypeCategory, TypesDef
from Metaport.typedefs import InMemoryTypeDefStore, TypeRegistry


def test_inheritance_lookups(type_definitions):
    reg = TypeRegistry(type_definitions)
    assert reg.is_a("hive_table", "DataSet")
    assert reg.is_a("hive_table", "hive_table")
    assert not reg.is_a("DataSet", "hive_table")
    assert not reg.is_a("unknown", "DataSet")
    assert reg.attribute_def("hive_table", "qualifiedName").is_unique
    assert reg.attribute_def("hive_table", "missing") is None
    assert reg.names(TypeCategory.ENTITY) == ["DataSet", "hive_table"]
    assert "PII" in reg


def test_types_def_orders_by_dependency(types_def):
    assert [d.name for d in types_def.definitions()] == ["table_kind", "PII", "DataSet", "hive_table"]
    assert types_def.count() == 4
    assert types_def.get("PII").category is TypeCategory.CLASSIFICATION
    assert TypesDef().is_empty()


def test_grouped_json_stamps_categories():
    td = TypesDef.model_validate({"enumDefs": [{"name": "e", "elementDefs": [{"value": "A"}]}]})
    assert td.get("e").category is TypeCategory.ENUM


@pytest.mark.asyncio
async def test_registry_loads_from_store(type_definitions):
    reg = await TypeRegistry.load(InMemoryTypeDefStore(type_definitions))
    assert reg.get("hive_table").super_types == ["DataSet"]
