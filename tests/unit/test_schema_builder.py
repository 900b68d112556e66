"""Tests for schema building from entity manifests."""

from __future__ import annotations

import pytest

from manifest_back.errors import ConfigurationError
from manifest_back.runtime.relation_resolver import RelationRegistry
from manifest_back.runtime.schema_builder import (
    COLUMN_TYPES,
    ColumnSpec,
    EntitySchema,
    build_schema,
    build_schemas,
    column_type_for,
)
from manifest_back.specs import AppManifest, PropType, parse_manifest


class TestColumnTypes:
    """Tests for the property type to column type table."""

    def test_every_prop_type_is_mapped(self) -> None:
        assert set(COLUMN_TYPES) == set(PropType)

    @pytest.mark.parametrize(
        "prop_type,column_type",
        [
            (PropType.STRING, "VARCHAR"),
            (PropType.NUMBER, "DECIMAL"),
            (PropType.RICH_TEXT, "TEXT"),
            (PropType.TIMESTAMP, "INTEGER"),
            (PropType.BOOLEAN, "BOOLEAN"),
            (PropType.LOCATION, "JSON"),
        ],
    )
    def test_column_type_for(self, prop_type: PropType, column_type: str) -> None:
        assert column_type_for(prop_type) == column_type


class TestColumnSpec:
    def test_primary_key_sql(self) -> None:
        column = ColumnSpec(name="id", type="INTEGER", nullable=False, primary_key=True)
        assert column.to_sql() == '"id" INTEGER PRIMARY KEY AUTOINCREMENT'

    def test_nullable_sql(self) -> None:
        assert ColumnSpec(name="name", type="VARCHAR").to_sql() == '"name" VARCHAR'

    def test_not_null_sql(self) -> None:
        column = ColumnSpec(name="name", type="VARCHAR", nullable=False)
        assert column.to_sql() == '"name" VARCHAR NOT NULL'


class TestBuildSchema:
    """Tests for build_schema / build_schemas."""

    def test_plain_entity_columns(self, schemas: dict[str, EntitySchema]) -> None:
        cat = schemas["Cat"]

        assert list(cat.columns)[:3] == ["id", "createdAt", "updatedAt"]
        assert cat.columns["name"].type == "VARCHAR"
        assert cat.columns["age"].type == "DECIMAL"
        assert cat.columns["indoor"].prop_type == PropType.BOOLEAN
        assert cat.columns["ownerId"].type == "INTEGER"
        assert "email" not in cat.columns
        assert cat.uniques == []

    def test_only_id_is_not_nullable(self, schemas: dict[str, EntitySchema]) -> None:
        for schema in schemas.values():
            not_nullable = [c.name for c in schema.columns.values() if not c.nullable]
            assert not_nullable == ["id"], schema.name

    def test_hidden_property_still_has_a_column(self, schemas: dict[str, EntitySchema]) -> None:
        assert "secret" in schemas["Cat"].columns

    def test_authenticable_entity(self, schemas: dict[str, EntitySchema]) -> None:
        user = schemas["User"]

        assert user.columns["email"].type == "VARCHAR"
        assert user.columns["password"].prop_type == PropType.PASSWORD
        assert user.uniques == [["email"]]

    def test_foreign_keys_only_on_many_side(self, schemas: dict[str, EntitySchema]) -> None:
        assert [r.name for r in schemas["Cat"].foreign_keys] == ["owner"]
        assert [r.name for r in schemas["Owner"].foreign_keys] == ["company"]
        assert schemas["Company"].foreign_keys == []
        assert "catsId" not in schemas["Owner"].columns

    def test_join_table_belongs_to_owning_side(self, schemas: dict[str, EntitySchema]) -> None:
        assert [jt.name for jt in schemas["Tag"].join_tables] == ["Tag_cats_Cat"]
        assert schemas["Cat"].join_tables == []

    def test_relations_are_attached(self, schemas: dict[str, EntitySchema]) -> None:
        assert set(schemas["Cat"].relations) == {"owner", "tags"}
        assert set(schemas["Owner"].relations) == {"company", "cats"}

    def test_id_property_is_rejected(self) -> None:
        app = parse_manifest({"entities": {"Cat": {"properties": ["id"]}}})
        registry = RelationRegistry.from_manifest(app)

        with pytest.raises(ConfigurationError, match="cannot redefine 'id'"):
            build_schemas(app.entities, registry)

    def test_build_single_schema(self, app_manifest: AppManifest, registry: RelationRegistry) -> None:
        entity = app_manifest.get_entity("settings")
        assert entity is not None

        schema = build_schema(entity, registry)

        assert schema.table_name == "Settings"
        assert set(schema.columns) == {"id", "createdAt", "updatedAt", "title"}
