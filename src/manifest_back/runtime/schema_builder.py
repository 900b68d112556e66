"""
Schema builder - converts entity manifests into relational schemas.

Each entity starts from a base template (id and timestamps, plus email and
password for authenticable entities) and gets one column per property. Every
column except ``id`` is nullable: required-ness is checked by the validation
layer on the write path, never by the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from manifest_back.errors import ConfigurationError
from manifest_back.runtime.relation_resolver import (
    JoinTableSpec,
    RelationInfo,
    RelationRegistry,
)
from manifest_back.specs.entity import EntityManifest, PropType

logger = logging.getLogger("manifest_back.schema")

# =============================================================================
# Column Type Mapping
# =============================================================================

# Every PropType maps to exactly one column type.
COLUMN_TYPES: dict[PropType, str] = {
    PropType.STRING: "VARCHAR",
    PropType.NUMBER: "DECIMAL",
    PropType.LINK: "VARCHAR",
    PropType.TEXT: "TEXT",
    PropType.RICH_TEXT: "TEXT",
    PropType.MONEY: "DECIMAL",
    PropType.DATE: "DATE",
    PropType.TIMESTAMP: "INTEGER",
    PropType.EMAIL: "VARCHAR",
    PropType.BOOLEAN: "BOOLEAN",
    PropType.PASSWORD: "VARCHAR",
    PropType.CHOICE: "VARCHAR",
    PropType.LOCATION: "JSON",
    PropType.FILE: "VARCHAR",
    PropType.IMAGE: "JSON",
}

_unmapped = set(PropType) - set(COLUMN_TYPES)
if _unmapped:
    raise ConfigurationError(f"Property types without a column type: {sorted(_unmapped)}")


def column_type_for(prop_type: PropType) -> str:
    """
    Map a property type to its column type.

    Raises:
        ConfigurationError: If the type has no mapping
    """
    try:
        return COLUMN_TYPES[prop_type]
    except KeyError:
        raise ConfigurationError(f"No column type for property type '{prop_type}'") from None


# =============================================================================
# Schema Types
# =============================================================================


@dataclass(frozen=True)
class ColumnSpec:
    """A single column of an entity table."""

    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    prop_type: PropType | None = None

    def to_sql(self) -> str:
        """Column definition for CREATE TABLE."""
        if self.primary_key:
            return f'"{self.name}" INTEGER PRIMARY KEY AUTOINCREMENT'
        parts = [f'"{self.name}"', self.type]
        if not self.nullable:
            parts.append("NOT NULL")
        return " ".join(parts)


@dataclass
class EntitySchema:
    """Relational schema of one entity."""

    name: str
    columns: dict[str, ColumnSpec] = field(default_factory=dict)
    relations: dict[str, RelationInfo] = field(default_factory=dict)
    uniques: list[list[str]] = field(default_factory=list)
    join_tables: list[JoinTableSpec] = field(default_factory=list)

    @property
    def table_name(self) -> str:
        return self.name

    @property
    def foreign_keys(self) -> list[RelationInfo]:
        """Many-to-one relations, each backed by an FK column on this table."""
        return [r for r in self.relations.values() if r.is_to_one]


def _base_columns(authenticable: bool) -> dict[str, ColumnSpec]:
    columns = {
        "id": ColumnSpec(name="id", type="INTEGER", nullable=False, primary_key=True),
        "createdAt": ColumnSpec(name="createdAt", type="DATETIME"),
        "updatedAt": ColumnSpec(name="updatedAt", type="DATETIME"),
    }
    if authenticable:
        columns["email"] = ColumnSpec(name="email", type="VARCHAR", prop_type=PropType.EMAIL)
        columns["password"] = ColumnSpec(
            name="password", type="VARCHAR", prop_type=PropType.PASSWORD
        )
    return columns


# =============================================================================
# Builders
# =============================================================================


def build_schema(entity: EntityManifest, registry: RelationRegistry) -> EntitySchema:
    """
    Build the schema of a single entity.

    Args:
        entity: Entity manifest
        registry: Relation registry built from the same app manifest

    Returns:
        EntitySchema for the entity
    """
    columns = _base_columns(entity.authenticable)

    for prop in entity.properties:
        if prop.name == "id":
            raise ConfigurationError(f"{entity.class_name} cannot redefine 'id'")
        columns[prop.name] = ColumnSpec(
            name=prop.name,
            type=column_type_for(prop.type),
            prop_type=prop.type,
        )

    relations = {r.name: r for r in registry.get_relations(entity.class_name)}

    for relation in relations.values():
        if relation.is_to_one:
            assert relation.foreign_key_field
            columns[relation.foreign_key_field] = ColumnSpec(
                name=relation.foreign_key_field, type="INTEGER"
            )

    return EntitySchema(
        name=entity.class_name,
        columns=columns,
        relations=relations,
        uniques=[["email"]] if entity.authenticable else [],
        join_tables=registry.join_tables_for(entity.class_name),
    )


def build_schemas(
    entities: list[EntityManifest],
    registry: RelationRegistry,
) -> dict[str, EntitySchema]:
    """
    Build schemas for all entities.

    Args:
        entities: Entity manifests
        registry: Relation registry

    Returns:
        Dictionary mapping class names to schemas
    """
    schemas: dict[str, EntitySchema] = {}
    for entity in entities:
        schemas[entity.class_name] = build_schema(entity, registry)
        logger.debug(
            "Built schema %s (%d columns, %d relations)",
            entity.class_name,
            len(schemas[entity.class_name].columns),
            len(schemas[entity.class_name].relations),
        )
    return schemas
