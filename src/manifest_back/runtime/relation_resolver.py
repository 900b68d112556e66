"""
Relation resolver - computes how declared relationships are persisted.

Relationships are declared on both sides in the manifest but persisted once:
the FK of a many-to-one / one-to-many pair lives on the "many" side, and a
many-to-many pair stores its join table on the owning side only.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from manifest_back.errors import ConfigurationError
from manifest_back.specs.entity import (
    AppManifest,
    EntityManifest,
    RelationshipManifest,
    RelationshipType,
)
from manifest_back.specs.loader import singularize


def _lower_first(word: str) -> str:
    return word[:1].lower() + word[1:]


@dataclass(frozen=True)
class JoinTableSpec:
    """Join table of a many-to-many relationship, registered by the owning side."""

    name: str
    source_entity: str
    source_column: str
    target_entity: str
    target_column: str


@dataclass(frozen=True)
class RelationInfo:
    """Information about a relation between entities."""

    name: str
    kind: RelationshipType
    from_entity: str
    to_entity: str
    eager: bool = False
    owning_side: bool = False
    inverse_side: str | None = None
    # FK column on the "many" side (many-to-one / one-to-many)
    foreign_key_field: str | None = None
    # Join table wiring seen from from_entity (many-to-many)
    join_table: str | None = None
    join_column: str | None = None
    inverse_join_column: str | None = None

    @property
    def is_to_one(self) -> bool:
        """Check if this is a to-one relation (FK holder side)."""
        return self.kind == RelationshipType.MANY_TO_ONE

    @property
    def is_persisted_by_owner(self) -> bool:
        """True when writes to this side are persisted (FK or join table)."""
        if self.kind == RelationshipType.ONE_TO_MANY:
            return False
        if self.kind == RelationshipType.MANY_TO_MANY:
            return self.owning_side
        return True

    @property
    def dto_key(self) -> str:
        """Key holding related ids in a write payload: ownerId, tagIds."""
        if self.kind == RelationshipType.MANY_TO_MANY:
            return f"{singularize(self.name)}Ids"
        return f"{self.name}Id"


def _join_columns(source: str, target: str) -> tuple[str, str]:
    source_column = f"{_lower_first(source)}Id"
    target_column = f"{_lower_first(target)}Id"
    if source_column == target_column:
        return f"{source_column}_1", f"{target_column}_2"
    return source_column, target_column


def _find_inverse(
    target: EntityManifest,
    relationship: RelationshipManifest,
    source_name: str,
    kind: RelationshipType,
) -> RelationshipManifest | None:
    """Find the relationship on the target entity that points back at us."""
    if relationship.inverse_side:
        inverse = target.get_relationship(relationship.inverse_side)
        if inverse and inverse.type == kind and inverse.entity == source_name:
            return inverse
    for candidate in target.relationships:
        if (
            candidate.type == kind
            and candidate.entity == source_name
            and candidate.inverse_side == relationship.name
        ):
            return candidate
    return None


def resolve_relations(entity: EntityManifest, app: AppManifest) -> dict[str, RelationInfo]:
    """
    Compute the wiring of every relationship declared on an entity.

    Args:
        entity: Entity whose relationships are resolved
        app: The whole manifest (related entities are looked up here)

    Returns:
        Dictionary mapping relationship names to RelationInfo

    Raises:
        ConfigurationError: On unknown targets or broken many-to-many ownership
    """
    resolved: dict[str, RelationInfo] = {}

    for relationship in entity.relationships:
        target = app.get_entity_by_class_name(relationship.entity)
        if target is None:
            raise ConfigurationError(
                f"{entity.class_name}.{relationship.name} refers to unknown "
                f"entity '{relationship.entity}'"
            )

        common = {
            "name": relationship.name,
            "kind": relationship.type,
            "from_entity": entity.class_name,
            "to_entity": target.class_name,
            "eager": relationship.eager,
            "inverse_side": relationship.inverse_side,
        }

        if relationship.type == RelationshipType.MANY_TO_ONE:
            info = RelationInfo(
                **common,
                owning_side=True,
                foreign_key_field=f"{relationship.name}Id",
            )

        elif relationship.type == RelationshipType.ONE_TO_MANY:
            inverse = _find_inverse(
                target, relationship, entity.class_name, RelationshipType.MANY_TO_ONE
            )
            if inverse is None:
                raise ConfigurationError(
                    f"One-to-many {entity.class_name}.{relationship.name} has no "
                    f"matching many-to-one on {target.class_name}"
                )
            info = RelationInfo(
                **common,
                owning_side=False,
                foreign_key_field=f"{inverse.name}Id",
            )

        elif relationship.owning_side:
            inverse = _find_inverse(
                target, relationship, entity.class_name, RelationshipType.MANY_TO_MANY
            )
            if inverse is not None and inverse.owning_side and inverse is not relationship:
                raise ConfigurationError(
                    f"Many-to-many {entity.class_name}.{relationship.name} and "
                    f"{target.class_name}.{inverse.name} both claim the owning side"
                )
            source_column, target_column = _join_columns(
                entity.class_name, target.class_name
            )
            info = RelationInfo(
                **common,
                owning_side=True,
                join_table=f"{entity.class_name}_{relationship.name}_{target.class_name}",
                join_column=source_column,
                inverse_join_column=target_column,
            )

        else:
            owner = _find_inverse(
                target, relationship, entity.class_name, RelationshipType.MANY_TO_MANY
            )
            if owner is None or not owner.owning_side:
                raise ConfigurationError(
                    f"Many-to-many {entity.class_name}.{relationship.name} has no "
                    f"owning side on {target.class_name}"
                )
            # Virtual side: reuse the owner's join table, columns swapped.
            owner_column, inverse_column = _join_columns(
                target.class_name, entity.class_name
            )
            info = RelationInfo(
                **common,
                owning_side=False,
                join_table=f"{target.class_name}_{owner.name}_{entity.class_name}",
                join_column=inverse_column,
                inverse_join_column=owner_column,
            )

        resolved[relationship.name] = info

    return resolved


@dataclass
class RelationRegistry:
    """
    Registry of relations between entities.

    Built once at boot, read-only afterwards.
    """

    _relations: dict[str, list[RelationInfo]] = field(default_factory=dict)
    _by_name: dict[tuple[str, str], RelationInfo] = field(default_factory=dict)
    _manifests: dict[str, list[RelationshipManifest]] = field(default_factory=dict)
    _join_tables: dict[str, JoinTableSpec] = field(default_factory=dict)

    def register(self, entity_name: str, relation: RelationInfo) -> None:
        """Register a relation for an entity."""
        if (entity_name, relation.name) in self._by_name:
            raise ConfigurationError(
                f"Relation {entity_name}.{relation.name} registered twice"
            )
        self._relations.setdefault(entity_name, []).append(relation)
        self._by_name[(entity_name, relation.name)] = relation

        if relation.kind == RelationshipType.MANY_TO_MANY and relation.owning_side:
            assert relation.join_table and relation.join_column and relation.inverse_join_column
            if relation.join_table in self._join_tables:
                raise ConfigurationError(
                    f"Join table {relation.join_table} registered twice"
                )
            self._join_tables[relation.join_table] = JoinTableSpec(
                name=relation.join_table,
                source_entity=relation.from_entity,
                source_column=relation.join_column,
                target_entity=relation.to_entity,
                target_column=relation.inverse_join_column,
            )

    def get_relations(self, entity_name: str) -> list[RelationInfo]:
        """Get all relations for an entity."""
        return self._relations.get(entity_name, [])

    def get_relation(self, entity_name: str, relation_name: str) -> RelationInfo | None:
        """Get a specific relation by name."""
        return self._by_name.get((entity_name, relation_name))

    def describe_relations(self, entity_name: str) -> list[RelationshipManifest]:
        """Relationship manifests of an entity, in declaration order."""
        return list(self._manifests.get(entity_name, []))

    @property
    def join_tables(self) -> list[JoinTableSpec]:
        """Join tables, one per many-to-many pair."""
        return list(self._join_tables.values())

    def join_tables_for(self, entity_name: str) -> list[JoinTableSpec]:
        """Join tables owned by an entity."""
        return [jt for jt in self._join_tables.values() if jt.source_entity == entity_name]

    @classmethod
    def from_manifest(cls, app: AppManifest) -> RelationRegistry:
        """
        Build a relation registry from the app manifest.

        Args:
            app: App manifest

        Returns:
            Populated RelationRegistry
        """
        registry = cls()

        for entity in app.entities:
            registry._manifests[entity.class_name] = list(entity.relationships)
            for info in resolve_relations(entity, app).values():
                registry.register(entity.class_name, info)

        return registry


# =============================================================================
# Foreign Key Management
# =============================================================================


def build_foreign_key_constraint(relation: RelationInfo) -> str:
    """
    Build a FOREIGN KEY constraint for a many-to-one relation.

    Deleting the referenced row nulls the FK; deletes that would orphan rows
    are refused earlier by the CRUD service.
    """
    return (
        f'FOREIGN KEY ("{relation.foreign_key_field}") '
        f'REFERENCES "{relation.to_entity}"("id") ON DELETE SET NULL'
    )


def get_foreign_key_indexes(entity_name: str, registry: RelationRegistry) -> list[str]:
    """
    Get index creation statements for FK columns.

    Args:
        entity_name: Entity class name
        registry: Relation registry

    Returns:
        List of CREATE INDEX SQL statements
    """
    indexes = []

    for relation in registry.get_relations(entity_name):
        if relation.is_to_one:
            idx_name = f"idx_{entity_name}_{relation.foreign_key_field}"
            indexes.append(
                f'CREATE INDEX IF NOT EXISTS "{idx_name}" '
                f'ON "{entity_name}"("{relation.foreign_key_field}")'
            )

    return indexes
