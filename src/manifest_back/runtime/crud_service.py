"""
CRUD service - the generic query engine.

Translates ``(entity slug, query params)`` into SQL against the schemas built
at boot. Nothing here knows about a particular entity: columns, joins and
constraints are all looked up in the manifest, the EntitySchemas and the
RelationRegistry.

Reads run one root query (filters, order, pagination) and then hydrate the
requested relations with one batched query per relation node, so pages and
counts are always computed on root rows.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from manifest_back.errors import BadRequestError, NotFoundError, ValidationFailedError
from manifest_back.runtime.crypto import hash_password
from manifest_back.runtime.logging import get_logger, log_with_context
from manifest_back.runtime.pagination import ALL_RESULTS, Paginator, paginate
from manifest_back.runtime.query_builder import (
    DEFAULT_RESULTS_PER_PAGE,
    RESERVED_QUERY_PARAMS,
    ROOT_ALIAS,
    FilterCondition,
    FilterOperator,
    SelectQuery,
    SortField,
    camelize_alias,
    column_ref,
    quote_identifier,
)
from manifest_back.runtime.relation_resolver import RelationInfo, RelationRegistry
from manifest_back.runtime.repository import (
    DatabaseManager,
    RepositoryFactory,
    SQLiteRepository,
)
from manifest_back.runtime.schema_builder import EntitySchema
from manifest_back.runtime.validation import FieldError, Validator
from manifest_back.specs.entity import (
    AppManifest,
    EntityManifest,
    PropType,
    RelationshipType,
)

logger = get_logger("crud")

# Internal select keys, stripped before rows leave the service
_PRIVATE_PREFIX = "__"
_PARENT_KEY = "__parent"


def _fk_key(relation: RelationInfo) -> str:
    return f"{_PRIVATE_PREFIX}fk_{relation.name}"


# =============================================================================
# Query Params
# =============================================================================


@dataclass
class ReadParams:
    """Query params of a read, split into their roles."""

    filters: dict[str, Any] = field(default_factory=dict)
    relations: list[str] = field(default_factory=list)
    order_by: str | None = None
    order: str | None = None
    page: int = 1
    per_page: int = DEFAULT_RESULTS_PER_PAGE


def _last(value: Any) -> Any:
    """Repeated query keys: the last value applies."""
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_query_params(query_params: dict[str, Any] | None) -> ReadParams:
    """
    Split raw query params into filters, relations, order and pagination.

    Examples:
        - {"page": "2", "perPage": "10"} -> page=2, per_page=10
        - {"perPage": "-1"} -> per_page=-1 (every row)
        - {"perPage": "abc"} -> per_page=20
        - {"relations": "owner,tags.cats"} -> relations=["owner", "tags.cats"]
    """
    params = {key: _last(value) for key, value in (query_params or {}).items()}

    page = _to_int(params.get("page")) or 1
    per_page = _to_int(params.get("perPage"))
    if per_page is None or (per_page < 1 and per_page != ALL_RESULTS):
        per_page = DEFAULT_RESULTS_PER_PAGE

    raw_relations = params.get("relations") or ""
    relations = [r.strip() for r in str(raw_relations).split(",") if r.strip()]

    return ReadParams(
        filters={k: v for k, v in params.items() if k not in RESERVED_QUERY_PARAMS},
        relations=relations,
        order_by=params.get("orderBy") or None,
        order=params.get("order") or None,
        page=max(1, page),
        per_page=per_page,
    )


# =============================================================================
# Relation Planning
# =============================================================================


@dataclass
class RelationNode:
    """One relation to hydrate, with the relations to hydrate below it."""

    relation: RelationInfo
    entity: EntityManifest
    alias: str
    columns: list[str]
    children: list[RelationNode] = field(default_factory=list)


# =============================================================================
# CRUD Service
# =============================================================================


class CrudService:
    """
    Generic CRUD over every entity of an app manifest.

    Example:
        service = CrudService(app, db, registry, schemas)
        page = await service.find_all("cats", {"age_gte": "2", "relations": "owner"})
        cat = await service.store("cats", {"name": "Tom", "ownerId": 1})
    """

    def __init__(
        self,
        app: AppManifest,
        db: DatabaseManager,
        registry: RelationRegistry,
        schemas: dict[str, EntitySchema],
        validator: Validator | None = None,
    ):
        self.app = app
        self.db = db
        self.registry = registry
        self.schemas = schemas
        self.validator = validator or Validator()
        self.repositories: dict[str, SQLiteRepository] = RepositoryFactory(
            schemas
        ).create_all_repositories()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_entity(self, entity_slug: str) -> EntityManifest:
        """
        Resolve an entity by slug.

        Raises:
            NotFoundError: If no entity has this slug
        """
        entity = self.app.get_entity(entity_slug)
        if entity is None:
            raise NotFoundError(f"Entity '{entity_slug}' not found")
        return entity

    def _entity_by_class(self, class_name: str) -> EntityManifest:
        entity = self.app.get_entity_by_class_name(class_name)
        assert entity is not None, class_name
        return entity

    def _repository(self, entity: EntityManifest) -> SQLiteRepository:
        return self.repositories[entity.class_name]

    @staticmethod
    def visible_columns(entity: EntityManifest, full_version: bool = False) -> list[str]:
        """id, then every property the caller may read."""
        return ["id", *(p.name for p in entity.visible_properties(full_version))]

    @staticmethod
    def _writable_properties(entity: EntityManifest) -> dict[str, PropType]:
        props = {p.name: p.type for p in entity.properties}
        if entity.authenticable:
            props.setdefault("email", PropType.EMAIL)
            props.setdefault("password", PropType.PASSWORD)
        return props

    @staticmethod
    def _password_columns(entity: EntityManifest) -> set[str]:
        columns = {p.name for p in entity.properties if p.is_password}
        if entity.authenticable:
            columns.add("password")
        return columns

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    async def find_all(
        self,
        entity_slug: str,
        query_params: dict[str, Any] | None = None,
        full_version: bool = False,
    ) -> Paginator[dict[str, Any]]:
        """
        List items of an entity.

        Args:
            entity_slug: Entity slug
            query_params: Filters (``<prop>_<op>``), orderBy, order, relations,
                page and perPage
            full_version: Include hidden properties (caller is admin)

        Returns:
            Paginator envelope of hydrated items

        Raises:
            NotFoundError: Unknown entity
            BadRequestError: Invalid filter or order
        """
        entity = self.get_entity(entity_slug)
        params = parse_query_params(query_params)

        query, nodes = self._build_read_query(entity, params, full_version)
        self._apply_order(query, entity, params)

        with self.db.connection() as conn:
            paginator = paginate(conn, query, params.page, params.per_page)
            paginator.data = self._hydrate(conn, entity, paginator.data, nodes)

        return paginator

    async def find_one(
        self,
        entity_slug: str,
        id: int,
        query_params: dict[str, Any] | None = None,
        full_version: bool = False,
    ) -> dict[str, Any]:
        """
        Get one item of an entity.

        Raises:
            NotFoundError: Unknown entity or no item with this id
        """
        entity = self.get_entity(entity_slug)
        params = parse_query_params(query_params)

        with self.db.connection() as conn:
            return self._read_one(conn, entity, id, params, full_version)

    async def find_select_options(
        self,
        entity_slug: str,
        query_params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Every item as ``{id, label}``, labelled by the entity's main prop."""
        entity = self.get_entity(entity_slug)
        paginator = await self.find_all(
            entity_slug, {**(query_params or {}), "perPage": str(ALL_RESULTS)}
        )
        return [
            {"id": item["id"], "label": item.get(entity.main_prop)} for item in paginator.data
        ]

    def _read_one(
        self,
        conn: sqlite3.Connection,
        entity: EntityManifest,
        id: int,
        params: ReadParams,
        full_version: bool,
    ) -> dict[str, Any]:
        query, nodes = self._build_read_query(entity, params, full_version)
        query.add_condition(FilterCondition("id", FilterOperator.EQ, id))

        sql, sql_params = query.build_select()
        row = conn.execute(sql, sql_params).fetchone()
        if row is None:
            raise NotFoundError(f"{entity.name_singular or entity.class_name} {id} not found")

        return self._hydrate(conn, entity, [dict(row)], nodes)[0]

    def _build_read_query(
        self,
        entity: EntityManifest,
        params: ReadParams,
        full_version: bool,
    ) -> tuple[SelectQuery, list[RelationNode]]:
        query = SelectQuery(table_name=entity.class_name)
        for column in self.visible_columns(entity, full_version):
            query.select(column)

        nodes = self.plan_relations(entity, params.relations, ROOT_ALIAS, full_version)
        for node in nodes:
            if node.relation.is_to_one:
                assert node.relation.foreign_key_field
                query.select(node.relation.foreign_key_field, _fk_key(node.relation))

        for key, value in params.filters.items():
            self._apply_filter(query, entity, key, value)

        return query, nodes

    def plan_relations(
        self,
        entity: EntityManifest,
        requested: list[str],
        alias: str,
        full_version: bool,
        ancestors: tuple[str, ...] = (),
    ) -> list[RelationNode]:
        """
        Plan which relations to hydrate below an entity.

        A relation is loaded when it is eager or named in ``requested``. Its
        children are planned with the paths below it only (``owner.company``
        becomes ``company``), so every level strictly shortens the request.
        Eager relations are not followed back into an entity already on the
        current path.

        Args:
            entity: Entity whose relations are planned
            requested: Dotted relation paths relative to this entity
            alias: Alias of this entity (``entity`` at the root)
            full_version: Include hidden properties of related entities
            ancestors: Class names from the root down to this entity

        Returns:
            Relation nodes, in declaration order
        """
        nodes: list[RelationNode] = []
        path = (*ancestors, entity.class_name)

        for described in self.registry.describe_relations(entity.class_name):
            prefix = f"{described.name}."
            remaining = [p[len(prefix):] for p in requested if p.startswith(prefix)]
            explicit = described.name in requested or bool(remaining)
            if not explicit and not (described.eager and described.entity not in path):
                continue

            relation = self.registry.get_relation(entity.class_name, described.name)
            assert relation is not None, described.name
            target = self._entity_by_class(relation.to_entity)
            node_alias = camelize_alias(alias, relation.name)

            nodes.append(
                RelationNode(
                    relation=relation,
                    entity=target,
                    alias=node_alias,
                    columns=self.visible_columns(target, full_version),
                    children=self.plan_relations(
                        target, remaining, node_alias, full_version, path
                    ),
                )
            )

        return nodes

    def _apply_filter(
        self, query: SelectQuery, entity: EntityManifest, key: str, value: Any
    ) -> None:
        condition = FilterCondition.parse(key, value)
        target = entity
        alias = ROOT_ALIAS

        if condition.relation is not None:
            relation = self.registry.get_relation(entity.class_name, condition.relation)
            if relation is None:
                raise BadRequestError(
                    f"Relation {condition.relation} does not exist in {entity.class_name}"
                )
            target = self._entity_by_class(relation.to_entity)
            alias = camelize_alias(ROOT_ALIAS, relation.name)
            self._join_for_filter(query, relation, alias)

        if condition.field != "id":
            prop = target.get_property(condition.field)
            if prop is None or prop.hidden or prop.is_password:
                raise BadRequestError(
                    f"Property {condition.field} does not exist in {target.class_name}"
                )
            if prop.type == PropType.BOOLEAN:
                condition.value = self._boolean_filter_value(condition.value)

        query.add_condition(condition, alias)

    @staticmethod
    def _boolean_filter_value(value: Any) -> Any:
        """Map "true" / "false" to 1 / 0."""
        if isinstance(value, list):
            return [CrudService._boolean_filter_value(v) for v in value]
        if value in ("true", True):
            return 1
        if value in ("false", False):
            return 0
        return value

    @staticmethod
    def _join_for_filter(query: SelectQuery, relation: RelationInfo, alias: str) -> None:
        """LEFT JOIN a related table into the root query under its planner alias."""
        target = f"{quote_identifier(relation.to_entity)} AS {quote_identifier(alias)}"

        if relation.is_to_one:
            assert relation.foreign_key_field
            query.add_join(
                f"LEFT JOIN {target} ON {column_ref(alias, 'id')} = "
                f"{column_ref(ROOT_ALIAS, relation.foreign_key_field)}"
            )
        elif relation.kind == RelationshipType.ONE_TO_MANY:
            assert relation.foreign_key_field
            query.add_join(
                f"LEFT JOIN {target} ON {column_ref(alias, relation.foreign_key_field)} = "
                f"{column_ref(ROOT_ALIAS, 'id')}"
            )
        else:
            assert relation.join_table and relation.join_column and relation.inverse_join_column
            join_alias = f"{alias}_jt"
            query.add_join(
                f"LEFT JOIN {quote_identifier(relation.join_table)} AS {quote_identifier(join_alias)} "
                f"ON {column_ref(join_alias, relation.join_column)} = {column_ref(ROOT_ALIAS, 'id')}"
            )
            query.add_join(
                f"LEFT JOIN {target} ON {column_ref(alias, 'id')} = "
                f"{column_ref(join_alias, relation.inverse_join_column)}"
            )

    @staticmethod
    def _apply_order(query: SelectQuery, entity: EntityManifest, params: ReadParams) -> None:
        order_by = params.order_by or "id"
        if order_by != "id":
            prop = entity.get_property(order_by)
            if prop is None or prop.hidden or prop.is_password:
                raise BadRequestError(
                    f"Property {order_by} does not exist in {entity.class_name} "
                    "and cannot be used for ordering"
                )

        if params.order is not None:
            descending = params.order.upper() == "DESC"
        else:
            descending = params.order_by is None

        query.sorts.append(SortField(order_by, descending=descending))

    # -------------------------------------------------------------------------
    # Hydration
    # -------------------------------------------------------------------------

    def _hydrate(
        self,
        conn: sqlite3.Connection,
        entity: EntityManifest,
        rows: list[dict[str, Any]],
        nodes: list[RelationNode],
    ) -> list[dict[str, Any]]:
        """Convert rows, attach planned relations, strip internal keys."""
        repository = self._repository(entity)
        items = [repository.from_row(row) for row in rows]

        if items:
            for node in nodes:
                self._load_node(conn, node, items)

        for item in items:
            for key in [k for k in item if k.startswith(_PRIVATE_PREFIX)]:
                del item[key]
        return items

    def _load_node(
        self,
        conn: sqlite3.Connection,
        node: RelationNode,
        parents: list[dict[str, Any]],
    ) -> None:
        """Fetch one relation for a batch of parent items and attach it."""
        relation = node.relation
        query = SelectQuery(table_name=node.entity.class_name, alias=node.alias)
        for column in node.columns:
            query.select(column)
        for child in node.children:
            if child.relation.is_to_one:
                assert child.relation.foreign_key_field
                query.select(child.relation.foreign_key_field, _fk_key(child.relation))
        query.sorts.append(SortField("id", alias=node.alias))

        if relation.is_to_one:
            fk = _fk_key(relation)
            ids = sorted({p[fk] for p in parents if p.get(fk) is not None})
            if not ids:
                for parent in parents:
                    parent[relation.name] = None
                return
            query.add_condition(FilterCondition("id", FilterOperator.IN, ids))

        elif relation.kind == RelationshipType.ONE_TO_MANY:
            assert relation.foreign_key_field
            query.select(relation.foreign_key_field, _PARENT_KEY)
            query.add_condition(
                FilterCondition(
                    relation.foreign_key_field, FilterOperator.IN, [p["id"] for p in parents]
                )
            )

        else:
            assert relation.join_table and relation.join_column and relation.inverse_join_column
            join_alias = f"{node.alias}_jt"
            query.select(relation.join_column, _PARENT_KEY, alias=join_alias)
            query.add_join(
                f"INNER JOIN {quote_identifier(relation.join_table)} AS {quote_identifier(join_alias)} "
                f"ON {column_ref(join_alias, relation.inverse_join_column)} = {column_ref(node.alias, 'id')}"
            )
            query.add_condition(
                FilterCondition(
                    relation.join_column, FilterOperator.IN, [p["id"] for p in parents]
                ),
                join_alias,
            )

        sql, params = query.build_select()
        rows = [dict(row) for row in conn.execute(sql, params).fetchall()]
        parent_ids = [row.pop(_PARENT_KEY, None) for row in rows]
        related = self._hydrate(conn, node.entity, rows, node.children)

        if relation.is_to_one:
            by_id = {item["id"]: item for item in related}
            fk = _fk_key(relation)
            for parent in parents:
                parent[relation.name] = by_id.get(parent.get(fk))
            return

        groups: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for parent_id, item in zip(parent_ids, related):
            groups[parent_id].append(item)
        for parent in parents:
            parent[relation.name] = groups.get(parent["id"], [])

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def _resolve_relation_values(
        self,
        conn: sqlite3.Connection,
        entity: EntityManifest,
        dto: dict[str, Any],
    ) -> tuple[dict[str, int | None], dict[str, list[int]]]:
        """
        Read related ids from a write payload and check they exist.

        Only relations persisted by this side are read: ``<rel>Id`` for
        many-to-one, ``<singular rel>Ids`` for owning many-to-many.

        Returns:
            Tuple of (FK column values, many-to-many ids by relation name)

        Raises:
            BadRequestError: Malformed or unknown related id
        """
        foreign_keys: dict[str, int | None] = {}
        join_ids: dict[str, list[int]] = {}

        for relation in self.registry.get_relations(entity.class_name):
            if not relation.is_persisted_by_owner or relation.dto_key not in dto:
                continue

            raw = dto[relation.dto_key]
            if relation.is_to_one:
                ids = [] if raw is None else [raw]
            elif raw is None:
                ids = []
            elif isinstance(raw, list):
                ids = raw
            else:
                raise BadRequestError(f"{relation.dto_key} must be a list of ids")

            if any(isinstance(i, bool) or _to_int(i) is None for i in ids):
                raise BadRequestError(f"{relation.dto_key} must contain integer ids")
            ids = [int(i) for i in ids]

            target = self._entity_by_class(relation.to_entity)
            missing = set(ids) - self._repository(target).existing_ids(conn, ids)
            if missing:
                raise BadRequestError(
                    f"{target.class_name} with id {sorted(missing)[0]} not found "
                    f"({relation.dto_key})"
                )

            if relation.is_to_one:
                assert relation.foreign_key_field
                foreign_keys[relation.foreign_key_field] = ids[0] if ids else None
            else:
                join_ids[relation.name] = ids

        return foreign_keys, join_ids

    def _write_join_rows(
        self,
        conn: sqlite3.Connection,
        entity: EntityManifest,
        id: int,
        join_ids: dict[str, list[int]],
    ) -> None:
        for name, ids in join_ids.items():
            relation = self.registry.get_relation(entity.class_name, name)
            assert relation and relation.join_table
            assert relation.join_column and relation.inverse_join_column
            SQLiteRepository.replace_join_rows(
                conn,
                relation.join_table,
                relation.join_column,
                relation.inverse_join_column,
                id,
                ids,
            )

    def _validate(
        self, candidate: dict[str, Any], entity: EntityManifest, is_update: bool
    ) -> None:
        errors = self.validator.validate(candidate, entity, is_update=is_update)
        if errors:
            log_with_context(
                logger,
                logging.WARNING,
                f"Validation failed for {entity.class_name}",
                entity=entity.slug,
                properties=[e.property for e in errors],
            )
            raise ValidationFailedError(errors)

    def _hash_passwords(self, entity: EntityManifest, values: dict[str, Any]) -> None:
        for column in self._password_columns(entity):
            if values.get(column):
                values[column] = hash_password(str(values[column]))

    @staticmethod
    def _unique_violation(exc: sqlite3.IntegrityError, values: dict[str, Any]) -> ValidationFailedError:
        """Turn a UNIQUE constraint failure into a field error."""
        message = str(exc)
        if "UNIQUE" not in message:
            raise exc
        column = message.rsplit(".", 1)[-1].strip()
        return ValidationFailedError(
            [
                FieldError(
                    property=column,
                    value=values.get(column),
                    constraints={"isUnique": f"{column} must be unique"},
                )
            ]
        )

    def _attached_relations(self, entity: EntityManifest, dto: dict[str, Any]) -> list[str]:
        return [
            r.name
            for r in self.registry.get_relations(entity.class_name)
            if r.is_persisted_by_owner and r.dto_key in dto
        ]

    async def store(
        self,
        entity_slug: str,
        dto: dict[str, Any],
        full_version: bool = False,
    ) -> dict[str, Any]:
        """
        Create an item.

        Args:
            entity_slug: Entity slug
            dto: Property values plus ``ownerId`` / ``tagIds`` style keys
            full_version: Include hidden properties in the returned item

        Returns:
            The stored item with its attached relations

        Raises:
            NotFoundError: Unknown entity
            ValidationFailedError: Candidate breaks a validation rule
            BadRequestError: Unknown related id
        """
        entity = self.get_entity(entity_slug)
        repository = self._repository(entity)
        writable = self._writable_properties(entity)

        candidate = {k: v for k, v in dto.items() if k in writable}
        self._validate(candidate, entity, is_update=False)
        self._hash_passwords(entity, candidate)

        with self.db.connection() as conn:
            foreign_keys, join_ids = self._resolve_relation_values(conn, entity, dto)
            try:
                id = repository.insert(conn, {**candidate, **foreign_keys})
            except sqlite3.IntegrityError as e:
                raise self._unique_violation(e, candidate) from e
            self._write_join_rows(conn, entity, id, join_ids)

            item = self._read_one(
                conn,
                entity,
                id,
                ReadParams(relations=self._attached_relations(entity, dto)),
                full_version,
            )

        log_with_context(
            logger, logging.INFO, f"Stored {entity.class_name} {id}", entity=entity.slug, id=id
        )
        return item

    async def store_empty(self, entity_slug: str, id: int | None = None) -> dict[str, Any]:
        """
        Create an item with only automatic fields, bypassing validation.

        With an id, the row is created only when absent and the stored item
        is returned either way, so concurrent callers end up with one row.
        """
        entity = self.get_entity(entity_slug)
        repository = self._repository(entity)

        with self.db.connection() as conn:
            if id is None:
                id = repository.insert(conn, {})
                created = True
            else:
                created = repository.insert_if_absent(conn, id)
            item = self._read_one(conn, entity, id, ReadParams(), full_version=True)

        if created:
            log_with_context(
                logger,
                logging.INFO,
                f"Stored empty {entity.class_name} {id}",
                entity=entity.slug,
                id=id,
            )
        return item

    async def update(
        self,
        entity_slug: str,
        id: int,
        dto: dict[str, Any],
        partial_replacement: bool = False,
        full_version: bool = False,
    ) -> dict[str, Any]:
        """
        Update an item.

        The dto is merged over the stored item and the merged candidate is
        validated. A full update writes every merged column; a partial
        replacement writes only the columns named in the dto. A missing or
        empty password keeps the stored hash.

        Args:
            entity_slug: Entity slug
            id: Item id
            dto: Property values plus ``ownerId`` / ``tagIds`` style keys
            partial_replacement: Write only the supplied columns (PATCH)
            full_version: Include hidden properties in the returned item

        Returns:
            The updated item with its attached relations

        Raises:
            NotFoundError: Unknown entity or id
            ValidationFailedError: Merged candidate breaks a validation rule
            BadRequestError: Unknown related id
        """
        entity = self.get_entity(entity_slug)
        repository = self._repository(entity)
        writable = self._writable_properties(entity)
        password_columns = self._password_columns(entity)

        changes = {
            k: v
            for k, v in dto.items()
            if k in writable and not (k in password_columns and not v)
        }

        with self.db.connection() as conn:
            existing = repository.get_raw(conn, id)
            if existing is None:
                raise NotFoundError(
                    f"{entity.name_singular or entity.class_name} {id} not found"
                )

            merged = {
                k: v
                for k, v in existing.items()
                if k in writable and k not in password_columns
            }
            merged.update(changes)

            self._validate(merged, entity, is_update=True)
            self._hash_passwords(entity, changes)
            merged.update(changes)

            foreign_keys, join_ids = self._resolve_relation_values(conn, entity, dto)
            values = changes if partial_replacement else merged
            try:
                repository.update(conn, id, {**values, **foreign_keys})
            except sqlite3.IntegrityError as e:
                raise self._unique_violation(e, values) from e
            self._write_join_rows(conn, entity, id, join_ids)

            item = self._read_one(
                conn,
                entity,
                id,
                ReadParams(relations=self._attached_relations(entity, dto)),
                full_version,
            )

        log_with_context(
            logger,
            logging.INFO,
            f"Updated {entity.class_name} {id}",
            entity=entity.slug,
            id=id,
            partial=partial_replacement,
        )
        return item

    async def delete(self, entity_slug: str, id: int) -> dict[str, int]:
        """
        Delete an item.

        Refused while any one-to-many relation still has related items.
        Join-table rows go with the item.

        Raises:
            NotFoundError: Unknown entity or id
            BadRequestError: The item still has related items
        """
        entity = self.get_entity(entity_slug)
        repository = self._repository(entity)

        with self.db.connection() as conn:
            if repository.get_raw(conn, id) is None:
                raise NotFoundError(
                    f"{entity.name_singular or entity.class_name} {id} not found"
                )

            for relation in self.registry.get_relations(entity.class_name):
                if relation.kind != RelationshipType.ONE_TO_MANY:
                    continue
                assert relation.foreign_key_field
                target = self._entity_by_class(relation.to_entity)
                count = self._repository(target).count_where(
                    conn, relation.foreign_key_field, id
                )
                if count:
                    raise BadRequestError(
                        f"Cannot delete {entity.class_name} {id}: it still has "
                        f"{count} related item(s) in '{relation.name}'"
                    )

            affected = repository.delete(conn, id)

        log_with_context(
            logger, logging.INFO, f"Deleted {entity.class_name} {id}", entity=entity.slug, id=id
        )
        return {"affected": affected}
