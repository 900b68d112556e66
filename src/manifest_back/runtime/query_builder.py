"""
Query builder for filtering, sorting and pagination.

Provides operator suffix parsing (``age_gte=2``), SQL generation for filter
conditions, and a count-capable SELECT query object. Every identifier that
reaches SQL goes through ``quote_identifier``; values are always bound.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from manifest_back.errors import BadRequestError

# Query params that never name a filter
RESERVED_QUERY_PARAMS = frozenset({"page", "perPage", "orderBy", "order", "relations"})

DEFAULT_RESULTS_PER_PAGE = 20

# Alias of the root entity in every read query
ROOT_ALIAS = "entity"

# Valid SQL identifier pattern (alphanumeric and underscore, not starting with digit)
_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Args:
        name: The identifier to validate
        context: Description of what's being validated (for error messages)

    Returns:
        The validated name

    Raises:
        ValueError: If the name contains invalid characters
    """
    if not name:
        raise ValueError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str) -> str:
    """Validate and double-quote an identifier: Cat -> "Cat"."""
    return f'"{validate_sql_identifier(name)}"'


def column_ref(alias: str, column: str) -> str:
    """Qualified column reference: "entityOwner"."name"."""
    return f"{quote_identifier(alias)}.{quote_identifier(column)}"


def camelize_alias(parent: str, name: str) -> str:
    """Alias of a joined relation: (entity, owner) -> entityOwner."""
    return parent + name[:1].upper() + name[1:]


# =============================================================================
# Filter Operators
# =============================================================================


class FilterOperator(str, Enum):
    """Supported filter operators, keyed by query param suffix."""

    EQ = "eq"
    NEQ = "neq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    IN = "in"

    @property
    def suffix(self) -> str:
        return f"_{self.value}"


# Operator mapping to SQL
OPERATOR_SQL: dict[FilterOperator, str] = {
    FilterOperator.EQ: "{field} = ?",
    FilterOperator.NEQ: "{field} != ?",
    FilterOperator.NE: "{field} != ?",
    FilterOperator.GT: "{field} > ?",
    FilterOperator.GTE: "{field} >= ?",
    FilterOperator.LT: "{field} < ?",
    FilterOperator.LTE: "{field} <= ?",
    FilterOperator.LIKE: "{field} LIKE ?",
    FilterOperator.IN: "{field} IN ({placeholders})",
}

# Longest first: _gte must win over _gt, _neq over _eq.
_OPERATORS_BY_SUFFIX_LENGTH = sorted(
    FilterOperator, key=lambda op: len(op.suffix), reverse=True
)


def match_suffix(key: str) -> tuple[str, FilterOperator] | None:
    """
    Split a filter key into its property path and operator.

    Examples:
        - "age_gte" -> ("age", GTE)
        - "owner.name_eq" -> ("owner.name", EQ)
        - "age" -> None
    """
    for operator in _OPERATORS_BY_SUFFIX_LENGTH:
        if key.endswith(operator.suffix) and len(key) > len(operator.suffix):
            return key[: -len(operator.suffix)], operator
    return None


def parse_in_list(value: Any) -> list[Any]:
    """
    Parse the value of an ``_in`` filter.

    Accepts ``1,2,3``, ``[1,2,3]`` or ``"a","b"``; strings must be JSON quoted.

    Raises:
        BadRequestError: If the value is not a valid literal list
    """
    if isinstance(value, (list, tuple)):
        return list(value)
    text = str(value).strip()
    if not text.startswith("["):
        text = f"[{text}]"
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        raise BadRequestError(f"Invalid list for _in filter: {value!r}") from None
    if not isinstance(parsed, list) or any(isinstance(v, (list, dict)) for v in parsed):
        raise BadRequestError(f"Invalid list for _in filter: {value!r}")
    return parsed


# =============================================================================
# Conditions and Sorting
# =============================================================================


@dataclass
class FilterCondition:
    """A single filter condition."""

    field: str
    operator: FilterOperator
    value: Any
    relation: str | None = None

    @classmethod
    def parse(cls, key: str, value: Any) -> FilterCondition:
        """
        Parse a filter key-value pair into a FilterCondition.

        Examples:
            - ("name_eq", "Tom") -> FilterCondition(field="name", op=EQ, value="Tom")
            - ("age_gte", "2") -> FilterCondition(field="age", op=GTE, value="2")
            - ("owner.name_like", "%a%") -> FilterCondition(field="name", op=LIKE,
              value="%a%", relation="owner")

        Raises:
            BadRequestError: If the key has no operator suffix or a deep path
        """
        matched = match_suffix(key)
        if matched is None:
            raise BadRequestError(
                f"Query param '{key}' should end with an operator suffix "
                f"({', '.join(op.suffix for op in FilterOperator)})"
            )
        path, operator = matched

        parts = path.split(".")
        if len(parts) > 2 or not all(parts):
            raise BadRequestError(f"Invalid filter path '{path}'")

        if operator == FilterOperator.IN:
            value = parse_in_list(value)

        if len(parts) == 2:
            return cls(field=parts[1], operator=operator, value=value, relation=parts[0])
        return cls(field=path, operator=operator, value=value)

    def to_sql(self, table_alias: str = ROOT_ALIAS) -> tuple[str, list[Any]]:
        """
        Convert condition to SQL fragment and parameters.

        Args:
            table_alias: Alias of the table holding the field

        Returns:
            Tuple of (sql_fragment, parameters)
        """
        field_ref = column_ref(table_alias, self.field)

        if self.operator == FilterOperator.IN:
            values = [self._convert_value(v) for v in self.value]
            if not values:
                return "0", []
            placeholders = ", ".join("?" * len(values))
            sql = OPERATOR_SQL[self.operator].format(field=field_ref, placeholders=placeholders)
            return sql, values

        sql = OPERATOR_SQL[self.operator].format(field=field_ref)
        return sql, [self._convert_value(self.value)]

    def _convert_value(self, value: Any) -> Any:
        """Convert Python value to SQLite-compatible value."""
        if isinstance(value, bool):
            return 1 if value else 0
        return value


@dataclass
class SortField:
    """A single sort field."""

    field: str
    descending: bool = False
    alias: str = ROOT_ALIAS

    def to_sql(self) -> str:
        """Convert to SQL ORDER BY fragment."""
        direction = "DESC" if self.descending else "ASC"
        return f"{column_ref(self.alias, self.field)} {direction}"


# =============================================================================
# Select Query
# =============================================================================


@dataclass
class SelectQuery:
    """
    A SELECT over one entity table, optionally joined to related tables.

    Joins are only ever added for filters on related entities, so every
    select is DISTINCT on the root row and counts are COUNT(DISTINCT id).

    Example:
        query = SelectQuery(table_name="Cat")
        query.select("id").select("name")
        query.add_condition(FilterCondition.parse("age_gte", "2"))
        query.sorts.append(SortField("id", descending=True))

        sql, params = query.build_select()
    """

    table_name: str
    alias: str = ROOT_ALIAS
    select_fields: list[tuple[str, str, str]] = field(default_factory=list)
    joins: list[str] = field(default_factory=list)
    conditions: list[tuple[str, FilterCondition]] = field(default_factory=list)
    sorts: list[SortField] = field(default_factory=list)
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        """Validate table name on initialization."""
        validate_sql_identifier(self.table_name, "table name")
        validate_sql_identifier(self.alias, "alias")

    def select(
        self, column: str, output_name: str | None = None, alias: str | None = None
    ) -> SelectQuery:
        """Add a column (of the root alias by default) to the select list."""
        self.select_fields.append((alias or self.alias, column, output_name or column))
        return self

    def add_join(self, sql: str) -> SelectQuery:
        """Add a JOIN clause once."""
        if sql not in self.joins:
            self.joins.append(sql)
        return self

    def add_condition(self, condition: FilterCondition, alias: str | None = None) -> SelectQuery:
        """AND a condition on the given alias (root by default)."""
        self.conditions.append((alias or self.alias, condition))
        return self

    def paginated(self, limit: int | None, offset: int = 0) -> SelectQuery:
        """Copy of this query restricted to one page."""
        return replace(self, limit=limit, offset=offset)

    def build_where_clause(self) -> tuple[str, list[Any]]:
        """
        Build the WHERE clause from conditions.

        Returns:
            Tuple of (where_clause, parameters)
        """
        if not self.conditions:
            return "", []

        fragments = []
        params: list[Any] = []

        for alias, condition in self.conditions:
            sql, condition_params = condition.to_sql(alias)
            fragments.append(sql)
            params.extend(condition_params)

        return f"WHERE {' AND '.join(fragments)}", params

    def build_order_clause(self) -> str:
        """Build the ORDER BY clause."""
        if not self.sorts:
            return ""
        return f"ORDER BY {', '.join(sort.to_sql() for sort in self.sorts)}"

    def build_select(self, count_only: bool = False) -> tuple[str, list[Any]]:
        """
        Build complete SELECT query.

        Args:
            count_only: If True, build COUNT(DISTINCT id) query instead

        Returns:
            Tuple of (sql, parameters)
        """
        params: list[Any] = []
        table = f"{quote_identifier(self.table_name)} AS {quote_identifier(self.alias)}"

        if count_only:
            select = f"SELECT COUNT(DISTINCT {column_ref(self.alias, 'id')}) FROM {table}"
        else:
            fields = ", ".join(
                f"{column_ref(alias, column)} AS {quote_identifier(output)}"
                for alias, column, output in self.select_fields
            ) or f"{quote_identifier(self.alias)}.*"
            select = f"SELECT DISTINCT {fields} FROM {table}"

        query_parts = [select, *self.joins]

        where_clause, where_params = self.build_where_clause()
        if where_clause:
            query_parts.append(where_clause)
            params.extend(where_params)

        if not count_only:
            order_clause = self.build_order_clause()
            if order_clause:
                query_parts.append(order_clause)

            if self.limit is not None:
                query_parts.append("LIMIT ? OFFSET ?")
                params.extend([self.limit, self.offset])

        return " ".join(query_parts), params

    def build_count(self) -> tuple[str, list[Any]]:
        """Build COUNT query."""
        return self.build_select(count_only=True)
