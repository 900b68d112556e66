"""
SQLite repository - provides the persistence layer.

This module owns the SQLite connection, creates tables from EntitySchema,
and offers the row-level primitives (insert, update, delete, join rows) the
CRUD service is built on. It holds no rows between calls.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from manifest_back.runtime.query_builder import quote_identifier
from manifest_back.runtime.relation_resolver import (
    JoinTableSpec,
    RelationRegistry,
    build_foreign_key_constraint,
    get_foreign_key_indexes,
)
from manifest_back.runtime.schema_builder import EntitySchema
from manifest_back.specs.entity import PropType

logger = logging.getLogger("manifest_back.db")


# =============================================================================
# Value Conversion
# =============================================================================


def _python_to_sqlite(value: Any, prop_type: PropType | None = None) -> Any:
    """Convert Python value to SQLite-compatible value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return 1 if value else 0
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, Decimal):
        return float(value)
    elif isinstance(value, (dict, list)):
        return json.dumps(value)
    else:
        return value


def _sqlite_to_python(value: Any, prop_type: PropType | None = None) -> Any:
    """Convert SQLite value to Python type based on property type."""
    if value is None or prop_type is None:
        return value

    if prop_type == PropType.BOOLEAN:
        return bool(value)
    elif prop_type in (PropType.LOCATION, PropType.IMAGE):
        return json.loads(value) if isinstance(value, str) else value
    elif prop_type in (PropType.NUMBER, PropType.MONEY):
        return value if isinstance(value, (int, float)) else float(value)
    else:
        return value


def utc_now() -> str:
    """Timestamp stored in createdAt / updatedAt."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# DDL
# =============================================================================


def table_ddl(schema: EntitySchema) -> str:
    """CREATE TABLE statement of an entity schema."""
    definitions = [column.to_sql() for column in schema.columns.values()]
    definitions.extend(build_foreign_key_constraint(fk) for fk in schema.foreign_keys)
    definitions.extend(
        "UNIQUE ({})".format(", ".join(quote_identifier(c) for c in unique))
        for unique in schema.uniques
    )
    return f"CREATE TABLE IF NOT EXISTS {quote_identifier(schema.table_name)} ({', '.join(definitions)})"


def join_table_ddl(join_table: JoinTableSpec) -> str:
    """CREATE TABLE statement of a many-to-many join table."""
    source = quote_identifier(join_table.source_column)
    target = quote_identifier(join_table.target_column)
    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(join_table.name)} ("
        f"{source} INTEGER NOT NULL, {target} INTEGER NOT NULL, "
        f"PRIMARY KEY ({source}, {target}), "
        f"FOREIGN KEY ({source}) REFERENCES {quote_identifier(join_table.source_entity)}(\"id\") ON DELETE CASCADE, "
        f"FOREIGN KEY ({target}) REFERENCES {quote_identifier(join_table.target_entity)}(\"id\") ON DELETE CASCADE)"
    )


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages SQLite database connection and schema.

    Every ``connection()`` is a fresh connection that commits on success and
    rolls back on error, so requests never share state through it.
    """

    def __init__(self, db_path: str | Path = ".manifest/backend.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection context manager.

        Yields:
            SQLite connection with foreign keys enforced
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_table(self, schema: EntitySchema) -> None:
        """
        Create a table for an entity schema if it doesn't exist.

        Args:
            schema: Entity schema
        """
        with self.connection() as conn:
            conn.execute(table_ddl(schema))

        logger.debug("Created table %s", schema.table_name)

    def create_join_table(self, join_table: JoinTableSpec) -> None:
        """Create the join table of a many-to-many relation."""
        with self.connection() as conn:
            conn.execute(join_table_ddl(join_table))

    def create_all_tables(
        self,
        schemas: Iterable[EntitySchema],
        registry: RelationRegistry | None = None,
    ) -> None:
        """
        Create tables, join tables and FK indexes for all schemas.

        Args:
            schemas: Entity schemas
            registry: Relation registry (for FK indexes)
        """
        schemas = list(schemas)
        for schema in schemas:
            self.create_table(schema)
        for schema in schemas:
            for join_table in schema.join_tables:
                self.create_join_table(join_table)
        if registry is not None:
            with self.connection() as conn:
                for schema in schemas:
                    for sql in get_foreign_key_indexes(schema.name, registry):
                        conn.execute(sql)

        logger.info("Database ready at %s (%d tables)", self.db_path, len(schemas))

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table_name,),
            )
            return cursor.fetchone() is not None


# =============================================================================
# Repository
# =============================================================================


class SQLiteRepository:
    """
    Row-level persistence for a single entity table.

    All methods take the connection of the calling operation so a logical
    action (for example a row plus its join rows) is committed together.
    """

    def __init__(self, schema: EntitySchema):
        self.schema = schema
        self.table = quote_identifier(schema.table_name)
        self._prop_types = {name: col.prop_type for name, col in schema.columns.items()}

    def to_row(self, data: dict[str, Any]) -> dict[str, Any]:
        """Keep only known columns, converted for SQLite."""
        return {
            k: _python_to_sqlite(v, self._prop_types.get(k))
            for k, v in data.items()
            if k in self.schema.columns and k != "id"
        }

    def from_row(self, row: sqlite3.Row | dict[str, Any]) -> dict[str, Any]:
        """Convert a SQLite row back to Python values."""
        return {k: _sqlite_to_python(v, self._prop_types.get(k)) for k, v in dict(row).items()}

    def insert(self, conn: sqlite3.Connection, data: dict[str, Any]) -> int:
        """Insert a row and return its id."""
        row = self.to_row(data)
        now = utc_now()
        row.setdefault("createdAt", now)
        row.setdefault("updatedAt", now)

        columns = ", ".join(quote_identifier(c) for c in row)
        placeholders = ", ".join("?" * len(row))
        cursor = conn.execute(
            f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
            list(row.values()),
        )
        assert cursor.lastrowid is not None
        return cursor.lastrowid

    def insert_if_absent(self, conn: sqlite3.Connection, id: int) -> bool:
        """Insert an empty row with a fixed id unless it exists. True when inserted."""
        now = utc_now()
        cursor = conn.execute(
            f'INSERT INTO {self.table} ("id", "createdAt", "updatedAt") VALUES (?, ?, ?) '
            'ON CONFLICT ("id") DO NOTHING',
            (id, now, now),
        )
        return cursor.rowcount > 0

    def update(self, conn: sqlite3.Connection, id: int, data: dict[str, Any]) -> bool:
        """Update the given columns of a row."""
        row = self.to_row(data)
        row["updatedAt"] = utc_now()

        set_clause = ", ".join(f"{quote_identifier(c)} = ?" for c in row)
        cursor = conn.execute(
            f'UPDATE {self.table} SET {set_clause} WHERE "id" = ?',
            [*row.values(), id],
        )
        return cursor.rowcount > 0

    def delete(self, conn: sqlite3.Connection, id: int) -> int:
        """Delete a row, returning the number of affected rows."""
        cursor = conn.execute(f'DELETE FROM {self.table} WHERE "id" = ?', (id,))
        return cursor.rowcount

    def get_raw(self, conn: sqlite3.Connection, id: int) -> dict[str, Any] | None:
        """Read every column of a row, password included. Internal use only."""
        cursor = conn.execute(f'SELECT * FROM {self.table} WHERE "id" = ?', (id,))
        row = cursor.fetchone()
        return self.from_row(row) if row else None

    def existing_ids(self, conn: sqlite3.Connection, ids: list[int]) -> set[int]:
        """Subset of ids that exist in this table."""
        if not ids:
            return set()
        placeholders = ", ".join("?" * len(ids))
        cursor = conn.execute(
            f'SELECT "id" FROM {self.table} WHERE "id" IN ({placeholders})', ids
        )
        return {row[0] for row in cursor.fetchall()}

    def count_where(self, conn: sqlite3.Connection, column: str, value: Any) -> int:
        """Count rows whose column equals value."""
        cursor = conn.execute(
            f"SELECT COUNT(*) FROM {self.table} WHERE {quote_identifier(column)} = ?",
            (value,),
        )
        return cursor.fetchone()[0]

    @staticmethod
    def replace_join_rows(
        conn: sqlite3.Connection,
        join_table: str,
        join_column: str,
        inverse_join_column: str,
        id: int,
        related_ids: list[int],
    ) -> None:
        """Replace the join rows of one item in a many-to-many join table."""
        table = quote_identifier(join_table)
        source = quote_identifier(join_column)
        target = quote_identifier(inverse_join_column)
        conn.execute(f"DELETE FROM {table} WHERE {source} = ?", (id,))
        conn.executemany(
            f"INSERT INTO {table} ({source}, {target}) VALUES (?, ?)",
            [(id, related_id) for related_id in dict.fromkeys(related_ids)],
        )


# =============================================================================
# Repository Factory
# =============================================================================


class RepositoryFactory:
    """
    Factory for creating repositories from entity schemas.
    """

    def __init__(self, schemas: dict[str, EntitySchema]):
        self.schemas = schemas
        self._repositories: dict[str, SQLiteRepository] = {}

    def create_all_repositories(self) -> dict[str, SQLiteRepository]:
        """
        Create repositories for all schemas.

        Returns:
            Dictionary mapping class names to repositories
        """
        for name, schema in self.schemas.items():
            self._repositories[name] = SQLiteRepository(schema)
        return self._repositories
