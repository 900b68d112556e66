"""
manifest-back runtime

Turns an AppManifest into a running backend (SQLite + FastAPI).

This module provides:
- Schema building (EntitySchema from EntityManifest)
- Relation wiring (FK columns, join tables, owning sides)
- The generic CRUD service (filters, relations, pagination, writes)
- Runtime server creation

Example usage:
    >>> from manifest_back.specs import load_manifest
    >>> from manifest_back.runtime import ServerConfig, create_app
    >>>
    >>> manifest = load_manifest("manifest/backend.yml")
    >>> app = create_app(manifest, ServerConfig())
"""

from manifest_back.runtime.crud_service import CrudService
from manifest_back.runtime.pagination import Paginator, paginate
from manifest_back.runtime.relation_resolver import RelationInfo, RelationRegistry
from manifest_back.runtime.repository import DatabaseManager
from manifest_back.runtime.schema_builder import EntitySchema, build_schema, build_schemas
from manifest_back.runtime.server import (
    ManifestBackendApp,
    ServerConfig,
    create_app,
    run_app,
)

__all__ = [
    # Schema
    "EntitySchema",
    "build_schema",
    "build_schemas",
    "RelationInfo",
    "RelationRegistry",
    # Storage
    "DatabaseManager",
    # Query engine
    "CrudService",
    "Paginator",
    "paginate",
    # Server
    "ManifestBackendApp",
    "ServerConfig",
    "create_app",
    "run_app",
]
