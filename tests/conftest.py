"""Shared pytest fixtures for manifest-back tests."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from manifest_back.runtime.crud_service import CrudService
from manifest_back.runtime.relation_resolver import RelationRegistry
from manifest_back.runtime.repository import DatabaseManager
from manifest_back.runtime.schema_builder import EntitySchema, build_schemas
from manifest_back.runtime.server import ServerConfig, create_app
from manifest_back.specs import AppManifest, parse_manifest

ADMIN_TOKEN = "admin-token"

# A small pet shop: Company <- Owner <- Cat <-> Tag, plus an authenticable
# User and a single Settings entity.
PET_SHOP: dict[str, Any] = {
    "name": "Pet shop",
    "entities": {
        "Company": {"properties": ["name"]},
        "Owner": {
            "properties": ["name", {"name": "email", "type": "email"}],
            "belongsTo": ["Company"],
        },
        "Cat": {
            "mainProp": "name",
            "properties": [
                {"name": "name", "validation": {"required": True}},
                {"name": "age", "type": "number"},
                {"name": "secret", "hidden": True},
                {"name": "indoor", "type": "boolean"},
                {
                    "name": "color",
                    "type": "choice",
                    "options": {"values": ["black", "white", "ginger"]},
                },
            ],
            "belongsTo": ["Owner"],
        },
        "Tag": {"properties": ["label"], "belongsToMany": ["Cat"]},
        "User": {"authenticable": True, "properties": ["name"]},
        "Settings": {"single": True, "slug": "settings", "properties": ["title"]},
    },
}

PET_SHOP_YAML = """\
name: Pet shop
entities:
  Owner:
    properties:
      - name
  Cat:
    properties:
      - name
      - { name: age, type: number }
    belongsTo:
      - Owner
  Tag:
    properties:
      - label
    belongsToMany:
      - Cat
"""


def pet_shop_data() -> dict[str, Any]:
    """Fresh copy of the pet shop manifest document."""
    return copy.deepcopy(PET_SHOP)


@pytest.fixture
def app_manifest() -> AppManifest:
    """Return the parsed pet shop manifest."""
    return parse_manifest(pet_shop_data())


@pytest.fixture
def registry(app_manifest: AppManifest) -> RelationRegistry:
    return RelationRegistry.from_manifest(app_manifest)


@pytest.fixture
def schemas(app_manifest: AppManifest, registry: RelationRegistry) -> dict[str, EntitySchema]:
    return build_schemas(app_manifest.entities, registry)


@pytest.fixture
def db(tmp_path: Path, schemas: dict[str, EntitySchema], registry: RelationRegistry) -> DatabaseManager:
    """Return a database with every pet shop table created."""
    manager = DatabaseManager(tmp_path / "test.db")
    manager.create_all_tables(schemas.values(), registry)
    return manager


@pytest.fixture
def service(
    app_manifest: AppManifest,
    db: DatabaseManager,
    registry: RelationRegistry,
    schemas: dict[str, EntitySchema],
) -> CrudService:
    return CrudService(app_manifest, db, registry, schemas)


@pytest.fixture
def manifest_file(tmp_path: Path) -> Path:
    """Write the YAML pet shop manifest and return its path."""
    path = tmp_path / "manifest" / "backend.yml"
    path.parent.mkdir(parents=True)
    path.write_text(PET_SHOP_YAML)
    return path


@pytest.fixture
def client(app_manifest: AppManifest, tmp_path: Path):
    """Return a TestClient over the pet shop app."""
    config = ServerConfig(
        db_path=tmp_path / "app.db",
        admin_tokens=[ADMIN_TOKEN],
        log_dir=None,
    )
    app = create_app(app_manifest, config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
