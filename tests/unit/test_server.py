"""Tests for server configuration and app assembly."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from manifest_back.errors import ConfigurationError
from manifest_back.runtime.server import DEFAULT_PORT, ManifestBackendApp, ServerConfig, create_app
from manifest_back.specs import AppManifest


class TestServerConfig:
    def test_defaults(self) -> None:
        config = ServerConfig()

        assert config.manifest_path == Path("manifest/backend.yml")
        assert config.db_path == Path(".manifest/backend.db")
        assert config.port == DEFAULT_PORT
        assert config.admin_tokens == []

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MANIFEST_PATH", "/srv/backend.yml")
        monkeypatch.setenv("MANIFEST_DB_PATH", "/srv/data.db")
        monkeypatch.setenv("MANIFEST_ADMIN_TOKENS", "one, two,")
        monkeypatch.setenv("MANIFEST_LOG_DIR", "")
        monkeypatch.setenv("MANIFEST_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("MANIFEST_ENV", "production")

        config = ServerConfig.from_env()

        assert config.manifest_path == Path("/srv/backend.yml")
        assert config.db_path == Path("/srv/data.db")
        assert config.admin_tokens == ["one", "two"]
        assert config.log_dir is None
        assert config.log_level == "DEBUG"
        assert config.port == 8080
        assert config.environment == "production"

    def test_from_env_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("MANIFEST_PATH", "MANIFEST_LOG_DIR", "PORT", "MANIFEST_ADMIN_TOKENS"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.log_dir == Path(".manifest/logs")
        assert config.port == DEFAULT_PORT
        assert config.admin_tokens == []


class TestManifestBackendApp:
    def test_build_creates_tables(self, app_manifest: AppManifest, tmp_path: Path) -> None:
        backend = ManifestBackendApp(app_manifest, ServerConfig(db_path=tmp_path / "app.db"))
        assert backend.app is None

        app = backend.build()

        assert backend.app is app
        assert app.title == "Pet shop"
        assert backend.db.table_exists("Cat")
        assert backend.db.table_exists("Tag_cats_Cat")

    def test_create_app_loads_manifest_from_config(self, manifest_file: Path, tmp_path: Path) -> None:
        config = ServerConfig(manifest_path=manifest_file, db_path=tmp_path / "app.db", log_dir=None)

        with TestClient(create_app(config=config)) as client:
            response = client.get("/collections/tags")

        assert response.status_code == 200
        assert response.json()["totalItems"] == 0

    def test_malformed_validation_rule_fails_at_boot(self, tmp_path: Path) -> None:
        manifest = tmp_path / "backend.yml"
        manifest.write_text(
            "entities:\n"
            "  Cat:\n"
            "    properties:\n"
            "      - {name: name, validation: {matches: '(', isIn: 3}}\n"
        )
        config = ServerConfig(manifest_path=manifest, db_path=tmp_path / "app.db", log_dir=None)

        with pytest.raises(ConfigurationError, match="Invalid entity Cat"):
            create_app(config=config)
