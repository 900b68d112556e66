"""
Runtime server - creates and runs the FastAPI application.

This module wires the manifest, schema builder, relation registry, database
and CRUD service together into a FastAPI application.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from fastapi import FastAPI

from manifest_back import __version__
from manifest_back.runtime.auth import AdminResolver
from manifest_back.runtime.crud_service import CrudService
from manifest_back.runtime.exception_handlers import register_exception_handlers
from manifest_back.runtime.logging import setup_logging
from manifest_back.runtime.relation_resolver import RelationRegistry
from manifest_back.runtime.repository import DatabaseManager
from manifest_back.runtime.route_generator import (
    generate_collection_routes,
    generate_manifest_routes,
    generate_single_routes,
)
from manifest_back.runtime.schema_builder import build_schemas
from manifest_back.specs import AppManifest, load_manifest

logger = logging.getLogger("manifest_back.server")

DEFAULT_PORT = 1111


# =============================================================================
# Server Configuration
# =============================================================================


@dataclass
class ServerConfig:
    """
    Configuration for ManifestBackendApp.

    Groups all initialization options into a single object; ``from_env``
    reads them from ``MANIFEST_*`` environment variables.
    """

    manifest_path: Path = field(default_factory=lambda: Path("manifest/backend.yml"))
    db_path: Path = field(default_factory=lambda: Path(".manifest/backend.db"))
    admin_tokens: list[str] = field(default_factory=list)
    log_dir: Path | None = field(default_factory=lambda: Path(".manifest/logs"))
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    environment: str = "development"

    @classmethod
    def from_env(cls) -> ServerConfig:
        """
        Build a config from the environment.

        Variables: MANIFEST_PATH, MANIFEST_DB_PATH, MANIFEST_ADMIN_TOKENS
        (comma-separated), MANIFEST_LOG_DIR (empty for console only),
        MANIFEST_LOG_LEVEL, MANIFEST_HOST, PORT, MANIFEST_ENV.
        """
        defaults = cls()
        log_dir = os.environ.get("MANIFEST_LOG_DIR")
        port = os.environ.get("PORT")

        return cls(
            manifest_path=Path(os.environ.get("MANIFEST_PATH", defaults.manifest_path)),
            db_path=Path(os.environ.get("MANIFEST_DB_PATH", defaults.db_path)),
            admin_tokens=[
                t.strip()
                for t in os.environ.get("MANIFEST_ADMIN_TOKENS", "").split(",")
                if t.strip()
            ],
            log_dir=defaults.log_dir if log_dir is None else (Path(log_dir) if log_dir else None),
            log_level=os.environ.get("MANIFEST_LOG_LEVEL", defaults.log_level),
            host=os.environ.get("MANIFEST_HOST", defaults.host),
            port=int(port) if port else defaults.port,
            environment=os.environ.get("MANIFEST_ENV", defaults.environment),
        )


# =============================================================================
# Application Builder
# =============================================================================


class ManifestBackendApp:
    """
    manifest-back application.

    Creates a complete FastAPI application from an AppManifest. The manifest,
    schemas and relation registry are built once here and only read by
    request handlers.
    """

    def __init__(self, manifest: AppManifest, config: ServerConfig | None = None):
        """
        Initialize the backend application.

        Args:
            manifest: App manifest
            config: Server configuration (defaults when omitted)
        """
        self.manifest = manifest
        self.config = config or ServerConfig()
        self.registry = RelationRegistry.from_manifest(manifest)
        self.schemas = build_schemas(manifest.entities, self.registry)
        self.db = DatabaseManager(self.config.db_path)
        self.service = CrudService(manifest, self.db, self.registry, self.schemas)
        self.admin = AdminResolver(self.config.admin_tokens)
        self._app: FastAPI | None = None

    def build(self) -> FastAPI:
        """
        Build the FastAPI application.

        Returns:
            FastAPI application instance
        """
        self.db.create_all_tables(self.schemas.values(), self.registry)

        self._app = FastAPI(
            title=self.manifest.name,
            description=f"manifest-back: {self.manifest.name}",
            version=self.manifest.version,
        )
        register_exception_handlers(self._app)

        self._app.include_router(generate_collection_routes(self.service, self.admin))
        self._app.include_router(generate_single_routes(self.service, self.admin))
        self._app.include_router(generate_manifest_routes(self.manifest, self.admin))

        @self._app.get("/health", tags=["System"])
        async def health_check() -> dict[str, str]:
            return {"status": "healthy", "app": self.manifest.name, "version": __version__}

        logger.info(
            "Built app '%s' with %d entities (%s)",
            self.manifest.name,
            len(self.manifest.entities),
            self.config.environment,
        )
        return self._app

    @property
    def app(self) -> FastAPI | None:
        """Get the built FastAPI application."""
        return self._app


# =============================================================================
# Convenience Functions
# =============================================================================


def create_app(
    manifest: AppManifest | None = None,
    config: ServerConfig | None = None,
) -> FastAPI:
    """
    Create a FastAPI application.

    This is the main entry point for creating a manifest-back application.

    Args:
        manifest: App manifest (loaded from ``config.manifest_path`` when omitted)
        config: Server configuration (read from the environment when omitted)

    Returns:
        FastAPI application

    Example:
        >>> manifest = load_manifest("manifest/backend.yml")
        >>> app = create_app(manifest, ServerConfig(db_path=Path("data.db")))
        >>> # Run with uvicorn: uvicorn mymodule:app
    """
    config = config or ServerConfig.from_env()
    if manifest is None:
        manifest = load_manifest(config.manifest_path)
    return ManifestBackendApp(manifest, config).build()


def run_app(config: ServerConfig | None = None) -> None:
    """
    Run a manifest-back application with uvicorn.

    Args:
        config: Server configuration (read from the environment when omitted)
    """
    import uvicorn

    config = config or ServerConfig.from_env()
    setup_logging(config.log_dir, config.log_level)

    app = create_app(config=config)
    logger.info("Serving on http://%s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port)
