"""
manifest-back

Backend-as-a-service runtime driven by a declarative manifest.

This package provides:
- Manifest model and YAML loader (entities, properties, relationships)
- Runtime: schema builder, SQLite storage, generic CRUD query engine
- HTTP surface (FastAPI) and a CLI
"""

__version__ = "0.1.0"
