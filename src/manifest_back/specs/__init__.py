"""
Manifest type definitions.

This module exports the manifest model and the YAML loader.
"""

from manifest_back.specs.entity import (
    AppManifest,
    EntityManifest,
    PropertyManifest,
    PropType,
    RelationshipManifest,
    RelationshipType,
)
from manifest_back.specs.loader import load_manifest, parse_manifest

__all__ = [
    # Manifest types
    "AppManifest",
    "EntityManifest",
    "PropertyManifest",
    "PropType",
    "RelationshipManifest",
    "RelationshipType",
    # Loading
    "load_manifest",
    "parse_manifest",
]
