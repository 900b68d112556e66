"""
Manifest loader - turns a YAML manifest into an AppManifest.

The YAML format is terse: entities are keyed by class name, properties may be
bare strings, and relationships are declared from one side only
(``belongsTo`` / ``belongsToMany``). This module fills in every default and
generates the inverse relationships so the rest of the runtime only ever
sees complete manifests.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from manifest_back.errors import ConfigurationError
from manifest_back.specs.entity import (
    AppManifest,
    EntityManifest,
    PropertyManifest,
    PropType,
    RelationshipType,
)

logger = logging.getLogger("manifest_back.loader")

DEFAULT_APP_NAME = "My Manifest App"
ADMIN_CLASS_NAME = "Admin"
ADMIN_SLUG = "admins"


# =============================================================================
# Naming Helpers
# =============================================================================


def pluralize(word: str) -> str:
    """Naive English plural: Cat -> Cats, Category -> Categories, Box -> Boxes."""
    if re.search(r"[^aeiou]y$", word, re.IGNORECASE):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word, re.IGNORECASE):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """Inverse of pluralize: categories -> category, boxes -> box, tags -> tag."""
    if re.search(r"[^aeiou]ies$", word, re.IGNORECASE):
        return word[:-3] + "y"
    if re.search(r"(s|x|z|ch|sh)es$", word, re.IGNORECASE):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def lower_first(word: str) -> str:
    """BlogPost -> blogPost."""
    return word[:1].lower() + word[1:]


def kebab_case(word: str) -> str:
    """BlogPost -> blog-post."""
    return re.sub(r"(?<!^)(?=[A-Z])", "-", word).lower()


def humanize(word: str) -> str:
    """BlogPost -> blog post."""
    return kebab_case(word).replace("-", " ")


# =============================================================================
# Parsing
# =============================================================================


def _parse_property(raw: Any, class_name: str) -> PropertyManifest:
    """Parse a property given either as a bare name or as a mapping."""
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict) or "name" not in raw:
        raise ConfigurationError(f"Invalid property in {class_name}: {raw!r}")

    type_value = raw.get("type", PropType.STRING.value)
    try:
        prop_type = PropType(type_value)
    except ValueError:
        raise ConfigurationError(
            f"Unknown property type '{type_value}' for {class_name}.{raw['name']}"
        ) from None

    return PropertyManifest(
        name=raw["name"],
        type=prop_type,
        hidden=bool(raw.get("hidden", False)),
        validation=dict(raw.get("validation") or {}),
        options=dict(raw.get("options") or {}),
    )


def _parse_relation_target(raw: Any, class_name: str, default_name: Any) -> dict[str, Any]:
    """Parse ``Owner`` or ``{name: owner, entity: Owner, eager: true}``."""
    if isinstance(raw, str):
        raw = {"entity": raw}
    if not isinstance(raw, dict) or "entity" not in raw:
        raise ConfigurationError(f"Invalid relationship in {class_name}: {raw!r}")
    return {
        "entity": raw["entity"],
        "name": raw.get("name") or default_name(raw["entity"]),
        "eager": bool(raw.get("eager", False)),
    }


def _add_relationship(
    relationships: dict[str, list[dict[str, Any]]],
    class_name: str,
    relationship: dict[str, Any],
) -> None:
    existing = {r["name"] for r in relationships[class_name]}
    if relationship["name"] in existing:
        raise ConfigurationError(
            f"Duplicate relationship '{relationship['name']}' on {class_name}"
        )
    relationships[class_name].append(relationship)


def _with_credentials(properties: list[PropertyManifest]) -> list[PropertyManifest]:
    """Authenticable entities always carry email and password properties."""
    declared = {p.name for p in properties}
    credentials = [
        PropertyManifest(name="email", type=PropType.EMAIL, validation={"required": True}),
        PropertyManifest(name="password", type=PropType.PASSWORD, validation={"required": True}),
    ]
    return [*(c for c in credentials if c.name not in declared), *properties]


def _default_main_prop(properties: list[PropertyManifest], authenticable: bool) -> str:
    for prop in properties:
        if prop.type == PropType.STRING:
            return prop.name
    return "email" if authenticable else "id"


def parse_manifest(data: dict[str, Any]) -> AppManifest:
    """
    Normalise a raw manifest document into an AppManifest.

    Args:
        data: Parsed YAML/JSON document

    Returns:
        Complete AppManifest with defaults and inverse relationships

    Raises:
        ConfigurationError: If the document is malformed
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Manifest must be a mapping")

    raw_entities = data.get("entities") or {}
    if not isinstance(raw_entities, dict):
        raise ConfigurationError("'entities' must be a mapping of class name to entity")

    if ADMIN_CLASS_NAME not in raw_entities:
        raw_entities = {
            **raw_entities,
            ADMIN_CLASS_NAME: {"slug": ADMIN_SLUG, "authenticable": True, "mainProp": "email"},
        }

    relationships: dict[str, list[dict[str, Any]]] = {name: [] for name in raw_entities}

    # Relationships first: inverse sides land on other entities.
    for class_name, raw in raw_entities.items():
        raw = raw or {}

        for item in raw.get("belongsTo") or []:
            rel = _parse_relation_target(item, class_name, lower_first)
            target = rel["entity"]
            if target not in raw_entities:
                raise ConfigurationError(
                    f"{class_name}.{rel['name']} refers to unknown entity '{target}'"
                )
            inverse_name = lower_first(pluralize(class_name))
            _add_relationship(
                relationships,
                class_name,
                {
                    "name": rel["name"],
                    "type": RelationshipType.MANY_TO_ONE,
                    "entity": target,
                    "eager": rel["eager"],
                    "owning_side": True,
                    "inverse_side": inverse_name,
                },
            )
            _add_relationship(
                relationships,
                target,
                {
                    "name": inverse_name,
                    "type": RelationshipType.ONE_TO_MANY,
                    "entity": class_name,
                    "eager": False,
                    "owning_side": False,
                    "inverse_side": rel["name"],
                },
            )

        for item in raw.get("belongsToMany") or []:
            rel = _parse_relation_target(
                item, class_name, lambda entity: lower_first(pluralize(entity))
            )
            target = rel["entity"]
            if target not in raw_entities:
                raise ConfigurationError(
                    f"{class_name}.{rel['name']} refers to unknown entity '{target}'"
                )
            inverse_name = lower_first(pluralize(class_name))
            # A self-referencing pair would collide with itself: keep one side.
            has_inverse = not (target == class_name and inverse_name == rel["name"])
            _add_relationship(
                relationships,
                class_name,
                {
                    "name": rel["name"],
                    "type": RelationshipType.MANY_TO_MANY,
                    "entity": target,
                    "eager": rel["eager"],
                    "owning_side": True,
                    "inverse_side": inverse_name if has_inverse else None,
                },
            )
            if has_inverse:
                _add_relationship(
                    relationships,
                    target,
                    {
                        "name": inverse_name,
                        "type": RelationshipType.MANY_TO_MANY,
                        "entity": class_name,
                        "eager": False,
                        "owning_side": False,
                        "inverse_side": rel["name"],
                    },
                )

    entities: list[EntityManifest] = []
    seen_slugs: set[str] = set()

    for class_name, raw in raw_entities.items():
        raw = raw or {}
        try:
            properties = [_parse_property(p, class_name) for p in raw.get("properties") or []]
            authenticable = bool(raw.get("authenticable", False))
            if authenticable:
                properties = _with_credentials(properties)
            entity = EntityManifest(
                class_name=class_name,
                slug=raw.get("slug") or kebab_case(pluralize(class_name)),
                name_singular=raw.get("nameSingular") or humanize(class_name),
                name_plural=raw.get("namePlural") or humanize(pluralize(class_name)),
                main_prop=raw.get("mainProp") or _default_main_prop(properties, authenticable),
                properties=properties,
                relationships=relationships[class_name],
                authenticable=authenticable,
                single=bool(raw.get("single", False)),
                admin_only=bool(raw.get("adminOnly", class_name == ADMIN_CLASS_NAME)),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid entity {class_name}: {e}") from e

        if entity.slug in seen_slugs:
            raise ConfigurationError(f"Duplicate entity slug '{entity.slug}'")
        seen_slugs.add(entity.slug)

        base_props = {"id", "email"} if entity.authenticable else {"id"}
        if entity.main_prop not in base_props and not entity.get_property(entity.main_prop):
            raise ConfigurationError(
                f"mainProp '{entity.main_prop}' is not a property of {class_name}"
            )

        entities.append(entity)

    return AppManifest(
        name=data.get("name") or DEFAULT_APP_NAME,
        version=str(data.get("version") or "0.1.0"),
        entities=entities,
    )


def load_manifest(path: str | Path) -> AppManifest:
    """
    Load a manifest from a YAML file.

    Args:
        path: Path to the manifest file

    Returns:
        Normalised AppManifest
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Manifest file not found: {path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    manifest = parse_manifest(data)
    logger.info("Loaded manifest '%s' with %d entities", manifest.name, len(manifest.entities))
    return manifest
