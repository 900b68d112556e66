"""
Validation of candidate entities on the write path.

Rules come from ``PropertyManifest.validation`` plus a type rule per PropType.
The database never enforces required-ness: this module is the only gate.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from manifest_back.specs.entity import EntityManifest, PropertyManifest, PropType

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


class FieldError(BaseModel):
    """
    A validation failure on one property.

    Attributes:
        property: Property name
        value: Rejected value (never echoed for passwords)
        constraints: Rule name -> human readable message
        children: Nested errors (structured values)
    """

    property: str
    value: Any = None
    constraints: dict[str, str] = Field(default_factory=dict)
    children: list[FieldError] = Field(default_factory=list)


# =============================================================================
# Rule Checks
# =============================================================================


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_location(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and _is_number(value.get("lat"))
        and _is_number(value.get("lng"))
        and -90 <= value["lat"] <= 90
        and -180 <= value["lng"] <= 180
    )


def _is_image(value: Any) -> bool:
    return isinstance(value, dict) and all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    )


# PropType -> (constraint name, check, message)
TYPE_RULES: dict[PropType, tuple[str, Callable[[Any], bool], str]] = {
    PropType.STRING: ("isString", lambda v: isinstance(v, str), "must be a string"),
    PropType.TEXT: ("isString", lambda v: isinstance(v, str), "must be a string"),
    PropType.RICH_TEXT: ("isString", lambda v: isinstance(v, str), "must be a string"),
    PropType.PASSWORD: ("isString", lambda v: isinstance(v, str), "must be a string"),
    PropType.FILE: ("isString", lambda v: isinstance(v, str), "must be a string"),
    PropType.NUMBER: ("isNumber", _is_number, "must be a number"),
    PropType.MONEY: ("isNumber", _is_number, "must be a number"),
    PropType.BOOLEAN: ("isBoolean", lambda v: isinstance(v, bool), "must be a boolean"),
    PropType.EMAIL: (
        "isEmail",
        lambda v: isinstance(v, str) and bool(_EMAIL_PATTERN.match(v)),
        "must be an email",
    ),
    PropType.LINK: (
        "isUrl",
        lambda v: isinstance(v, str) and bool(_URL_PATTERN.match(v)),
        "must be a URL address",
    ),
    PropType.DATE: ("isDate", _is_date, "must be a valid ISO 8601 date"),
    PropType.TIMESTAMP: ("isTimestamp", _is_number, "must be a timestamp"),
    PropType.LOCATION: ("isLocation", _is_location, "must be a {lat, lng} location"),
    PropType.IMAGE: ("isImage", _is_image, "must be a map of image sizes to URLs"),
}


def _check_rule(rule: str, arg: Any, value: Any) -> str | None:
    """Return an error message when value breaks the rule, None otherwise."""
    if rule in ("required", "isNotEmpty"):
        return "should not be empty" if arg and _is_empty(value) else None

    if value is None:
        return None

    if rule == "min":
        return f"must not be less than {arg}" if _is_number(value) and value < arg else None
    if rule == "max":
        return f"must not be greater than {arg}" if _is_number(value) and value > arg else None
    if rule == "minLength":
        if isinstance(value, str) and len(value) < arg:
            return f"must be longer than or equal to {arg} characters"
        return None
    if rule == "maxLength":
        if isinstance(value, str) and len(value) > arg:
            return f"must be shorter than or equal to {arg} characters"
        return None
    if rule == "contains":
        return f"must contain a {arg} string" if str(arg) not in str(value) else None
    if rule == "matches":
        if not isinstance(value, str) or not re.search(arg, value):
            return f"must match {arg} regular expression"
        return None
    if rule == "isIn":
        return f"must be one of the following values: {arg}" if value not in arg else None
    if rule == "isEmail":
        if arg and not (isinstance(value, str) and _EMAIL_PATTERN.match(value)):
            return "must be an email"
        return None
    return None


# =============================================================================
# Validator
# =============================================================================


class Validator:
    """
    Validates candidate rows against an entity manifest.

    Example:
        errors = Validator().validate({"name": ""}, cat_manifest)
        # [FieldError(property="name", constraints={"required": "name should not be empty"})]
    """

    def validate(
        self,
        candidate: dict[str, Any],
        entity: EntityManifest,
        is_update: bool = False,
    ) -> list[FieldError]:
        """
        Validate a candidate row.

        Args:
            candidate: Column values about to be written
            entity: Entity manifest
            is_update: Password is not required on update

        Returns:
            Field errors, empty when the candidate is valid
        """
        errors: list[FieldError] = []

        for prop in self._properties(entity):
            constraints = self._validate_property(prop, candidate.get(prop.name), is_update)
            if constraints:
                value = None if prop.is_password else candidate.get(prop.name)
                errors.append(
                    FieldError(property=prop.name, value=value, constraints=constraints)
                )

        return errors

    def _properties(self, entity: EntityManifest) -> list[PropertyManifest]:
        """Declared properties, plus email and password for authenticable entities."""
        properties = list(entity.properties)
        if entity.authenticable:
            declared = {p.name for p in properties}
            if "email" not in declared:
                properties.append(
                    PropertyManifest(name="email", type=PropType.EMAIL, validation={"required": True})
                )
            if "password" not in declared:
                properties.append(
                    PropertyManifest(
                        name="password", type=PropType.PASSWORD, validation={"required": True}
                    )
                )
        return properties

    def _validate_property(
        self, prop: PropertyManifest, value: Any, is_update: bool
    ) -> dict[str, str]:
        constraints: dict[str, str] = {}

        for rule, arg in prop.validation.items():
            if is_update and prop.is_password and rule in ("required", "isNotEmpty"):
                continue
            message = _check_rule(rule, arg, value)
            if message:
                constraints[rule] = f"{prop.name} {message}"

        # Empty values skip type rules
        if value is None:
            return constraints

        if prop.type == PropType.CHOICE:
            values = prop.options.get("values") or []
            if value not in values:
                constraints["isIn"] = f"{prop.name} must be one of the following values: {values}"
            return constraints

        rule_name, check, message = TYPE_RULES[prop.type]
        if not check(value):
            constraints[rule_name] = f"{prop.name} {message}"
        return constraints
