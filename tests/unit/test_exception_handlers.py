"""Unit tests for exception handlers: HTTP status and body of each error type."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from manifest_back.errors import (
    BadRequestError,
    ConfigurationError,
    ForbiddenError,
    ManifestBackError,
    NotFoundError,
    ValidationFailedError,
)
from manifest_back.runtime.validation import FieldError


@pytest.fixture
def handlers() -> dict[type, Any]:
    """Capture the handlers installed by register_exception_handlers."""
    from manifest_back.runtime.exception_handlers import register_exception_handlers

    app = MagicMock()
    captured: dict[type, Any] = {}

    def capture_handler(exc_class: type) -> Any:
        def decorator(fn: Any) -> Any:
            captured[exc_class] = fn
            return fn

        return decorator

    app.exception_handler = capture_handler
    register_exception_handlers(app)
    return captured


class TestExceptionHandlers:
    @pytest.mark.asyncio
    async def test_validation_failed(self, handlers: dict[type, Any]) -> None:
        exc = ValidationFailedError(
            [FieldError(property="name", constraints={"required": "name should not be empty"})]
        )

        response = await handlers[ValidationFailedError](MagicMock(), exc)

        assert response.status_code == 400
        assert json.loads(response.body) == [
            {
                "property": "name",
                "value": None,
                "constraints": {"required": "name should not be empty"},
                "children": [],
            }
        ]

    @pytest.mark.asyncio
    async def test_not_found(self, handlers: dict[type, Any]) -> None:
        response = await handlers[NotFoundError](MagicMock(), NotFoundError("Cat 9 not found"))

        assert response.status_code == 404
        assert json.loads(response.body) == {"detail": "Cat 9 not found", "type": "not_found"}

    @pytest.mark.asyncio
    async def test_bad_request(self, handlers: dict[type, Any]) -> None:
        response = await handlers[BadRequestError](MagicMock(), BadRequestError("bad filter"))

        assert response.status_code == 400
        assert json.loads(response.body)["type"] == "bad_request"

    @pytest.mark.asyncio
    async def test_forbidden(self, handlers: dict[type, Any]) -> None:
        response = await handlers[ForbiddenError](
            MagicMock(), ForbiddenError("Entity 'admins' is restricted to admins")
        )

        assert response.status_code == 403
        assert json.loads(response.body) == {
            "detail": "Entity 'admins' is restricted to admins",
            "type": "forbidden",
        }

    @pytest.mark.asyncio
    async def test_other_errors_use_their_status(self, handlers: dict[type, Any]) -> None:
        response = await handlers[ManifestBackError](MagicMock(), ConfigurationError("broken"))

        assert response.status_code == 500
        assert json.loads(response.body) == {"detail": "broken", "type": "error"}
