"""
Admin detection.

Reads are widened to hidden properties only for admins. Token issuance is
handled elsewhere; this module only checks a bearer token against the
configured admin tokens.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable

from fastapi import Request

logger = logging.getLogger("manifest_back.auth")


def get_bearer_token(request: Request) -> str | None:
    """Extract the token of an ``Authorization: Bearer <token>`` header."""
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AdminResolver:
    """
    Decides whether the caller of a request is an admin.

    Example:
        resolver = AdminResolver(["s3cret"])
        resolver.is_request_user_admin(request)  # True for "Bearer s3cret"
    """

    def __init__(self, admin_tokens: Iterable[str] = ()):
        self._admin_tokens = [t for t in admin_tokens if t]

    def is_request_user_admin(self, request: Request) -> bool:
        token = get_bearer_token(request)
        if token is None:
            return False
        # Check every token so timing does not depend on which one matched.
        matched = False
        for admin_token in self._admin_tokens:
            matched |= hmac.compare_digest(token.encode(), admin_token.encode())
        if not matched:
            logger.debug("Bearer token is not an admin token")
        return matched
