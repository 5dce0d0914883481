"""
Gateway auth: shared-secret API key in the X-API-Key header.

Evaluated fresh on every request; nothing is cached or persisted, and there is
no rate limiting or lockout.
"""

import secrets
from dataclasses import dataclass

from starlette.requests import Request

from sqlproxy.core.config import settings
from sqlproxy.core.errors import InvalidCredential, MissingCredential

API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class AuthContext:
    """Exists for the lifetime of one request."""

    api_key: str


def verify_api_key(provided: str | None, expected: str) -> AuthContext:
    """
    - Missing/empty key -> MissingCredential (401).
    - Key not equal to expected -> InvalidCredential (403).
    """
    if not provided:
        raise MissingCredential("API key is required")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise InvalidCredential("Invalid API key")
    return AuthContext(api_key=provided)


def verify_gateway_request(request: Request) -> AuthContext:
    """Authenticate a gateway request against settings.API_KEY."""
    return verify_api_key(request.headers.get(API_KEY_HEADER), settings.API_KEY)
