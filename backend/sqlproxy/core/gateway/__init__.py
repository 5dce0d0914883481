"""
Gateway: API key auth and request/response helpers.
"""

from sqlproxy.core.gateway.auth import (
    API_KEY_HEADER,
    AuthContext,
    verify_api_key,
    verify_gateway_request,
)
from sqlproxy.core.gateway.request_response import (
    error_body,
    format_response,
    parse_body,
    read_body,
)

__all__ = [
    "API_KEY_HEADER",
    "AuthContext",
    "error_body",
    "format_response",
    "parse_body",
    "read_body",
    "verify_api_key",
    "verify_gateway_request",
]
