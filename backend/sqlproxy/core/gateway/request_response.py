"""
Gateway request/response: read_body, parse_body, format_response, error_body.

- read_body: JSON object body (400 on anything else).
- parse_body: validate into a schema; pydantic errors become QueryValidationError.
- format_response: always JSON-serializable structure.
"""

import traceback
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from sqlproxy.core.errors import ProxyError, QueryValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_body(request: Request) -> dict[str, Any]:
    """Read the JSON body; it must be an object."""
    try:
        raw = await request.json()
    except ValueError:
        raise QueryValidationError("Request body must be valid JSON") from None
    if not isinstance(raw, dict):
        raise QueryValidationError("Request body must be a JSON object")
    return raw


def _describe(err: ValidationError) -> str:
    messages = []
    for e in err.errors():
        loc = ".".join(str(part) for part in e.get("loc", ()))
        msg = e.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages)


def parse_body(model: type[ModelT], body: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise QueryValidationError(_describe(e)) from None


def _make_json_safe(obj: Any) -> Any:
    """Recursively convert non-JSON-serializable types to safe primitives.

    Handles: datetime, date, time, timedelta, Decimal, UUID, bytes, sets.
    Row values come straight from the driver, so dates and numerics arrive
    as native Python objects.
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, time):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Decimal):
        # Preserve integer-valued decimals as int, otherwise float
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode("utf-8", errors="replace")
    if isinstance(obj, dict):
        return {k: _make_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_make_json_safe(item) for item in obj]
    if isinstance(obj, set):
        return [_make_json_safe(item) for item in sorted(obj, key=str)]
    # Fallback: use str() for unknown types
    return str(obj)


def format_response(result: Any) -> Any:
    """Return a JSON-safe copy of result (datetime, Decimal, UUID etc. converted)."""
    return _make_json_safe(result)


def error_body(exc: BaseException, *, include_stack: bool) -> dict[str, Any]:
    """{"error": message} plus "code" for database errors and "stack" outside production."""
    if isinstance(exc, ProxyError):
        body: dict[str, Any] = {"error": exc.message}
        if exc.code:
            body["code"] = exc.code
    else:
        body = {"error": str(exc) or exc.__class__.__name__}
    if include_stack:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return body
