"""
Canonical JSON and request keys.

Equivalent requests must produce identical keys regardless of key order,
header case or the host they were sent to. The keys index records of a
pact for content based lookup.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional


def canonicalize_json(obj: Any) -> str:
    """
    Serialize an object to canonical JSON.

    Dictionary keys are sorted and whitespace is removed, so equal values
    always serialize to the same string.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_default_serializer,
    )


def fingerprint(obj: Any, length: int = 16) -> str:
    """Return a truncated SHA-256 hash of the canonical JSON of obj."""
    canonical = canonicalize_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:length]


def body_shape(value: Any) -> Any:
    """
    Reduce a body to its shape: keys and value types, not values.

    Examples:
        >>> body_shape({"name": "a", "tags": [1, 2]})
        {'name': 'str', 'tags': ['number']}
    """
    if isinstance(value, dict):
        return {str(k): body_shape(v) for k, v in value.items()}
    if isinstance(value, list):
        shapes = []
        for item in value:
            shape = body_shape(item)
            if shape not in shapes:
                shapes.append(shape)
        return shapes
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    return type(value).__name__


def parse_body(body: Any) -> Any:
    """Parse str/bytes bodies holding JSON, return anything else unchanged."""
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return body
    if isinstance(body, str):
        stripped = body.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except ValueError:
                return body
    return body


def request_key(method: Optional[str], url: Optional[str]) -> str:
    """Key of a request by method and already normalized url."""
    return f"{(method or 'GET').upper()} {url or ''}"


def _default_serializer(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    if isinstance(obj, set):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
