from __future__ import annotations

from typing import Any
from urllib.parse import urlparse


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    msg = f"Invalid boolean value: {value!r}"
    raise ValueError(msg)


def _parse_bounded_number(
    value: Any,
    *,
    name: str,
    default: float,
    minimum: float,
    maximum: float,
    integer: bool = True,
) -> Any:
    raw = value if value not in (None, "") else default
    try:
        parsed: float = int(str(raw)) if integer else float(str(raw))
    except ValueError as exc:
        kind = "integer" if integer else "number"
        msg = f"{name.replace('_', ' ')} must be a valid {kind}"
        raise ValueError(msg) from exc
    if parsed < minimum or parsed > maximum:
        msg = f"{name.replace('_', ' ').capitalize()} must be between {minimum} and {maximum}"
        raise ValueError(msg)
    return parsed


def validate_http_url(value: Any, *, name: str) -> str:
    url = str(value or "").strip().rstrip("/")
    if not url:
        msg = f"{name} is required"
        raise ValueError(msg)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = f"{name} must be an absolute http(s) URL"
        raise ValueError(msg)
    return url


def validate_origin(value: Any, *, name: str) -> str:
    """Accept a serialised origin (``scheme://host[:port]``) of any scheme."""
    origin = str(value or "").strip().rstrip("/")
    parsed = urlparse(origin)
    if not parsed.scheme or not parsed.netloc or parsed.path or parsed.query or parsed.fragment:
        msg = f"{name} must look like scheme://host[:port]"
        raise ValueError(msg)
    return origin
