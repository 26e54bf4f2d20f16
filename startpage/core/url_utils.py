from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import unquote_to_bytes, urlparse

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[^,;]*)*),(?P<body>.*)$", re.S)


def is_fetchable_url(url: str | None) -> bool:
    """True for absolute http(s) URLs; data URIs and relative paths are not fetchable."""
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_data_uri(value: str | None) -> bool:
    return bool(value) and value.startswith("data:")  # type: ignore[union-attr]


@dataclass(frozen=True)
class DataUri:
    mime_type: str
    payload: bytes


def decode_data_uri(value: str) -> DataUri:
    """Decode an RFC 2397 data URI.

    Raises:
        ValueError: if the value is not a well-formed data URI
    """
    match = _DATA_URI_RE.match(value or "")
    if not match:
        msg = "Not a data URI"
        raise ValueError(msg)
    mime = (match.group("mime") or "text/plain").lower()
    params = match.group("params") or ""
    body = match.group("body")
    if params.endswith(";base64"):
        try:
            payload = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as exc:
            msg = "Data URI has an invalid base64 payload"
            raise ValueError(msg) from exc
    else:
        payload = unquote_to_bytes(body)
    return DataUri(mime_type=mime, payload=payload)


def encode_data_uri(payload: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def mask_email(email: str | None) -> str | None:
    """Mask the local part of an address for log output."""
    if not email:
        return email
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    head = local[:1] or "*"
    return f"{head}***@{domain}"
