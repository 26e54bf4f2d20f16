from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._validators import _parse_bounded_number, validate_origin


class AssetCacheConfig(BaseModel):
    """Icon/background blob cache settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    fetch_timeout_sec: int = Field(default=20, validation_alias="ASSET_FETCH_TIMEOUT_SEC")
    max_bytes: int = Field(default=16 * 1024 * 1024, validation_alias="ASSET_MAX_BYTES")
    request_origin: str | None = Field(
        default=None,
        validation_alias="ASSET_REQUEST_ORIGIN",
        description="Origin header sent with cross-origin asset requests.",
    )

    @field_validator("fetch_timeout_sec", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> int:
        return _parse_bounded_number(
            value, name="fetch_timeout_sec", default=20, minimum=1, maximum=120
        )

    @field_validator("max_bytes", mode="before")
    @classmethod
    def _validate_max_bytes(cls, value: Any) -> int:
        return _parse_bounded_number(
            value,
            name="max_bytes",
            default=16 * 1024 * 1024,
            minimum=1024,
            maximum=64 * 1024 * 1024,
        )

    @field_validator("request_origin", mode="before")
    @classmethod
    def _validate_origin(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return validate_origin(value, name="Asset request origin")
