from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bool, _parse_bounded_number, validate_http_url

DEFAULT_SYNC_BASE_URL = "https://newtab.6781314.xyz"


class SyncConfig(BaseModel):
    """Remote sync endpoint and reconciliation timing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(default=True, validation_alias="SYNC_ENABLED")
    base_url: str = Field(default=DEFAULT_SYNC_BASE_URL, validation_alias="SYNC_BASE_URL")
    request_timeout_sec: int = Field(default=15, validation_alias="SYNC_REQUEST_TIMEOUT_SEC")
    push_debounce_ms: int = Field(default=2_000, validation_alias="SYNC_PUSH_DEBOUNCE_MS")
    pull_interval_sec: int = Field(
        default=180,
        validation_alias="SYNC_PULL_INTERVAL_SEC",
        description="Period of the recurring background pull.",
    )
    pull_settle_ms: int = Field(default=100, validation_alias="SYNC_PULL_SETTLE_MS")
    storage_poll_sec: float = Field(default=1.0, validation_alias="SYNC_STORAGE_POLL_SEC")

    @field_validator("enabled", mode="before")
    @classmethod
    def _validate_enabled(cls, value: Any) -> bool:
        return _parse_bool(value, default=True)

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str:
        return validate_http_url(value or DEFAULT_SYNC_BASE_URL, name="Sync base URL")

    @field_validator(
        "request_timeout_sec", "push_debounce_ms", "pull_interval_sec", "pull_settle_ms", mode="before"
    )
    @classmethod
    def _validate_int_ranges(cls, value: Any, info: ValidationInfo) -> int:
        limits: dict[str, tuple[int, int]] = {
            "request_timeout_sec": (1, 120),
            "push_debounce_ms": (50, 60_000),
            "pull_interval_sec": (5, 86_400),
            "pull_settle_ms": (0, 10_000),
        }
        minimum, maximum = limits[info.field_name]
        return _parse_bounded_number(
            value,
            name=info.field_name,
            default=cls.model_fields[info.field_name].default,
            minimum=minimum,
            maximum=maximum,
        )

    @field_validator("storage_poll_sec", mode="before")
    @classmethod
    def _validate_poll(cls, value: Any) -> float:
        return _parse_bounded_number(
            value,
            name="storage_poll_sec",
            default=1.0,
            minimum=0.1,
            maximum=60.0,
            integer=False,
        )

    @property
    def push_debounce_sec(self) -> float:
        return self.push_debounce_ms / 1000

    @property
    def pull_settle_sec(self) -> float:
        return self.pull_settle_ms / 1000
