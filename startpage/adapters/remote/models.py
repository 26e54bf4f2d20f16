"""Pydantic models for the remote sync API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AuthResponse(BaseModel):
    token: str = Field(min_length=1)
    email: str = Field(min_length=1)

    model_config = {"extra": "ignore"}


class RemoteSnapshot(BaseModel):
    """Snapshot stored by the backend; any field may be missing."""

    shortcuts: list[Any] | None = None
    grid_config: dict[str, Any] | None = Field(default=None, alias="gridConfig")
    bg_config: dict[str, Any] | None = Field(default=None, alias="bgConfig")
    bg_url: str | None = Field(default=None, alias="bgUrl")
    updated_at: int | None = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def present_fields(self) -> list[str]:
        names = []
        if self.shortcuts is not None:
            names.append("shortcuts")
        if self.grid_config is not None:
            names.append("gridConfig")
        if self.bg_config is not None:
            names.append("bgConfig")
        if self.bg_url:
            names.append("bgUrl")
        return names


class PullResponse(BaseModel):
    data: RemoteSnapshot | None = None

    model_config = {"extra": "ignore"}


class PushAcknowledgement(BaseModel):
    success: bool = True
    updated_at: int | None = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True, "extra": "ignore"}
