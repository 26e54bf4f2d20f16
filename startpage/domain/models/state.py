"""Start-page state models.

Field aliases match the JSON the remote backend stores and the web client
reads (``customIcon``, ``iconSize``, ``bgConfig.blur`` ...), so the same models
serve persistence, the push payload and pulled snapshots.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from startpage.core.url_utils import decode_data_uri, encode_data_uri
from startpage.domain.exceptions.domain_exceptions import ValidationError

MAX_CUSTOM_ICON_BYTES = 500 * 1024

DEFAULT_BACKGROUND_URL = (
    "https://images.unsplash.com/photo-1472214103451-9374bd1c798e"
    "?q=80&w=2070&auto=format&fit=crop"
)

_MODEL_CONFIG = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class SourceIcon(BaseModel):
    """Icon resolved from one of the favicon candidate sources."""

    model_config = _MODEL_CONFIG

    type: Literal["source"] = "source"
    source_id: str = Field(alias="source", min_length=1)
    url: str = Field(min_length=1)


class CustomIcon(BaseModel):
    """User-uploaded icon embedded as a data URI."""

    model_config = _MODEL_CONFIG

    type: Literal["custom"] = "custom"
    data_uri: str = Field(alias="data")

    @field_validator("data_uri")
    @classmethod
    def _validate_data_uri(cls, value: str) -> str:
        decoded = decode_data_uri(value)
        if not decoded.mime_type.startswith("image/"):
            msg = f"Custom icon must be an image, got {decoded.mime_type}"
            raise ValueError(msg)
        if len(decoded.payload) > MAX_CUSTOM_ICON_BYTES:
            msg = f"Custom icon exceeds {MAX_CUSTOM_ICON_BYTES // 1024} KiB"
            raise ValueError(msg)
        return value


IconRef = Annotated[SourceIcon | CustomIcon, Field(discriminator="type")]


class ShortcutItem(BaseModel):
    model_config = _MODEL_CONFIG

    id: int = Field(ge=0)
    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    icon: IconRef | None = Field(default=None, alias="customIcon")
    icon_padding: bool = Field(default=False, alias="iconPadding")

    @field_validator("title", "url", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    def icon_url(self) -> str | None:
        """URL the grid renders for this shortcut, when it has one."""
        if isinstance(self.icon, SourceIcon):
            return self.icon.url
        if isinstance(self.icon, CustomIcon):
            return self.icon.data_uri
        return None


class GridConfig(BaseModel):
    model_config = _MODEL_CONFIG

    cols: int = Field(default=5, ge=3, le=6)
    rows: int = Field(default=3, ge=1, le=4)
    icon_size: int = Field(default=80, ge=48, le=120, alias="iconSize")
    show_search_bar: bool = Field(default=True, alias="showSearchBar")


class BackgroundConfig(BaseModel):
    model_config = _MODEL_CONFIG

    blur_px: int = Field(default=2, ge=0, le=20, alias="blur")
    overlay_percent: int = Field(default=30, ge=0, le=90, alias="overlay")


DEFAULT_SHORTCUTS: tuple[ShortcutItem, ...] = (
    ShortcutItem(id=1, title="Google", url="https://google.com"),
    ShortcutItem(id=2, title="YouTube", url="https://youtube.com"),
    ShortcutItem(id=3, title="GitHub", url="https://github.com"),
    ShortcutItem(id=4, title="Bilibili", url="https://bilibili.com"),
)


class LocalState(BaseModel):
    model_config = _MODEL_CONFIG

    shortcuts: tuple[ShortcutItem, ...] = DEFAULT_SHORTCUTS
    grid_config: GridConfig = Field(default_factory=GridConfig, alias="gridConfig")
    background_config: BackgroundConfig = Field(
        default_factory=BackgroundConfig, alias="bgConfig"
    )
    background_url: str = Field(default=DEFAULT_BACKGROUND_URL, alias="bgUrl")

    @model_validator(mode="after")
    def _unique_ids(self) -> LocalState:
        ids = [item.id for item in self.shortcuts]
        if len(ids) != len(set(ids)):
            msg = "Shortcut ids must be unique"
            raise ValueError(msg)
        return self

    def to_push_payload(self) -> dict[str, Any]:
        """Body for ``POST /api/sync/push``."""
        return {
            "shortcuts": dump_shortcuts(self.shortcuts),
            "gridConfig": self.grid_config.model_dump(by_alias=True, mode="json"),
            "bgConfig": self.background_config.model_dump(by_alias=True, mode="json"),
            "bgUrl": self.background_url,
        }


class SyncSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str | None = None
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and bool(self.email)


def dump_shortcuts(shortcuts: tuple[ShortcutItem, ...] | list[ShortcutItem]) -> list[dict[str, Any]]:
    return [item.model_dump(by_alias=True, mode="json", exclude_none=True) for item in shortcuts]


def custom_icon_from_upload(data: bytes, content_type: str) -> CustomIcon:
    """Build a custom icon from an uploaded file, enforcing type and size limits.

    Raises:
        ValidationError: If the upload is not an image or is larger than 500 KiB.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if not mime.startswith("image/"):
        raise ValidationError(
            "Please select an image file", details={"content_type": content_type}
        )
    if len(data) > MAX_CUSTOM_ICON_BYTES:
        raise ValidationError(
            "Image size should be less than 500KB",
            details={"size": len(data), "max_size": MAX_CUSTOM_ICON_BYTES},
        )
    return CustomIcon(data_uri=encode_data_uri(data, mime))
