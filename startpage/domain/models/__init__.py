from startpage.domain.models.state import (
    DEFAULT_BACKGROUND_URL,
    DEFAULT_SHORTCUTS,
    MAX_CUSTOM_ICON_BYTES,
    BackgroundConfig,
    CustomIcon,
    GridConfig,
    IconRef,
    LocalState,
    ShortcutItem,
    SourceIcon,
    SyncSession,
    custom_icon_from_upload,
    dump_shortcuts,
)

__all__ = [
    "DEFAULT_BACKGROUND_URL",
    "DEFAULT_SHORTCUTS",
    "MAX_CUSTOM_ICON_BYTES",
    "BackgroundConfig",
    "CustomIcon",
    "GridConfig",
    "IconRef",
    "LocalState",
    "ShortcutItem",
    "SourceIcon",
    "SyncSession",
    "custom_icon_from_upload",
    "dump_shortcuts",
]
