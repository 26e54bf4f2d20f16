from __future__ import annotations

from .cache import AssetCacheConfig
from .runtime import RuntimeConfig
from .settings import AppConfig, Settings, load_config
from .sync import SyncConfig

__all__ = [
    "AppConfig",
    "AssetCacheConfig",
    "RuntimeConfig",
    "Settings",
    "SyncConfig",
    "load_config",
]
