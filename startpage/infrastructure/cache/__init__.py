"""Asset cache helpers."""

from startpage.infrastructure.cache.asset_cache import (
    AssetCache,
    CacheNamespace,
    CachedAsset,
    ResolvedAsset,
)

__all__ = ["AssetCache", "CacheNamespace", "CachedAsset", "ResolvedAsset"]
