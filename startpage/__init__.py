"""Local-first sync and asset caching engine for a personal start page."""

__version__ = "0.3.0"
