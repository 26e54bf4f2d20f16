"""Domain events describing changes to the local start-page state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class MutationOrigin(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"
    EXTERNAL = "external"


class StateField(StrEnum):
    SHORTCUTS = "shortcuts"
    GRID_CONFIG = "grid_config"
    BACKGROUND_CONFIG = "bg_config"
    BACKGROUND_URL = "bg_url"


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    occurred_at: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.occurred_at, datetime):
            raise TypeError("occurred_at must be a datetime")


@dataclass(frozen=True)
class StateMutated(DomainEvent):
    """One field of the local state was replaced."""

    field: StateField
    origin: MutationOrigin


@dataclass(frozen=True)
class BackgroundSwapped(DomainEvent):
    """The visible background slot now shows ``url``."""

    url: str
    decoded: bool
    from_cache: bool
