"""Remote sync backend adapter."""

from startpage.adapters.remote.client import (
    AlreadyExistsError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidPayloadError,
    NetworkFailureError,
    NotAuthenticatedError,
    RemoteSyncClient,
    RemoteSyncError,
    UnauthorizedError,
)
from startpage.adapters.remote.models import PushAcknowledgement, RemoteSnapshot
from startpage.adapters.remote.session_store import SessionStore

__all__ = [
    "AlreadyExistsError",
    "InvalidCredentialsError",
    "InvalidInputError",
    "InvalidPayloadError",
    "NetworkFailureError",
    "NotAuthenticatedError",
    "PushAcknowledgement",
    "RemoteSnapshot",
    "RemoteSyncClient",
    "RemoteSyncError",
    "SessionStore",
    "UnauthorizedError",
]
