"""HTTP client for the remote sync backend.

The backend is an opaque key-value store behind four JSON routes. Tokens are
bearer tokens; any ``401`` from a sync route means the session is gone, so the
client logs out locally before raising.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from startpage.adapters.remote.models import (
    AuthResponse,
    PullResponse,
    PushAcknowledgement,
    RemoteSnapshot,
)
from startpage.core.http_utils import error_message_from
from startpage.core.time_utils import utc_now
from startpage.core.url_utils import mask_email

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime
    from typing import Self

    from startpage.adapters.remote.session_store import SessionStore
    from startpage.domain.models.state import SyncSession

logger = logging.getLogger(__name__)

REQUIRED_PUSH_FIELDS = ("shortcuts", "gridConfig", "bgConfig")


class RemoteSyncError(Exception):
    """Base exception for remote sync errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotAuthenticatedError(RemoteSyncError):
    """No session is stored; the request was not sent."""


class AlreadyExistsError(RemoteSyncError):
    """Registration for an email that already has an account."""


class InvalidInputError(RemoteSyncError):
    """Missing or malformed email/password."""


class InvalidCredentialsError(RemoteSyncError):
    """Login rejected."""


class UnauthorizedError(RemoteSyncError):
    """Token expired or invalid; the local session has been cleared."""


class InvalidPayloadError(RemoteSyncError):
    """Push body rejected, locally or by the backend."""


class NetworkFailureError(RemoteSyncError):
    """Transport error, timeout, server error or unreadable response."""


class RemoteSyncClient:
    """Async client for register/login/pull/push plus the local session."""

    DEFAULT_TIMEOUTS: dict[str, float] = {
        "register": 15.0,
        "login": 15.0,
        "pull": 30.0,
        "push": 30.0,
    }

    def __init__(
        self,
        base_url: str,
        session_store: SessionStore,
        *,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._sessions = session_store
        self.timeout = timeout
        self._clock = clock
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def session(self) -> SyncSession:
        return self._sessions.session

    @property
    def session_generation(self) -> int:
        return self._sessions.generation

    @property
    def last_sync_at(self) -> datetime | None:
        return self._sessions.last_sync_at

    def is_authenticated(self) -> bool:
        return self._sessions.session.is_authenticated

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str) -> SyncSession:
        """Create an account and store its session.

        Raises:
            AlreadyExistsError: The email is already registered (409)
            InvalidInputError: Email or password missing (400)
            NetworkFailureError: Transport or server failure
        """
        body = self._credentials(email, password)
        response = await self._send("POST", "/api/auth/register", "register", json=body)
        if response.status_code == 409:
            raise AlreadyExistsError(error_message_from(response, "User already exists"), 409)
        if response.status_code == 400:
            raise InvalidInputError(error_message_from(response, "Email and password required"), 400)
        self._raise_for_status(response, "Registration failed")
        return await self._store_session(response, "register")

    async def login(self, email: str, password: str) -> SyncSession:
        """Log in and store the session.

        Raises:
            InvalidCredentialsError: Wrong email or password (401)
            InvalidInputError: Email or password missing (400)
            NetworkFailureError: Transport or server failure
        """
        body = self._credentials(email, password)
        response = await self._send("POST", "/api/auth/login", "login", json=body)
        if response.status_code == 401:
            raise InvalidCredentialsError(error_message_from(response, "Invalid credentials"), 401)
        if response.status_code == 400:
            raise InvalidInputError(error_message_from(response, "Email and password required"), 400)
        self._raise_for_status(response, "Login failed")
        return await self._store_session(response, "login")

    async def logout(self) -> None:
        """Forget the session and last-sync time. No request is made."""
        email = self._sessions.session.email
        await self._sessions.clear()
        logger.info("sync_logged_out", extra={"email": mask_email(email)})

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def pull(self) -> RemoteSnapshot | None:
        """Fetch the account's snapshot; ``None`` when none has been pushed yet.

        Raises:
            NotAuthenticatedError: No session stored
            UnauthorizedError: Token rejected; the session was cleared
            NetworkFailureError: Transport or server failure
        """
        token = self._require_token()
        generation = self._sessions.generation
        response = await self._send(
            "GET", "/api/sync/pull", "pull", headers={"Authorization": f"Bearer {token}"}
        )
        await self._raise_if_unauthorized(response)
        self._raise_for_status(response, "Pull failed")

        try:
            payload = PullResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise NetworkFailureError(
                f"Pull returned an unreadable body: {exc}", response.status_code
            ) from exc

        if payload.data is not None:
            await self._record_sync(generation)
        logger.info(
            "sync_pulled",
            extra={
                "has_snapshot": payload.data is not None,
                "fields": payload.data.present_fields() if payload.data else [],
            },
        )
        return payload.data

    async def push(self, snapshot: Mapping[str, Any]) -> PushAcknowledgement:
        """Store ``snapshot`` as the account's snapshot.

        Raises:
            NotAuthenticatedError: No session stored
            InvalidPayloadError: Snapshot missing required fields, or rejected (400)
            UnauthorizedError: Token rejected; the session was cleared
            NetworkFailureError: Transport or server failure
        """
        token = self._require_token()
        generation = self._sessions.generation
        missing = [name for name in REQUIRED_PUSH_FIELDS if snapshot.get(name) is None]
        if missing:
            raise InvalidPayloadError(f"Snapshot is missing {', '.join(missing)}")

        response = await self._send(
            "POST",
            "/api/sync/push",
            "push",
            json=dict(snapshot),
            headers={"Authorization": f"Bearer {token}"},
        )
        await self._raise_if_unauthorized(response)
        if response.status_code == 400:
            raise InvalidPayloadError(error_message_from(response, "Invalid data structure"), 400)
        self._raise_for_status(response, "Push failed")

        try:
            ack = PushAcknowledgement.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise NetworkFailureError(
                f"Push returned an unreadable body: {exc}", response.status_code
            ) from exc

        await self._record_sync(generation)
        logger.info(
            "sync_pushed",
            extra={"updated_at": ack.updated_at, "shortcuts": len(snapshot.get("shortcuts") or [])},
        )
        return ack

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _credentials(email: str, password: str) -> dict[str, str]:
        email = (email or "").strip()
        if not email or not password:
            raise InvalidInputError("Email and password required")
        return {"email": email, "password": password}

    def _require_token(self) -> str:
        token = self._sessions.session.token
        if not token:
            raise NotAuthenticatedError("Not logged in")
        return token

    async def _send(
        self,
        method: str,
        path: str,
        endpoint: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self.client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=headers,
                timeout=self.DEFAULT_TIMEOUTS.get(endpoint, self.timeout),
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "sync_request_failed",
                extra={"endpoint": endpoint, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise NetworkFailureError(f"{endpoint} request failed: {exc}") from exc

    async def _record_sync(self, generation: int) -> None:
        # A logout or re-login while the request was in flight owns the session now.
        if generation == self._sessions.generation:
            await self._sessions.record_sync(self._clock())

    async def _raise_if_unauthorized(self, response: httpx.Response) -> None:
        if response.status_code != 401:
            return
        logger.warning("sync_session_rejected", extra={"status_code": 401})
        await self.logout()
        raise UnauthorizedError("Session expired. Please login again.", 401)

    @staticmethod
    def _raise_for_status(response: httpx.Response, default: str) -> None:
        if response.is_success:
            return
        message = error_message_from(response, default)
        if response.status_code >= 500:
            raise NetworkFailureError(message, response.status_code)
        raise RemoteSyncError(message, response.status_code)

    async def _store_session(self, response: httpx.Response, endpoint: str) -> SyncSession:
        try:
            auth = AuthResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise NetworkFailureError(
                f"{endpoint} returned an unreadable body: {exc}", response.status_code
            ) from exc
        session = await self._sessions.save(auth.token, auth.email)
        logger.info(f"sync_{endpoint}_succeeded", extra={"email": mask_email(auth.email)})
        return session
