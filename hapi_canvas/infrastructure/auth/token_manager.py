"""
Canvas Token Lifecycle Manager

Supplies a currently-valid bearer token for outbound Canvas calls and
refreshes it transparently when possible.

State machine:
    UNCONNECTED --store_token--> CONNECTED --(now > expires_at)--> EXPIRED
    EXPIRED --refresh ok--> CONNECTED
    EXPIRED --refresh failed--> INVALID (until a new store_token)

UNCONNECTED and INVALID both yield ``get_token() -> None``; INVALID means the
user must be sent through the authorization flow again.

Refresh:
- POST ``{instance}/login/oauth2/token`` with ``grant_type=refresh_token``
- Transient failures (network, 5xx, 429) retried with tenacity
- Any other failure marks the stored record invalid
- No OAuth client id configured raises ConfigurationError and leaves the
  stored record untouched
- Concurrent callers share a single refresh (the second caller finds the
  freshly stored token once the lock is released)

Tokens never appear in logs; only redacted fingerprints do.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from hapi_canvas.core.config.constants import (
    TOKEN_REFRESH_ATTEMPTS,
    TOKEN_REFRESH_BASE_DELAY,
    CanvasEndpoints,
    CanvasOAuthEndpoints,
    ConnectionState,
)
from hapi_canvas.core.config.settings import Settings, get_settings
from hapi_canvas.core.exceptions import (
    CanvasApiError,
    CanvasClientError,
    ConfigurationError,
    CredentialError,
    TokenRefreshError,
    is_transient,
)
from hapi_canvas.core.logging.logger import get_logger, redact_token
from hapi_canvas.core.observability import ClientObserver, LifecycleEvent, LoggingObserver, notify
from hapi_canvas.infrastructure.auth.credential_store import CredentialStore
from hapi_canvas.infrastructure.auth.models import (
    AccessToken,
    CredentialRecord,
    TokenExchangeResult,
    utcnow,
)
from hapi_canvas.infrastructure.http import bearer, decode_body, raise_for_canvas_status, send

logger = get_logger(__name__)


class TokenLifecycleManager:
    """
    Owns the credential for one (user, Canvas instance) pair.

    Args:
        store: Credential persistence
        user_id: Application user the credential belongs to
        instance_url: Canvas instance (defaults to settings)
        client_id / client_secret: OAuth client (defaults to settings)
        http_client: Shared httpx client; one is created (and owned) if omitted
        now: Wall clock returning aware datetimes, injectable for tests
        sleep: Coroutine used between refresh attempts
        refresh_attempts: Total attempts for a transiently failing refresh
        observer: Lifecycle observer
        settings: Settings used for any omitted argument
    """

    def __init__(
        self,
        store: CredentialStore,
        user_id: str = "default",
        instance_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        refresh_attempts: int = TOKEN_REFRESH_ATTEMPTS,
        observer: ClientObserver | None = None,
        settings: Settings | None = None,
    ):
        canvas = (settings or get_settings()).canvas
        self._store = store
        self._user_id = user_id
        self._instance_url = (instance_url or canvas.CANVAS_INSTANCE_URL).rstrip("/")
        self._api_base_url = f"{self._instance_url}{canvas.CANVAS_API_PATH}"
        self._client_id = client_id if client_id is not None else canvas.CANVAS_CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else canvas.CANVAS_CLIENT_SECRET
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=canvas.CANVAS_REQUEST_TIMEOUT)
        self._now = now
        self._sleep = sleep
        self._refresh_attempts = max(1, refresh_attempts)
        self._observer = observer if observer is not None else LoggingObserver(__name__)

        self._refresh_lock = asyncio.Lock()
        self._state = ConnectionState.UNCONNECTED

    @property
    def instance_url(self) -> str:
        return self._instance_url

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def state(self) -> ConnectionState:
        """State observed by the most recent operation."""
        return self._state

    async def get_state(self) -> ConnectionState:
        """State derived from the stored record right now (no refresh)."""
        record = await self._load()
        self._state = self._derive_state(record)
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_token(self) -> AccessToken | None:
        """
        Current bearer token, refreshing an expired one first.

        Returns None when nothing is on file, the record is invalid, or the
        refresh failed.

        Raises:
            ConfigurationError: The token needs a refresh but no OAuth
                client id is configured. The stored record is left valid.
        """
        record = await self._load()
        self._state = self._derive_state(record)
        if record is None or not record.is_valid:
            return None
        if not record.is_expired(self._now()):
            return AccessToken(token=record.access_token, expires_at=record.expires_at)

        logger.info("Canvas token expired, attempting refresh", user_id=self._user_id)
        return await self._refresh_shared(stale_token=record.access_token)

    async def force_refresh(self, stale_token: str | None = None) -> AccessToken | None:
        """
        Refresh regardless of the recorded expiry.

        Used when Canvas rejects a token as expired before ``expires_at``.
        If another caller already replaced ``stale_token``, the newer token is
        returned without a second exchange.
        """
        return await self._refresh_shared(stale_token=stale_token, force=True)

    async def store_token(self, result: TokenExchangeResult) -> CredentialRecord:
        """Persist a credential obtained from an authorization-code exchange."""
        now = self._now()
        previous = await self._load()
        record = CredentialRecord(
            user_id=self._user_id,
            instance_url=self._instance_url,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_at=result.expires_at(now),
            canvas_user_id=str(result.user.id) if result.user else None,
            is_valid=True,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        await self._store.save(record)
        self._state = ConnectionState.CONNECTED
        notify(
            self._observer,
            LifecycleEvent.TOKEN_STORED,
            user_id=self._user_id,
            token=redact_token(result.access_token),
            has_refresh_token=bool(result.refresh_token),
            expires_in=result.expires_in,
        )
        return record

    async def disconnect(self) -> bool:
        """
        Revoke on Canvas (best effort), then delete the local record.

        Returns True if a record was on file.
        """
        record = await self._load()
        if record is None:
            self._state = ConnectionState.UNCONNECTED
            return False

        try:
            response = await send(
                self._http,
                "DELETE",
                CanvasOAuthEndpoints.revoke(self._instance_url),
                headers=bearer(record.access_token),
            )
            if response.is_success:
                logger.info("Canvas token revoked", user_id=self._user_id)
            else:
                logger.warning(
                    "Canvas token revocation rejected", user_id=self._user_id, status=response.status_code
                )
        except CanvasApiError as e:
            logger.warning("Canvas token revocation failed", user_id=self._user_id, error=e.message)

        await self._store.delete(self._user_id, self._instance_url)
        self._state = ConnectionState.UNCONNECTED
        notify(self._observer, LifecycleEvent.TOKEN_REVOKED, user_id=self._user_id)
        return True

    async def is_connected(self) -> bool:
        return await self.get_token() is not None

    async def validate_token(self) -> bool:
        """Check the current token against ``GET /users/self``."""
        token = await self.get_token()
        if token is None:
            return False
        try:
            response = await send(
                self._http,
                "GET",
                f"{self._api_base_url}{CanvasEndpoints.CURRENT_USER}",
                headers=bearer(token.token),
            )
        except CanvasApiError as e:
            logger.warning("Canvas token validation failed", user_id=self._user_id, error=e.message)
            return False
        if not response.is_success:
            logger.info("Canvas token rejected", user_id=self._user_id, status=response.status_code)
        return response.is_success

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _refresh_shared(self, stale_token: str | None, force: bool = False) -> AccessToken | None:
        async with self._refresh_lock:
            # Re-read: a concurrent caller may have refreshed while we waited
            record = await self._load()
            self._state = self._derive_state(record)
            if record is None or not record.is_valid:
                return None
            already_replaced = stale_token is not None and record.access_token != stale_token
            if already_replaced and not record.is_expired(self._now()):
                return AccessToken(token=record.access_token, expires_at=record.expires_at)
            if not force and not record.is_expired(self._now()):
                return AccessToken(token=record.access_token, expires_at=record.expires_at)
            return await self._refresh(record)

    async def _refresh(self, record: CredentialRecord) -> AccessToken | None:
        if not record.refresh_token:
            logger.info("No refresh token available", user_id=self._user_id)
            self._state = ConnectionState.EXPIRED
            return None
        if not self._client_id:
            raise ConfigurationError("CANVAS_CLIENT_ID is required to refresh Canvas tokens").with_suggestion(
                "Set CANVAS_CLIENT_ID to the developer key id of this Canvas instance"
            )

        try:
            result = await self._exchange_with_retry(record.refresh_token)
        except (CanvasClientError, ValidationError) as e:
            await self._mark_invalid(record, e)
            return None

        now = self._now()
        refreshed = record.model_copy(
            update={
                "access_token": result.access_token,
                "refresh_token": result.refresh_token or record.refresh_token,
                "token_type": result.token_type,
                "expires_at": result.expires_at(now),
                "is_valid": True,
                "updated_at": now,
            }
        )
        try:
            await self._store.save(refreshed)
        except CredentialError as e:
            logger.error("Failed to persist refreshed Canvas token", user_id=self._user_id, error=e.message)
            return None

        self._state = ConnectionState.CONNECTED
        notify(
            self._observer,
            LifecycleEvent.TOKEN_REFRESHED,
            user_id=self._user_id,
            token=redact_token(result.access_token),
            expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
        )
        return AccessToken(token=refreshed.access_token, expires_at=refreshed.expires_at)

    async def _exchange_with_retry(self, refresh_token: str) -> TokenExchangeResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._refresh_attempts),
            wait=wait_exponential_jitter(initial=TOKEN_REFRESH_BASE_DELAY, max=4.0),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            reraise=True,
            before_sleep=lambda retry_state: logger.info(
                "Retrying Canvas token refresh",
                stage="AUTH.REFRESH",
                attempt=retry_state.attempt_number,
                user_id=self._user_id,
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self._exchange(refresh_token)
        raise TokenRefreshError("Canvas token refresh did not run")

    async def _exchange(self, refresh_token: str) -> TokenExchangeResult:
        form = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "refresh_token": refresh_token,
        }
        if self._client_secret:
            form["client_secret"] = self._client_secret

        response = await send(self._http, "POST", CanvasOAuthEndpoints.token(self._instance_url), data=form)
        raise_for_canvas_status(response)
        body = decode_body(response)
        if not isinstance(body, dict):
            raise TokenRefreshError("Canvas returned an unreadable token response")
        return TokenExchangeResult.model_validate(body)

    async def _mark_invalid(self, record: CredentialRecord, error: Exception) -> None:
        self._state = ConnectionState.INVALID
        notify(
            self._observer,
            LifecycleEvent.TOKEN_REFRESH_FAILED,
            user_id=self._user_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        try:
            await self._store.save(record.model_copy(update={"is_valid": False, "updated_at": self._now()}))
        except CredentialError as e:
            logger.error("Failed to mark Canvas credential invalid", user_id=self._user_id, error=e.message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self) -> CredentialRecord | None:
        return await self._store.load(self._user_id, self._instance_url)

    def _derive_state(self, record: CredentialRecord | None) -> ConnectionState:
        if record is None:
            return ConnectionState.UNCONNECTED
        if not record.is_valid:
            return ConnectionState.INVALID
        if record.is_expired(self._now()):
            return ConnectionState.EXPIRED
        return ConnectionState.CONNECTED
