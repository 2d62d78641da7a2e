"""Token lifecycle for the calendar companion.

Decides whether to reuse the stored access token, refresh it, or run a new
browser authorization, and exposes the operations the GUI layer consumes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from quickcal.auth.client.models.errors import (
    NeedsAuthorization,
    OAuth2Error,
    StorageError,
    TokenRefreshError,
)
from quickcal.auth.client.models.tokens import CredentialRecord, RefreshTokenRequest
from quickcal.auth.client.services.cancellation import CancellationRegistry
from quickcal.auth.client.services.credentials import CredentialStore
from quickcal.auth.client.services.flow import AuthorizationFlow
from quickcal.auth.client.services.tokens import OAuth2TokenManager
from quickcal.auth.config import AuthSettings

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Hands out usable access tokens.

    Resolution order:
    1. Stored access token that is not within the expiry margin
    2. Silent refresh with the stored refresh token
    3. Fresh browser authorization

    Any refresh failure clears the stored credential and falls through to a
    fresh authorization. A revoked or stale refresh token never blocks the
    user permanently.
    """

    def __init__(
        self,
        settings: AuthSettings,
        store: CredentialStore,
        token_manager: OAuth2TokenManager,
        flow: AuthorizationFlow,
        registry: CancellationRegistry,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._store = store
        self._token_manager = token_manager
        self._flow = flow
        self._registry = registry
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> TokenLifecycleManager:
        """Wire the default keyring store, registry, token client and flow."""
        store = CredentialStore(
            service=settings.keychain_service, account=settings.keychain_account
        )
        registry = CancellationRegistry()
        token_manager = OAuth2TokenManager(timeout=settings.timeout_seconds)
        flow = AuthorizationFlow(settings, store, registry, token_manager)
        return cls(settings, store, token_manager, flow, registry)

    async def get_access_token(self) -> str:
        """Return a bearer token, authorizing in the browser if needed."""
        logger.debug("get_access_token started")
        try:
            return await self.get_token()
        except NeedsAuthorization:
            logger.info("No usable stored credentials, starting authorization")
            return await self._flow.start_authorization()

    async def check_saved_auth(self) -> str | None:
        """Return a stored or refreshed token without opening the browser."""
        try:
            return await self.get_token()
        except NeedsAuthorization:
            return None

    def cancel_auth(self) -> None:
        """Cancel the in-flight authorization.

        Raises:
            NotInProgressError: If no authorization is in flight
        """
        logger.debug("cancel_auth started")
        self._registry.cancel()

    async def get_token(self) -> str:
        """Return the cached or refreshed access token.

        Raises:
            NeedsAuthorization: If nothing is stored or refresh failed
        """
        try:
            record = self._store.get()
        except StorageError as e:
            logger.warning(f"Could not read stored credentials: {e}")
            record = None

        if record is None:
            raise NeedsAuthorization("No stored credentials")

        now = self._clock()
        if record.is_fresh(now, self._settings.expiry_margin_seconds):
            logger.info("Stored access token is valid")
            return record.access_token.get_secret_value()

        logger.info("Stored access token expired, attempting refresh")
        try:
            refreshed = await self._refresh(record)
        except (OAuth2Error, ValueError) as e:
            logger.warning(f"Token refresh failed: {e}")
            self._discard_credentials()
            raise NeedsAuthorization("Token refresh failed") from None

        return refreshed.access_token.get_secret_value()

    async def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        refresh_token = record.refresh_token.get_secret_value()
        token_response = await self._token_manager.refresh_access_token(
            RefreshTokenRequest(
                token_endpoint=self._settings.token_url,
                refresh_token=refresh_token,
                client_id=self._settings.client_id,
                client_secret=self._settings.client_secret,
            )
        )
        issued_at = self._clock()

        if not token_response.is_success():
            raise TokenRefreshError(
                f"Provider rejected refresh: {token_response.describe_error()}"
            )

        refreshed = token_response.to_credential_record(
            issued_at, fallback_refresh_token=refresh_token
        )
        self._store.put(refreshed)
        logger.info("Refreshed access token")
        return refreshed

    def _discard_credentials(self) -> None:
        try:
            self._store.delete()
        except StorageError as e:
            logger.error(f"Failed to delete stale credentials: {e}")

    async def close(self) -> None:
        """Close the token endpoint client."""
        await self._token_manager.close()
