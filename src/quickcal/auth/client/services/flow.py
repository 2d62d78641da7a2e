"""Authorization code flow with PKCE over a transient loopback listener.

Coordinates the complete authorization code flow: PKCE and state
generation, browser launch, callback capture, code exchange and
persistence of the resulting credential.
"""

from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from collections.abc import Callable

from quickcal.auth.client.models.errors import (
    AuthorizationTimeoutError,
    BrowserLaunchError,
    MissingRefreshTokenError,
    TokenExchangeError,
    UserCancelledError,
)
from quickcal.auth.client.models.flow import AuthorizationRequest, AuthorizationResponse
from quickcal.auth.client.models.tokens import TokenRequest
from quickcal.auth.client.services.callback import CallbackServer
from quickcal.auth.client.services.cancellation import (
    CancellationHandle,
    CancellationRegistry,
)
from quickcal.auth.client.services.credentials import CredentialStore
from quickcal.auth.client.services.pkce import PKCEManager
from quickcal.auth.client.services.security import (
    generate_state,
    validate_authorization_response,
)
from quickcal.auth.client.services.tokens import OAuth2TokenManager
from quickcal.auth.config import AuthSettings

logger = logging.getLogger(__name__)


class AuthorizationFlow:
    """Runs one browser-based authorization attempt at a time.

    Each call to ``start_authorization``:
    - claims the single-flight slot in the cancellation registry
    - binds a loopback listener and builds the authorize URL
    - opens the system browser
    - races the callback against the timeout and cancellation
    - validates state, exchanges the code and persists the credential

    The listener is closed and the slot released on every exit path.
    """

    def __init__(
        self,
        settings: AuthSettings,
        store: CredentialStore,
        registry: CancellationRegistry,
        token_manager: OAuth2TokenManager,
        open_browser: Callable[[str], bool] = webbrowser.open,
        callback_server_factory: Callable[..., CallbackServer] = CallbackServer,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._store = store
        self._registry = registry
        self._token_manager = token_manager
        self._open_browser = open_browser
        self._callback_server_factory = callback_server_factory
        self._clock = clock
        self._pkce_manager = PKCEManager()

    async def start_authorization(self) -> str:
        """Authorize the user in the browser and return a fresh access token.

        Returns:
            The new access token

        Raises:
            AlreadyInProgressError: If another attempt is in flight
            BrowserLaunchError: If the browser cannot be opened
            AuthorizationTimeoutError: If no callback arrives in time
            UserCancelledError: If the attempt is cancelled while waiting
            CsrfMismatchError: If the callback state does not match
            AuthorizationDeniedError: If the user or server denied access
            MissingRefreshTokenError: If the provider issues no refresh token
            TokenExchangeError: If the provider rejects the code
            NetworkError: If the token endpoint cannot be reached in time
            StoreUnavailableError: If the new credential cannot be saved
        """
        with self._registry.acquire() as handle:
            callback_server = self._callback_server_factory(
                host=self._settings.callback_host,
                callback_path=self._settings.callback_path,
                shutdown_grace_seconds=self._settings.shutdown_grace_seconds,
            )
            redirect_uri = callback_server.bind()
            try:
                pkce_pair = self._pkce_manager.generate_pair()
                state = generate_state()
                authorization_url = AuthorizationRequest(
                    authorization_endpoint=self._settings.authorize_url,
                    client_id=self._settings.client_id,
                    redirect_uri=redirect_uri,
                    code_challenge=pkce_pair.code_challenge,
                    code_challenge_method=pkce_pair.code_challenge_method,
                    state=state,
                    scope=self._settings.scope,
                    access_type=self._settings.access_type,
                ).build_authorization_url()

                await callback_server.start()
                callback = await self._await_callback(
                    callback_server, handle, authorization_url
                )
            finally:
                await callback_server.close()

            code = validate_authorization_response(callback, state)
            logger.info("Received authorization code")

            return await self._exchange_and_persist(
                code, redirect_uri, pkce_pair.code_verifier
            )

    async def _launch_browser(self, authorization_url: str) -> None:
        logger.info(
            f"Opening browser for authorization at {self._settings.authorize_url}"
        )
        # Console browsers block until they exit; keep the listener serving.
        try:
            opened = await asyncio.to_thread(self._open_browser, authorization_url)
        except webbrowser.Error as e:
            raise BrowserLaunchError(f"Failed to open browser: {e}") from e
        if not opened:
            raise BrowserLaunchError("No browser available to open authorization URL")

    async def _await_callback(
        self,
        callback_server: CallbackServer,
        handle: CancellationHandle,
        authorization_url: str,
    ) -> AuthorizationResponse:
        """Open the browser, then race the callback, the timeout and
        cancellation. First one wins.

        The deadline starts when the browser is launched, so a launcher that
        blocks does not extend it.
        """
        if handle.cancelled:
            logger.info("Authorization cancelled before the browser was opened")
            raise UserCancelledError("Authorization was cancelled")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.timeout_seconds

        launch_task = asyncio.ensure_future(self._launch_browser(authorization_url))
        callback_task = asyncio.ensure_future(callback_server.wait_for_callback())
        cancel_task = asyncio.ensure_future(handle.wait())
        pending = {launch_task, callback_task, cancel_task}
        try:
            while True:
                done, pending = await asyncio.wait(
                    pending,
                    timeout=max(0.0, deadline - loop.time()),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if callback_task in done:
                    return callback_task.result()
                if cancel_task in done:
                    logger.info("Authorization cancelled by user")
                    raise UserCancelledError("Authorization was cancelled")
                if launch_task in done:
                    # Raises BrowserLaunchError; otherwise keep waiting
                    launch_task.result()
                    continue

                logger.warning(
                    f"No authorization callback within "
                    f"{self._settings.timeout_seconds}s"
                )
                raise AuthorizationTimeoutError("Authorization callback timed out")
        finally:
            for task in (launch_task, callback_task, cancel_task):
                task.cancel()

    async def _exchange_and_persist(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> str:
        token_request = TokenRequest(
            token_endpoint=self._settings.token_url,
            code=code,
            redirect_uri=redirect_uri,
            client_id=self._settings.client_id,
            code_verifier=code_verifier,
            client_secret=self._settings.client_secret,
        )
        token_response = await self._token_manager.exchange_code_for_token(
            token_request
        )
        issued_at = self._clock()

        if not token_response.is_success():
            raise TokenExchangeError(
                f"Token exchange failed: {token_response.describe_error()}"
            )
        if not token_response.has_refresh_token():
            raise MissingRefreshTokenError(
                "Token response did not include a refresh token"
            )

        record = token_response.to_credential_record(issued_at)
        self._store.put(record)
        logger.info("Saved new credentials to keyring")

        return record.access_token.get_secret_value()
