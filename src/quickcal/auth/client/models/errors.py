"""Exception hierarchy for calendar authorization errors.

Provides specific exception types for different failure modes to enable
precise error handling and recovery strategies.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.1 related errors."""

    pass


class ConfigurationError(OAuth2Error):
    """Raised when client identity or provider endpoints are missing or invalid."""

    pass


class NetworkError(OAuth2Error):
    """Raised when the provider cannot be reached or does not answer in time."""

    pass


class ProtocolError(OAuth2Error):
    """Raised when the provider or the callback violates the OAuth protocol."""

    pass


class AuthorizationCallbackError(ProtocolError):
    """Raised when authorization server callback data is malformed or invalid.

    This indicates the authorization server sent an invalid callback,
    not that our callback handling code failed.
    """

    pass


class CsrfMismatchError(AuthorizationCallbackError):
    """Raised when the callback state does not match the issued state.

    Treated as a possible attack. The authorization code is never exchanged.
    """

    pass


class AuthorizationDeniedError(ProtocolError):
    """Raised when the authorization server reports an error in the callback."""

    pass


class MissingRefreshTokenError(ProtocolError):
    """Raised when a code exchange succeeds without returning a refresh token."""

    pass


class TokenError(ProtocolError):
    """Raised when token endpoint responses are invalid."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class StorageError(OAuth2Error):
    """Raised when secure credential storage fails."""

    pass


class StoreUnavailableError(StorageError):
    """Raised when the OS keyring backend cannot be reached or written."""

    pass


class ConcurrencyError(OAuth2Error):
    """Raised when the single-flight authorization policy is violated."""

    pass


class AlreadyInProgressError(ConcurrencyError):
    """Raised when an authorization attempt is already in flight."""

    pass


class NotInProgressError(ConcurrencyError):
    """Raised when cancelling while no authorization attempt is in flight."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class UserCancelledError(AuthorizationError):
    """Raised when user cancels the authorization flow."""

    pass


class AuthorizationTimeoutError(AuthorizationError):
    """Raised when no callback arrives before the wait deadline."""

    pass


class BrowserLaunchError(AuthorizationError):
    """Raised when the system browser cannot be opened."""

    pass


class NeedsAuthorization(OAuth2Error):
    """Signals that no usable credential exists and the user must sign in.

    Raised by the token lifecycle when the store is empty or a refresh
    failed. Callers respond by starting a fresh authorization flow.
    """

    pass
