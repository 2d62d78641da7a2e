"""Static configuration for the calendar authorization client.

Client identity, provider endpoints, scope, expiry margin and timeouts are
supplied by the environment or by the embedding application. Nothing here is
derived at runtime.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from quickcal.auth.client.models.errors import ConfigurationError

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"

KEYCHAIN_SERVICE = "QuickCal"
KEYCHAIN_ACCOUNT = "google_auth"

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_EXPIRY_MARGIN_SECONDS = 300.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 0.1

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


@dataclass(frozen=True)
class AuthSettings:
    """Settings shared by the token lifecycle and the authorization flow."""

    client_id: str
    client_secret: str | None = field(default=None, repr=False)
    authorize_url: str = GOOGLE_AUTHORIZE_URL
    token_url: str = GOOGLE_TOKEN_URL
    scope: str = CALENDAR_EVENTS_SCOPE
    access_type: str | None = "offline"
    expiry_margin_seconds: float = DEFAULT_EXPIRY_MARGIN_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    callback_host: str = "127.0.0.1"
    callback_path: str = "/callback"
    keychain_service: str = KEYCHAIN_SERVICE
    keychain_account: str = KEYCHAIN_ACCOUNT

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ConfigurationError("client_id is required")
        _validate_endpoint("authorize_url", self.authorize_url)
        _validate_endpoint("token_url", self.token_url)
        if not self.scope.strip():
            raise ConfigurationError("scope must not be empty")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")
        if self.expiry_margin_seconds < 0:
            raise ConfigurationError("expiry_margin_seconds must not be negative")
        if self.shutdown_grace_seconds < 0:
            raise ConfigurationError("shutdown_grace_seconds must not be negative")
        if self.callback_host not in LOOPBACK_HOSTS:
            raise ConfigurationError(
                f"callback_host must be a loopback address, got {self.callback_host}"
            )
        if not self.callback_path.startswith("/"):
            raise ConfigurationError("callback_path must start with '/'")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AuthSettings:
        """Build settings from environment variables.

        Reads GOOGLE_CLIENT_ID (required), GOOGLE_CLIENT_SECRET and the
        optional QUICKCAL_* overrides.

        Raises:
            ConfigurationError: If a variable is missing or invalid
        """
        env = os.environ if environ is None else environ

        client_id = env.get("GOOGLE_CLIENT_ID")
        if not client_id:
            raise ConfigurationError(
                "GOOGLE_CLIENT_ID environment variable is not set"
            )

        return cls(
            client_id=client_id,
            client_secret=env.get("GOOGLE_CLIENT_SECRET") or None,
            authorize_url=env.get("QUICKCAL_AUTHORIZE_URL", GOOGLE_AUTHORIZE_URL),
            token_url=env.get("QUICKCAL_TOKEN_URL", GOOGLE_TOKEN_URL),
            scope=env.get("QUICKCAL_SCOPE", CALENDAR_EVENTS_SCOPE),
            expiry_margin_seconds=_read_seconds(
                env, "QUICKCAL_EXPIRY_MARGIN_SECS", DEFAULT_EXPIRY_MARGIN_SECONDS
            ),
            timeout_seconds=_read_seconds(
                env, "QUICKCAL_TIMEOUT_SECS", DEFAULT_TIMEOUT_SECONDS
            ),
        )


def _read_seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _validate_endpoint(name: str, url: str) -> None:
    """Endpoints must be HTTPS, or plain HTTP on a loopback host."""
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ConfigurationError(f"{name} is not an absolute URL: {url!r}")
    if parsed.scheme == "https":
        return
    if parsed.scheme == "http" and parsed.hostname in LOOPBACK_HOSTS:
        return
    raise ConfigurationError(f"{name} must use https: {url!r}")
