"""Credential record and token endpoint models.

Contains the persisted credential record, the token endpoint request
bodies, and token response handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, SecretStr, field_serializer, field_validator

DEFAULT_EXPIRES_IN = 3600


class CredentialRecord(BaseModel):
    """The single persisted credential for the signed-in user.

    All three fields exist together or the record does not exist at all.
    ``expires_at`` is an absolute unix timestamp, never a relative duration.
    Secrets are redacted in ``repr`` and only revealed when serialized to JSON
    for the keyring.
    """

    model_config = ConfigDict(frozen=True)

    refresh_token: SecretStr
    access_token: SecretStr
    expires_at: int

    @field_validator("refresh_token", "access_token")
    @classmethod
    def _require_secret(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("token must not be empty")
        return value

    @field_serializer("refresh_token", "access_token", when_used="json")
    def _reveal_secret(self, value: SecretStr) -> str:
        return value.get_secret_value()

    def is_fresh(self, now: float, margin_seconds: float) -> bool:
        """Check if the access token stays valid for at least the margin.

        Args:
            now: Current unix timestamp
            margin_seconds: Refresh this many seconds before expiry
        """
        return now + margin_seconds < self.expires_at


@dataclass(frozen=True)
class TokenRequest:
    """Token exchange request parameters (RFC 6749 Section 4.1.3).

    Immutable request parameters for exchanging authorization codes for access tokens.
    Includes PKCE code_verifier (RFC 7636).
    """

    # Required fields first
    token_endpoint: str
    code: str = field(repr=False)
    redirect_uri: str
    client_id: str
    code_verifier: str = field(repr=False)  # RFC 7636 PKCE

    # Optional fields with defaults last
    client_secret: str | None = field(default=None, repr=False)
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Token requests must use form encoding, not JSON (RFC 6749 Section 4.1.3).

        Returns:
            Dictionary suitable for httpx data parameter
        """
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": self.code_verifier,
        }

        if self.client_secret:
            data["client_secret"] = self.client_secret

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token request parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str = field(repr=False)
    client_id: str

    client_secret: str | None = field(default=None, repr=False)
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }

        if self.client_secret:
            data["client_secret"] = self.client_secret

        return data


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5).

    Represents the response from a token endpoint, including both
    successful responses (Section 5.1) and error responses (Section 5.2).
    """

    # Success response fields (RFC 6749 Section 5.1)
    access_token: SecretStr | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: SecretStr | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None

    def has_refresh_token(self) -> bool:
        return self.refresh_token is not None and bool(
            self.refresh_token.get_secret_value()
        )

    def describe_error(self) -> str:
        """Human readable summary of an error response."""
        message = f"{self.error or 'unknown_error'}"
        if self.error_description:
            message += f" ({self.error_description})"
        if self.error_uri:
            message += f" See: {self.error_uri}"
        return message

    def calculate_expires_at(self, issued_at: float) -> int:
        """Calculate absolute expiry timestamp from expires_in.

        Providers that omit expires_in are assumed to issue one-hour tokens.
        """
        expires_in = (
            self.expires_in if self.expires_in is not None else DEFAULT_EXPIRES_IN
        )
        return int(issued_at) + expires_in

    def to_credential_record(
        self, issued_at: float, fallback_refresh_token: str | None = None
    ) -> CredentialRecord:
        """Convert a successful response into a CredentialRecord.

        Args:
            issued_at: Unix timestamp the response was received at
            fallback_refresh_token: Refresh token to keep when the provider
                does not rotate it

        Raises:
            ValueError: If the response is not successful or no refresh
                token is available
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to CredentialRecord")

        refresh_token = (
            self.refresh_token.get_secret_value()
            if self.has_refresh_token()
            else fallback_refresh_token
        )
        if not refresh_token:
            raise ValueError("No refresh token available for CredentialRecord")

        return CredentialRecord(
            refresh_token=refresh_token,
            access_token=self.access_token.get_secret_value(),
            expires_at=self.calculate_expires_at(issued_at),
        )
