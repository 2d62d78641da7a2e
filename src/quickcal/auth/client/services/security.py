"""Security utilities for the authorization flow.

Provides cryptographically secure state generation and callback validation
for CSRF protection.
"""

from __future__ import annotations

import secrets
import string

from quickcal.auth.client.models.errors import (
    AuthorizationCallbackError,
    AuthorizationDeniedError,
    CsrfMismatchError,
)
from quickcal.auth.client.models.flow import AuthorizationResponse


def generate_state() -> str:
    """Generate cryptographically secure state parameter.

    The state parameter provides CSRF protection by ensuring the callback
    matches the original authorization request.

    Returns:
        Cryptographically secure random state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-_"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value exactly.

    Raises:
        CsrfMismatchError: If the state is missing or does not match
    """
    if actual is None:
        raise CsrfMismatchError("Callback missing required state parameter")
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise CsrfMismatchError("State parameter mismatch - possible CSRF attack")


def validate_authorization_response(
    response: AuthorizationResponse, expected_state: str
) -> str:
    """Validate a callback and return its authorization code.

    The state is checked first, so a forged error callback is reported as a
    CSRF mismatch rather than a denial.

    Raises:
        CsrfMismatchError: If state is missing or does not match
        AuthorizationDeniedError: If the server reported an error
        AuthorizationCallbackError: If the code is missing
    """
    validate_state(expected_state, response.state)

    if response.is_error():
        message = f"Authorization failed: {response.error}"
        if response.error_description:
            message += f" ({response.error_description})"
        if response.error_uri:
            message += f" See: {response.error_uri}"
        raise AuthorizationDeniedError(message)

    if response.code is None:
        raise AuthorizationCallbackError("Missing authorization code")

    return response.code
