"""Token endpoint client for code exchange and refresh.

Implements RFC 6749 token endpoint interactions with PKCE (RFC 7636).
Redirects are never followed so an authorization code or refresh token
cannot be replayed to an endpoint reached through a redirect chain.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from quickcal.auth.client.models.errors import NetworkError, TokenError
from quickcal.auth.client.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Manages token exchange and refresh operations.

    Handles the token endpoint interactions including:
    - Authorization code to access token exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - PKCE code verification (RFC 7636)

    Every call carries its own absolute timeout.
    """

    def __init__(self, timeout: float = 300.0):
        """Initialize the token manager.

        Args:
            timeout: Absolute deadline for each token endpoint call, in seconds
        """
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def exchange_code_for_token(
        self, token_request: TokenRequest
    ) -> TokenResponse:
        """Exchange authorization code for access token.

        Args:
            token_request: Token exchange request parameters

        Returns:
            TokenResponse: Token response (success or error)

        Raises:
            NetworkError: If the token endpoint cannot be reached in time
            TokenError: If the response cannot be parsed
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}"
        )

        return await self._post(
            token_request.token_endpoint, form_data, "token exchange"
        )

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest
    ) -> TokenResponse:
        """Refresh an access token using a refresh token.

        Args:
            refresh_request: Refresh token request parameters

        Returns:
            TokenResponse: New token response (success or error)

        Raises:
            NetworkError: If the token endpoint cannot be reached in time
            TokenError: If the response cannot be parsed
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        return await self._post(
            refresh_request.token_endpoint,
            refresh_request.to_form_data(),
            "token refresh",
        )

    async def _post(
        self, endpoint: str, form_data: dict[str, str], operation: str
    ) -> TokenResponse:
        try:
            response = await asyncio.wait_for(
                self._http_client.post(endpoint, data=form_data, headers=FORM_HEADERS),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{operation} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"HTTP error during {operation}: {e}") from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse token endpoint response into TokenResponse.

        Handles both successful responses (200) and error responses (400+)
        according to RFC 6749 Section 5.

        Raises:
            TokenError: If the response is a redirect or cannot be parsed
        """
        if response.is_redirect:
            raise TokenError(
                f"Token endpoint answered with redirect {response.status_code}; "
                "refusing to follow"
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise TokenError(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict):
            raise TokenError("Invalid token response format: expected JSON object")

        try:
            if response.status_code == 200:
                if not response_data.get("access_token"):
                    raise TokenError("Token response missing required access_token")

                logger.info("Token endpoint call successful")
                return TokenResponse(**response_data)

            token_response = TokenResponse(**response_data)
            if token_response.error is None:
                token_response = token_response.model_copy(
                    update={"error": f"http_{response.status_code}"}
                )
            logger.warning(
                f"Token endpoint failed with {response.status_code}: "
                f"{token_response.describe_error()}"
            )
            return token_response

        except ValidationError as e:
            raise TokenError(f"Invalid token response format: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
