"""PKCE (Proof Key for Code Exchange) generation.

Implements RFC 7636 verifier/challenge generation to prevent authorization
code interception attacks.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from quickcal.auth.client.models.errors import AuthorizationError
from quickcal.auth.client.models.security import PkceChallengePair


class PKCEManager:
    """Generates PKCE pairs for authorization flows.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates cryptographically secure code verifiers
    """

    def generate_pair(self) -> PkceChallengePair:
        """Generate a new PKCE pair for one authorization flow.

        Returns:
            PkceChallengePair: Immutable verifier and derived challenge

        Raises:
            AuthorizationError: If parameter generation fails
        """
        try:
            code_verifier = self._generate_code_verifier()
            code_challenge = self._generate_code_challenge(code_verifier)

            return PkceChallengePair(
                code_verifier=code_verifier,
                code_challenge=code_challenge,
                code_challenge_method="S256",
            )

        except Exception as e:
            raise AuthorizationError(f"Failed to generate PKCE parameters: {e}") from e

    def _generate_code_verifier(self) -> str:
        """Generate a cryptographically secure code verifier.

        RFC 7636 Section 4.1: code verifier must be 43-128 characters long
        and use only unreserved characters:
            [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

        Returns:
            A 128-character code verifier
        """
        alphabet = string.ascii_letters + string.digits + "-._~"
        return "".join(secrets.choice(alphabet) for _ in range(128))

    def _generate_code_challenge(self, code_verifier: str) -> str:
        """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))) without padding."""
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
