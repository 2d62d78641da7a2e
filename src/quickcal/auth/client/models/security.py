"""Security-related models for the calendar authorization flow.

Contains the PKCE pair generated for each authorization attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PkceChallengePair:
    """PKCE (Proof Key for Code Exchange) verifier and challenge (RFC 7636).

    Immutable pair generated for one authorization flow. The verifier stays
    out of ``repr`` so it cannot leak through diagnostics.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not (43 <= len(self.code_challenge) <= 128):
            raise ValueError("code_challenge must be 43-128 characters")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
