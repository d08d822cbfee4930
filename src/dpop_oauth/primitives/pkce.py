"""PKCE (Proof Key for Code Exchange) parameter generation.

Implements RFC 7636 verifier and S256 challenge generation, binding each
pushed authorization request to the token exchange that completes it.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from dpop_oauth.models.errors import PKCEError
from dpop_oauth.models.security import PKCEParameters

UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"


class PKCEManager:
    """Generates PKCE parameters for authorization flows.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates cryptographically secure code verifiers
    """

    verifier_length = 128

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for an authorization flow.

        Returns:
            PKCEParameters: Immutable parameters for the authorization flow

        Raises:
            PKCEError: If parameter generation fails
        """
        try:
            code_verifier = self.generate_code_verifier()
            code_challenge = self.generate_code_challenge(code_verifier)

            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=code_challenge,
                code_challenge_method="S256",
            )

        except Exception as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e

    def generate_code_verifier(self) -> str:
        """Generate a cryptographically secure code verifier.

        RFC 7636 Section 4.1: code verifier must be 43-128 characters long
        and use only unreserved characters:
            [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

        Returns:
            A 128-character code verifier (maximum length for best security)
        """
        return "".join(
            secrets.choice(UNRESERVED_CHARACTERS) for _ in range(self.verifier_length)
        )

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        """Generate code challenge from code verifier using S256 method.

        RFC 7636 Section 4.2: For S256, the code challenge is:
        BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
        """
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()

        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
