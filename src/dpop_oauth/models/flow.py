"""Authorization flow models for pushed authorization requests.

Contains models for the PAR request (RFC 9126), its response, and the
authorization attempt handed back to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from pydantic import BaseModel


@dataclass(frozen=True)
class PushedAuthorizationRequest:
    """Pushed authorization request parameters (RFC 9126 Section 2.1)."""

    par_endpoint: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    scope: str
    code_challenge_method: str = "S256"
    response_type: str = "code"
    state: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {
            "client_id": self.client_id,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "response_type": self.response_type,
        }

        if self.state:
            data["state"] = self.state

        return data


class PushedAuthorizationResponse(BaseModel):
    """Successful PAR response (RFC 9126 Section 2.2)."""

    request_uri: str
    expires_in: int | None = None

    def build_authorization_url(
        self, authorization_endpoint: str, client_id: str
    ) -> str:
        """Build the browser redirect URL referencing this pushed request."""
        params = {"client_id": client_id, "request_uri": self.request_uri}
        return f"{authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationAttempt:
    """Result of starting an authorization flow.

    The caller must keep ``code_verifier`` (and ``state`` when used) in its
    own session storage until the callback arrives; the client never stores it.
    """

    url: str
    code_verifier: str
    code_challenge: str
    request_uri: str
    state: str | None = None
