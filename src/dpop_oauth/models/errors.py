"""Exception hierarchy for the DPoP OAuth client.

Provides specific exception types for different failure modes so callers can
branch on the kind of failure rather than on message text.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth client errors.

    Carries the upstream HTTP status and OAuth error fields when the failure
    originated from an authorization or resource server response.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


class ConfigurationError(OAuth2Error):
    """Raised when required client configuration is missing or invalid."""

    pass


class SecurityRejection(OAuth2Error):
    """Raised when a security gate refuses to let a request proceed."""

    pass


class UnsafeEndpointError(SecurityRejection, ConfigurationError):
    """Raised when a configured endpoint fails the SSRF/allow-list check."""

    pass


class RateLimitExceededError(SecurityRejection):
    """Raised when a caller exceeds the authorization rate limit."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails."""

    pass


class ProofGenerationError(OAuth2Error):
    """Raised when a DPoP proof cannot be built or signed.

    The failure is deterministic for the given key material, so the request
    must not be retried with the same key.
    """

    pass


class AuthorizationError(OAuth2Error):
    """Raised when the pushed authorization request is rejected or malformed."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class TokenMissingError(TokenError):
    """Raised when no usable access or refresh token is available.

    Always recoverable by running the authorization flow again.
    """

    pass


class ResourceRequestError(OAuth2Error):
    """Raised when a protected resource call fails or returns non-2xx."""

    pass


class StorageError(OAuth2Error):
    """Raised by token stores when persistence fails."""

    pass
