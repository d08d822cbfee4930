"""Token endpoint exchange and refresh service.

Implements RFC 6749 token endpoint interactions with PKCE (RFC 7636), sending
a DPoP proof (RFC 9449) with every request so the issued tokens are bound to
the client's key.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from dpop_oauth.models.errors import (
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
)
from dpop_oauth.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)
from dpop_oauth.services.authorization import error_fields
from dpop_oauth.services.security import sanitize_string

logger = logging.getLogger(__name__)


class OAuth2TokenManager:
    """Manages token exchange and refresh operations.

    Handles the token endpoint interactions including:
    - Authorization code to access token exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - PKCE code verification (RFC 7636)
    - DPoP proof header on every call (RFC 9449 Section 5)

    Uses application/x-www-form-urlencoded encoding as required by RFC 6749.
    """

    def __init__(self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None):
        """Initialize token manager.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Shared client to use instead of creating one
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, token_request: TokenRequest, dpop_proof: str
    ) -> TokenResponse:
        """Exchange authorization code for access token.

        Args:
            token_request: Token exchange request parameters
            dpop_proof: Fresh DPoP proof for POST to the token endpoint

        Returns:
            TokenResponse: Parsed successful token response

        Raises:
            TokenExchangeError: On transport failure, error response, or
                malformed body
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}"
        )

        return await self._post(
            token_request.token_endpoint, form_data, dpop_proof, TokenExchangeError
        )

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest, dpop_proof: str
    ) -> TokenResponse:
        """Refresh an access token using a refresh token.

        Raises:
            TokenRefreshError: On transport failure, error response, or
                malformed body
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        return await self._post(
            refresh_request.token_endpoint,
            refresh_request.to_form_data(),
            dpop_proof,
            TokenRefreshError,
        )

    async def _post(
        self,
        token_endpoint: str,
        form_data: dict[str, str],
        dpop_proof: str,
        error_class: type[TokenError],
    ) -> TokenResponse:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "DPoP": dpop_proof,
        }

        try:
            response = await self._http_client.post(
                token_endpoint,
                data=form_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise error_class(
                f"HTTP error during {form_data['grant_type']} grant: {e}"
            ) from e

        return self._parse_token_response(response, error_class)

    def _parse_token_response(
        self, response: httpx.Response, error_class: type[TokenError]
    ) -> TokenResponse:
        """Parse token endpoint response into TokenResponse.

        Raises:
            TokenError: Instance of error_class for error responses (RFC 6749
                Section 5.2) or bodies that are not valid token responses
        """
        if not 200 <= response.status_code < 300:
            error, description = error_fields(response)
            logger.warning(
                f"Token request failed with {response.status_code}: "
                f"{sanitize_string(error)} - {sanitize_string(description or '')}"
            )
            raise error_class(
                f"Token endpoint returned {response.status_code}: {error}",
                status_code=response.status_code,
                error=error,
                error_description=description,
            )

        try:
            token_response = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise error_class(
                f"Invalid token response format: {e}",
                status_code=response.status_code,
            ) from e

        if token_response.token_type.lower() != "dpop":
            logger.warning(
                f"Expected token_type DPoP, got {sanitize_string(token_response.token_type)}"
            )

        logger.info("Token request successful")
        return token_response

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self._http_client.aclose()
