"""Pushed Authorization Request (PAR) service.

Implements RFC 9126: authorization parameters are posted directly to the
authorization server, which returns an opaque ``request_uri`` handle that the
browser redirect then references instead of carrying the parameters itself.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from dpop_oauth.models.errors import AuthorizationError
from dpop_oauth.models.flow import (
    PushedAuthorizationRequest,
    PushedAuthorizationResponse,
)
from dpop_oauth.services.security import sanitize_string

logger = logging.getLogger(__name__)


class OAuth2PushedAuthorization:
    """Sends pushed authorization requests to the PAR endpoint.

    Requests are never retried: a PAR may already have been recorded by the
    server when a failure is reported, so the caller decides whether to start
    over.
    """

    def __init__(self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None):
        """Initialize the PAR service.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Shared client to use instead of creating one
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def push_authorization_request(
        self, par_request: PushedAuthorizationRequest
    ) -> PushedAuthorizationResponse:
        """Push authorization parameters and return the request_uri handle.

        Raises:
            AuthorizationError: On transport failure, non-2xx status, or a
                response without request_uri
        """
        logger.debug(f"Pushing authorization request to {par_request.par_endpoint}")

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        try:
            response = await self._http_client.post(
                par_request.par_endpoint,
                data=par_request.to_form_data(),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise AuthorizationError(
                f"Failed to push authorization request: {e}"
            ) from e

        return self._parse_par_response(response)

    def _parse_par_response(self, response: httpx.Response) -> PushedAuthorizationResponse:
        if not 200 <= response.status_code < 300:
            error, description = error_fields(response)
            logger.warning(
                f"Pushed authorization request rejected with {response.status_code}: "
                f"{sanitize_string(error)} - {sanitize_string(description or '')}"
            )
            raise AuthorizationError(
                f"Failed to push authorization request: {response.status_code} {error}",
                status_code=response.status_code,
                error=error,
                error_description=description,
            )

        try:
            par_response = PushedAuthorizationResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthorizationError(
                f"Invalid pushed authorization response: {e}",
                status_code=response.status_code,
            ) from e

        logger.info("Pushed authorization request accepted")
        return par_response

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self._http_client.aclose()


def error_fields(response: httpx.Response) -> tuple[str, str | None]:
    """Extract RFC 6749 error fields, falling back to the response text."""
    try:
        data = response.json()
    except ValueError:
        return "unknown_error", response.text or None

    if not isinstance(data, dict):
        return "unknown_error", None
    description = data.get("error_description")
    return (
        str(data.get("error", "unknown_error")),
        str(description) if description is not None else None,
    )
