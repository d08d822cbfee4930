"""OAuth session orchestration for one authenticated identity.

Coordinates rate limiting, PKCE, pushed authorization, DPoP-bound token
exchange and refresh, and protected resource calls, keeping the in-memory
token record consistent with the durable TokenStore copy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from enum import Enum
from typing import Any

import httpx

from dpop_oauth.config import ClientIdentity, OAuthServerConfig
from dpop_oauth.models.errors import (
    ConfigurationError,
    RateLimitExceededError,
    ResourceRequestError,
    TokenExchangeError,
    TokenMissingError,
    UnsafeEndpointError,
)
from dpop_oauth.models.flow import AuthorizationAttempt, PushedAuthorizationRequest
from dpop_oauth.models.tokens import RefreshTokenRequest, TokenRecord, TokenRequest
from dpop_oauth.primitives.dpop import DPoPSigner
from dpop_oauth.primitives.pkce import PKCEManager
from dpop_oauth.services.authorization import OAuth2PushedAuthorization, error_fields
from dpop_oauth.services.rate_limit import InMemoryRateLimiter, RateLimiter
from dpop_oauth.services.security import UrlValidator, sanitize_string
from dpop_oauth.services.tokens import OAuth2TokenManager
from dpop_oauth.storage.base import TokenStore

logger = logging.getLogger(__name__)

# Shared across sessions so limits apply per caller, not per session object.
default_rate_limiter = InMemoryRateLimiter()


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class OAuthSession:
    """OAuth client session bound to one user id and one DPoP key pair.

    State-mutating operations (code exchange, refresh, logout, restore) are
    serialized on a per-session lock. The session is meant to be driven by a
    single logical flow per authenticated identity.

    Args:
        identity: Client identity, including the DPoP key pair
        store: Durable token storage
        user_id: Opaque key for this identity's record in the store
        config: Authorization server endpoints and allow-list
        rate_limiter: Limiter for begin_authorization, shared by default
        url_validator: SSRF gate; built from config.allowed_hosts by default
        http_client: Transport; created (and closed by close()) if omitted
        clock: Returns the current Unix time; injectable for tests

    Raises:
        ConfigurationError: If a required input is missing
    """

    def __init__(
        self,
        identity: ClientIdentity,
        store: TokenStore,
        user_id: str,
        config: OAuthServerConfig | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        url_validator: UrlValidator | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if identity is None:
            raise ConfigurationError("identity is required")
        if store is None:
            raise ConfigurationError("storage mechanism is required")
        if not user_id:
            raise ConfigurationError("user_id is required")

        self.identity = identity
        self.user_id = user_id
        self.config = config or OAuthServerConfig()
        self._store = store
        self._clock = clock

        self._rate_limiter = rate_limiter or default_rate_limiter
        self._url_validator = url_validator or UrlValidator(self.config.allowed_hosts)

        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=self.config.timeout)

        self._pkce = PKCEManager()
        self._signer = DPoPSigner(clock=clock)
        self._par = OAuth2PushedAuthorization(http_client=self._http_client)
        self._token_manager = OAuth2TokenManager(http_client=self._http_client)

        self._tokens: TokenRecord | None = None
        self._pending = False
        self._lock = asyncio.Lock()

        logger.debug(
            f"Created session for client {identity.client_id} with DPoP key "
            f"{identity.signing_key_pair.thumbprint}"
        )

    @property
    def state(self) -> SessionState:
        if self._tokens is not None:
            if self._tokens.is_expired(self._clock()):
                return SessionState.EXPIRED
            return SessionState.AUTHENTICATED
        if self._pending:
            return SessionState.PENDING
        return SessionState.UNAUTHENTICATED

    @property
    def token_record(self) -> TokenRecord | None:
        """Copy of the current token record, if any."""
        return replace(self._tokens) if self._tokens is not None else None

    async def restore(self) -> TokenRecord | None:
        """Load this user's durable token record into the session."""
        async with self._lock:
            self._tokens = await self._store.load_tokens(self.user_id)
            if self._tokens is None:
                logger.debug(f"No stored tokens for user {self.user_id}")
            return self.token_record

    async def begin_authorization(
        self, caller_key: str, state: str | None = None
    ) -> AuthorizationAttempt:
        """Start an authorization flow with a pushed authorization request.

        Args:
            caller_key: Identity of the caller for rate limiting (IP, account)
            state: Optional CSRF state forwarded to the authorization server

        Returns:
            AuthorizationAttempt: Redirect URL plus the code verifier the
            caller must keep until the callback

        Raises:
            RateLimitExceededError: If caller_key exceeded the limit
            UnsafeEndpointError: If the PAR endpoint fails the URL gate
            AuthorizationError: If the PAR request fails
        """
        admitted = await self._rate_limiter.check_rate_limit(
            caller_key, self.config.rate_limit
        )
        if not admitted:
            raise RateLimitExceededError("Rate limit exceeded. Please try again later.")

        pkce_params = self._pkce.generate_parameters()

        await self._require_safe_url(self.config.par_endpoint)

        par_response = await self._par.push_authorization_request(
            PushedAuthorizationRequest(
                par_endpoint=self.config.par_endpoint,
                client_id=self.identity.client_id,
                redirect_uri=self.identity.redirect_uri,
                code_challenge=pkce_params.code_challenge,
                code_challenge_method=pkce_params.code_challenge_method,
                scope=self.identity.scope,
                state=state,
            )
        )

        url = par_response.build_authorization_url(
            self.config.authorization_endpoint, self.identity.client_id
        )
        self._pending = True

        logger.info(f"Started authorization flow for client {self.identity.client_id}")

        return AuthorizationAttempt(
            url=url,
            code_verifier=pkce_params.code_verifier,
            code_challenge=pkce_params.code_challenge,
            request_uri=par_response.request_uri,
            state=state,
        )

    async def complete_authorization(self, code: str, code_verifier: str) -> TokenRecord:
        """Exchange the callback's authorization code for DPoP-bound tokens.

        On failure the session stays pending; whether the same code can be
        retried is up to the authorization server (codes are usually single-use).

        Raises:
            TokenExchangeError: If the exchange fails
            StorageError: If the token store fails
        """
        if not code or not code_verifier:
            raise TokenExchangeError("authorization code and code verifier are required")

        async with self._lock:
            token_endpoint = self.config.token_endpoint
            await self._require_safe_url(token_endpoint)

            token_response = await self._token_manager.exchange_code_for_token(
                TokenRequest(
                    token_endpoint=token_endpoint,
                    code=code,
                    code_verifier=code_verifier,
                    client_id=self.identity.client_id,
                    redirect_uri=self.identity.redirect_uri,
                ),
                self._sign("POST", token_endpoint),
            )

            record = token_response.to_token_record(self._clock())
            await self._save(record)
            self._pending = False

            logger.info(f"Authenticated user {self.user_id}")
            return self.token_record

    async def _refresh(self) -> None:
        """Replace the token record using the refresh token.

        Must be called with the session lock held. On failure the current
        record is left untouched.
        """
        if self._tokens is None or not self._tokens.can_refresh():
            raise TokenMissingError(
                "Refresh token is missing; authorization must be restarted"
            )

        token_endpoint = self.config.token_endpoint
        await self._require_safe_url(token_endpoint)

        token_response = await self._token_manager.refresh_access_token(
            RefreshTokenRequest(
                token_endpoint=token_endpoint,
                refresh_token=self._tokens.refresh_token,
                client_id=self.identity.client_id,
            ),
            self._sign("POST", token_endpoint),
        )

        record = token_response.to_token_record(self._clock())
        if record.refresh_token is None:
            logger.warning(
                "Refresh response carried no refresh token; "
                "the session can no longer refresh"
            )

        await self._save(record)
        logger.info(f"Refreshed access token for user {self.user_id}")

    async def call_protected_resource(
        self,
        method: str,
        url: str,
        access_token: str | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """Call a protected resource with a DPoP-bound access token.

        Uses the session's token unless access_token is given. An expired
        session token is refreshed once before the call. A 401 for a token
        that is not expired is returned as an error, not retried.

        Args:
            method: HTTP method
            url: Resource URL; must pass the URL gate
            access_token: Explicit token to use instead of the session's
            **request_kwargs: Passed to httpx (json, params, content, headers)

        Raises:
            TokenMissingError: If no usable token or refresh token exists
            TokenRefreshError: If the expiry-triggered refresh fails
            UnsafeEndpointError: If the URL fails the URL gate
            ResourceRequestError: On transport failure or non-2xx status
        """
        if access_token is None:
            async with self._lock:
                if self._tokens is None:
                    raise TokenMissingError("Access token is missing")

                if self._tokens.is_expired(self._clock()):
                    logger.info("Access token expired, refreshing before request")
                    await self._refresh()

                access_token = self._tokens.access_token

        await self._require_safe_url(url)

        headers = dict(request_kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"DPoP {access_token}"
        headers["DPoP"] = self._sign(method, url)

        try:
            response = await self._http_client.request(
                method.upper(), url, headers=headers, **request_kwargs
            )
        except httpx.HTTPError as e:
            raise ResourceRequestError(
                f"Failed to make authenticated request: {e}"
            ) from e

        if not 200 <= response.status_code < 300:
            error, description = error_fields(response)
            logger.warning(
                f"Protected resource returned {response.status_code}: "
                f"{sanitize_string(error)}"
            )
            raise ResourceRequestError(
                f"Protected resource returned {response.status_code}: {error}",
                status_code=response.status_code,
                error=error,
                error_description=description,
            )

        return response

    async def logout(self) -> None:
        """Delete stored tokens and return to the unauthenticated state.

        Idempotent: logging out without an active session does nothing harmful.
        """
        async with self._lock:
            await self._store.delete_tokens(self.user_id)
            self._tokens = None
            self._pending = False
            logger.info(f"Logged out user {self.user_id}")

    async def _save(self, record: TokenRecord) -> None:
        # Durable copy first so a storage failure leaves memory unchanged
        await self._store.save_tokens(self.user_id, record)
        self._tokens = record

    def _sign(self, method: str, url: str) -> str:
        return self._signer.sign_with(self.identity.signing_key_pair, method, url)

    async def _require_safe_url(self, url: str) -> None:
        if not await self._url_validator.is_valid_url(url):
            raise UnsafeEndpointError(
                f"Refusing request to disallowed URL {sanitize_string(url)}"
            )

    async def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> OAuthSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
