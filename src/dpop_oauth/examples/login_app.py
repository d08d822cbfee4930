"""
Minimal web login driving the browser redirect of the DPoP OAuth flow.

Configure with DPOP_OAUTH_* environment variables (or a .env file):

    DPOP_OAUTH_CLIENT_ID=https://app.example.com/client-metadata.json
    DPOP_OAUTH_REDIRECT_URI=https://app.example.com/oauth/callback
    DPOP_OAUTH_PRIVATE_JWK_PATH=~/.config/app/dpop-key.json
    DPOP_OAUTH_TOKEN_DIR=~/.config/app/tokens

Without a key file an ephemeral key is generated, so tokens issued in one run
cannot be used in the next.
"""

import logging
import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from dpop_oauth.config import ClientIdentity, OAuthServerConfig
from dpop_oauth.models.errors import (
    OAuth2Error,
    RateLimitExceededError,
    TokenExchangeError,
)
from dpop_oauth.primitives.dpop import DPoPKeyPair
from dpop_oauth.services.security import generate_csrf_token, verify_csrf_token
from dpop_oauth.session import OAuthSession
from dpop_oauth.storage.base import TokenStore
from dpop_oauth.storage.file import FileTokenStore

logger = logging.getLogger(__name__)

LOGIN_COOKIE = "dpop_login"
LOGIN_TTL_SECONDS = 600
MAX_PENDING_LOGINS = 1000


@dataclass
class PendingLogin:
    user_id: str
    state: str
    code_verifier: str
    started_at: float


def build_app(
    session_for: Callable[[str], OAuthSession],
    *,
    login_ttl: float = LOGIN_TTL_SECONDS,
    max_pending: int = MAX_PENDING_LOGINS,
    clock: Callable[[], float] = time.monotonic,
) -> Starlette:
    """Build the login app around a per-user session factory.

    Logins not completed within login_ttl seconds are forgotten, and at most
    max_pending are held at once (oldest dropped first).
    """
    pending: dict[str, PendingLogin] = {}

    def remember(login_id: str, login_attempt: PendingLogin) -> None:
        now = clock()
        for key in [k for k, v in pending.items() if now - v.started_at >= login_ttl]:
            del pending[key]
        while len(pending) >= max_pending:
            del pending[next(iter(pending))]
        pending[login_id] = login_attempt

    async def login(request: Request) -> Response:
        user_id = request.query_params.get("user")
        if not user_id:
            return Response("Missing user", status_code=400)

        caller_key = request.client.host if request.client else "unknown"
        state = generate_csrf_token()
        try:
            attempt = await session_for(user_id).begin_authorization(caller_key, state=state)
        except RateLimitExceededError:
            return Response("Too many login attempts", status_code=429)
        except OAuth2Error as e:
            logger.error(f"Login failed for {user_id}: {type(e).__name__}: {e}")
            return Response("Login is unavailable", status_code=502)

        login_id = secrets.token_urlsafe(16)
        remember(login_id, PendingLogin(user_id, state, attempt.code_verifier, clock()))

        response = RedirectResponse(attempt.url, status_code=302)
        response.set_cookie(LOGIN_COOKIE, login_id, httponly=True, samesite="lax")
        return response

    async def callback(request: Request) -> Response:
        login_id = request.cookies.get(LOGIN_COOKIE, "")
        login_attempt = pending.pop(login_id, None)
        code = request.query_params.get("code")
        state = request.query_params.get("state", "")

        if login_attempt is not None and clock() - login_attempt.started_at >= login_ttl:
            login_attempt = None
        if login_attempt is None or not code:
            return Response("Unknown login attempt", status_code=400)
        if not verify_csrf_token(state, login_attempt.state):
            return Response("State mismatch", status_code=400)

        session = session_for(login_attempt.user_id)
        try:
            await session.complete_authorization(code, login_attempt.code_verifier)
        except TokenExchangeError as e:
            logger.error(f"Token exchange failed: {e} (status {e.status_code})")
            return Response("Login failed", status_code=502)

        response = JSONResponse(
            {"user": login_attempt.user_id, "state": session.state.value}
        )
        response.delete_cookie(LOGIN_COOKIE)
        return response

    async def logout(request: Request) -> Response:
        user_id = request.query_params.get("user")
        if not user_id:
            return Response("Missing user", status_code=400)
        await session_for(user_id).logout()
        return JSONResponse({"user": user_id, "state": "unauthenticated"})

    return Starlette(
        routes=[
            Route("/login", login, methods=["GET"]),
            Route("/oauth/callback", callback, methods=["GET"]),
            Route("/logout", logout, methods=["GET"]),
        ]
    )


def session_factory(
    identity: ClientIdentity, config: OAuthServerConfig, store: TokenStore
) -> Callable[[str], OAuthSession]:
    """Return a factory that keeps one session per user id."""
    sessions: dict[str, OAuthSession] = {}

    def session_for(user_id: str) -> OAuthSession:
        if user_id not in sessions:
            sessions[user_id] = OAuthSession(identity, store, user_id, config)
        return sessions[user_id]

    return session_for


def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    key_pair = None
    if not os.getenv("DPOP_OAUTH_PRIVATE_JWK_PATH"):
        logger.warning("No DPoP key configured, generating an ephemeral key")
        key_pair = DPoPKeyPair.generate()

    identity = ClientIdentity.from_env(key_pair=key_pair)
    config = OAuthServerConfig.from_env()
    store = FileTokenStore(os.getenv("DPOP_OAUTH_TOKEN_DIR", "~/.dpop-oauth/tokens"))

    app = build_app(session_factory(identity, config, store))
    uvicorn.run(app, host="127.0.0.1", port=int(os.getenv("PORT", "8080")))


if __name__ == "__main__":
    main()
