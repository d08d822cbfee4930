from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from dpop_oauth.config import ClientIdentity, OAuthServerConfig
from dpop_oauth.primitives.dpop import DPoPKeyPair
from dpop_oauth.services.rate_limit import InMemoryRateLimiter
from dpop_oauth.services.security import UrlValidator
from dpop_oauth.session import OAuthSession
from dpop_oauth.storage.memory import InMemoryTokenStore

CLIENT_ID = "https://app.example.com/client-metadata.json"
REDIRECT_URI = "https://app.example.com/oauth/callback"
RESOURCE_HOST = "pds.example.com"
REQUEST_URI = "urn:ietf:params:oauth:request_uri:req-abc123"


class FakeClock:
    """Settable clock for expiry and iat tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAuthServer:
    """Authorization server and resource server behind httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.par_response = (201, {"request_uri": REQUEST_URI, "expires_in": 60})
        self.token_responses = {
            "authorization_code": (
                200,
                {
                    "access_token": "AT1",
                    "refresh_token": "RT1",
                    "expires_in": 3600,
                    "token_type": "DPoP",
                    "scope": "openid profile",
                },
            ),
            "refresh_token": (
                200,
                {
                    "access_token": "AT2",
                    "refresh_token": "RT2",
                    "expires_in": 3600,
                    "token_type": "DPoP",
                },
            ),
        }
        self.resource_response = (200, {"handle": "alice.example.com"})

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/par":
            return self.respond(*self.par_response)
        if path == "/oauth/token":
            grant_type = self.form(request)["grant_type"]
            return self.respond(*self.token_responses[grant_type])
        return self.respond(*self.resource_response)

    @staticmethod
    def respond(status_code: int, body: Any) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status_code, text=body)
        return httpx.Response(status_code, json=body)

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture(scope="session")
def key_pair() -> DPoPKeyPair:
    return DPoPKeyPair.generate()


@pytest.fixture
def identity(key_pair: DPoPKeyPair) -> ClientIdentity:
    return ClientIdentity(
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        signing_key_pair=key_pair,
        scopes=("openid", "profile"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolved_hosts() -> list[str]:
    """Hostnames passed to the fake resolver, in order."""
    return []


@pytest.fixture
def resolver(resolved_hosts: list[str]):
    async def resolve(host: str) -> list[str]:
        resolved_hosts.append(host)
        return ["93.184.216.34"]

    return resolve


@pytest.fixture
def server_config() -> OAuthServerConfig:
    return OAuthServerConfig().with_allowed_hosts([RESOURCE_HOST])


@pytest.fixture
def auth_server() -> FakeAuthServer:
    return FakeAuthServer()


@pytest.fixture
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
async def http_client(auth_server: FakeAuthServer):
    client = httpx.AsyncClient(transport=httpx.MockTransport(auth_server.handle))
    yield client
    await client.aclose()


@pytest.fixture
def make_session(
    identity: ClientIdentity,
    store: InMemoryTokenStore,
    server_config: OAuthServerConfig,
    http_client: httpx.AsyncClient,
    resolver: Any,
    clock: FakeClock,
):
    def factory(user_id: str = "user1", **overrides: Any) -> OAuthSession:
        kwargs: dict[str, Any] = {
            "rate_limiter": InMemoryRateLimiter(),
            "url_validator": UrlValidator(server_config.allowed_hosts, resolver=resolver),
            "http_client": http_client,
            "clock": clock,
        }
        kwargs.update(overrides)
        return OAuthSession(identity, store, user_id, server_config, **kwargs)

    return factory
