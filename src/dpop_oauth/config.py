"""Client and authorization server configuration.

``ClientIdentity`` describes this client (its metadata URL, redirect URI,
scopes and DPoP key). ``OAuthServerConfig`` fixes the authorization server's
endpoint set and the allow-list used by the SSRF gate. Both can be loaded from
``DPOP_OAUTH_*`` environment variables.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from dpop_oauth.models.errors import ConfigurationError
from dpop_oauth.models.security import RateLimitOptions
from dpop_oauth.primitives.dpop import DPoPKeyPair

ENV_PREFIX = "DPOP_OAUTH_"

DEFAULT_SCOPES = ("openid", "profile")
DEFAULT_PAR_ENDPOINT = "https://bsky.social/oauth/par"
DEFAULT_AUTHORIZATION_ENDPOINT = "https://bsky.social/oauth/authorize"
DEFAULT_TOKEN_ENDPOINT = "https://bsky.social/oauth/token"


def _split_list(value: str) -> list[str]:
    return [item for item in value.replace(",", " ").split() if item]


@dataclass(frozen=True)
class ClientIdentity:
    """Immutable identity of this OAuth client.

    ``client_id`` is the HTTPS URL of the client metadata document. The key
    pair is used only to sign DPoP proofs.
    """

    client_id: str
    redirect_uri: str
    signing_key_pair: DPoPKeyPair
    scopes: tuple[str, ...] = field(default=DEFAULT_SCOPES)

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ConfigurationError(
                "client_id is required and should be the URL of the client metadata document"
            )
        if not self.redirect_uri:
            raise ConfigurationError("redirect_uri is required")
        if self.signing_key_pair is None:
            raise ConfigurationError("signing_key_pair is required")

        # Ordered set: keep first occurrence of each scope
        scopes = tuple(dict.fromkeys(s for s in self.scopes if s))
        if not scopes:
            raise ConfigurationError("at least one scope is required")
        object.__setattr__(self, "scopes", scopes)

    @property
    def scope(self) -> str:
        """Space-delimited scope string for requests."""
        return " ".join(self.scopes)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        key_pair: DPoPKeyPair | None = None,
    ) -> ClientIdentity:
        """Load the identity from DPOP_OAUTH_* variables.

        The DPoP key comes from ``key_pair`` if given, otherwise from the
        private JWK file named by DPOP_OAUTH_PRIVATE_JWK_PATH.
        """
        env = os.environ if environ is None else environ

        if key_pair is None:
            jwk_path = env.get(f"{ENV_PREFIX}PRIVATE_JWK_PATH")
            if not jwk_path:
                raise ConfigurationError(
                    f"{ENV_PREFIX}PRIVATE_JWK_PATH is required when no key pair is given"
                )
            key_pair = load_key_pair(jwk_path)

        scopes = _split_list(env.get(f"{ENV_PREFIX}SCOPES", ""))
        return cls(
            client_id=env.get(f"{ENV_PREFIX}CLIENT_ID", ""),
            redirect_uri=env.get(f"{ENV_PREFIX}REDIRECT_URI", ""),
            signing_key_pair=key_pair,
            scopes=tuple(scopes) or DEFAULT_SCOPES,
        )


def load_key_pair(path: str | Path) -> DPoPKeyPair:
    """Read a private EC JWK from a JSON file."""
    try:
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            jwk = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot load DPoP key from {path}: {e}") from e
    return DPoPKeyPair.from_private_jwk(jwk)


class OAuthServerConfig(BaseModel):
    """Fixed endpoint set of the authorization server.

    ``allowed_hosts`` bounds every outbound request the client makes; it
    defaults to the hosts of the three endpoints. Add resource server hosts
    here to call protected resources on other hosts.
    """

    par_endpoint: str = DEFAULT_PAR_ENDPOINT
    authorization_endpoint: str = DEFAULT_AUTHORIZATION_ENDPOINT
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    allowed_hosts: list[str] = []

    rate_limit_max_requests: int = 10
    rate_limit_window_ms: int = 60_000
    timeout: float = 30.0

    @field_validator("par_endpoint", "authorization_endpoint", "token_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        parsed = urlsplit(v)
        if parsed.scheme != "https" or not parsed.hostname:
            raise ValueError(f"endpoint must be an absolute HTTPS URL: {v}")
        return v

    @field_validator("rate_limit_max_requests", "rate_limit_window_ms")
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate limit values must be at least 1")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @model_validator(mode="after")
    def default_allowed_hosts(self) -> OAuthServerConfig:
        if not self.allowed_hosts:
            hosts = (
                urlsplit(url).hostname
                for url in (
                    self.par_endpoint,
                    self.authorization_endpoint,
                    self.token_endpoint,
                )
            )
            self.allowed_hosts = list(dict.fromkeys(h for h in hosts if h))
        return self

    @property
    def rate_limit(self) -> RateLimitOptions:
        return RateLimitOptions(
            max_requests=self.rate_limit_max_requests,
            window_ms=self.rate_limit_window_ms,
        )

    def with_allowed_hosts(self, hosts: Iterable[str]) -> OAuthServerConfig:
        """Return a copy whose allow-list also includes ``hosts``."""
        merged = list(dict.fromkeys([*self.allowed_hosts, *hosts]))
        return self.model_copy(update={"allowed_hosts": merged})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OAuthServerConfig:
        """Load the server configuration from DPOP_OAUTH_* variables."""
        env = os.environ if environ is None else environ

        values: dict[str, object] = {}
        for name in (
            "par_endpoint",
            "authorization_endpoint",
            "token_endpoint",
            "rate_limit_max_requests",
            "rate_limit_window_ms",
            "timeout",
        ):
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw:
                values[name] = raw

        hosts = env.get(f"{ENV_PREFIX}ALLOWED_HOSTS")
        if hosts:
            values["allowed_hosts"] = _split_list(hosts)

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid authorization server configuration: {e}") from e
