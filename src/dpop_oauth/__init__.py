"""Async OAuth 2.0 client core with PAR, PKCE and DPoP token binding."""

from dpop_oauth.config import ClientIdentity, OAuthServerConfig
from dpop_oauth.models.errors import (
    AuthorizationError,
    ConfigurationError,
    OAuth2Error,
    PKCEError,
    ProofGenerationError,
    RateLimitExceededError,
    ResourceRequestError,
    SecurityRejection,
    StorageError,
    TokenError,
    TokenExchangeError,
    TokenMissingError,
    TokenRefreshError,
    UnsafeEndpointError,
)
from dpop_oauth.models.flow import AuthorizationAttempt
from dpop_oauth.models.security import RateLimitOptions
from dpop_oauth.models.tokens import TokenRecord
from dpop_oauth.primitives.dpop import DPoPKeyPair, DPoPSigner
from dpop_oauth.primitives.pkce import PKCEManager
from dpop_oauth.services.rate_limit import InMemoryRateLimiter, RateLimiter
from dpop_oauth.services.security import UrlValidator, sanitize_string
from dpop_oauth.session import OAuthSession, SessionState
from dpop_oauth.storage import FileTokenStore, InMemoryTokenStore, TokenStore

__all__ = [
    "AuthorizationAttempt",
    "AuthorizationError",
    "ClientIdentity",
    "ConfigurationError",
    "DPoPKeyPair",
    "DPoPSigner",
    "FileTokenStore",
    "InMemoryRateLimiter",
    "InMemoryTokenStore",
    "OAuth2Error",
    "OAuthServerConfig",
    "OAuthSession",
    "PKCEError",
    "PKCEManager",
    "ProofGenerationError",
    "RateLimitExceededError",
    "RateLimitOptions",
    "RateLimiter",
    "ResourceRequestError",
    "SecurityRejection",
    "SessionState",
    "StorageError",
    "TokenError",
    "TokenExchangeError",
    "TokenMissingError",
    "TokenRecord",
    "TokenRefreshError",
    "TokenStore",
    "UnsafeEndpointError",
    "UrlValidator",
    "sanitize_string",
]
