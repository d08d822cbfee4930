"""DPoP (Demonstrating Proof of Possession) proof generation.

Implements the client side of RFC 9449: every outbound request to the token
endpoint or a protected resource carries a fresh proof JWT that binds the HTTP
method and target URI to the client's EC P-256 key pair. The public key is
embedded in the proof header so the server can verify the signature and bind
the access token to the key's thumbprint (RFC 7638).

Proofs are never cached or reused; each carries a new ``jti`` and ``iat``.
"""

from __future__ import annotations

import base64
import hashlib
import json
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

from dpop_oauth.models.errors import ConfigurationError, ProofGenerationError

DPOP_ALGORITHM = "ES256"
DPOP_TYPE = "dpop+jwt"

_P256_COORDINATE_SIZE = 32


def _b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def public_jwk_from_key(public_key: ec.EllipticCurvePublicKey) -> dict[str, str]:
    """Export a P-256 public key as a minimal JWK (kty, crv, x, y)."""
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": _b64url_encode(numbers.x.to_bytes(_P256_COORDINATE_SIZE, "big")),
        "y": _b64url_encode(numbers.y.to_bytes(_P256_COORDINATE_SIZE, "big")),
    }


def compute_jwk_thumbprint(jwk: dict[str, Any]) -> str:
    """Compute the RFC 7638 thumbprint of an EC public JWK."""
    if jwk.get("kty") != "EC":
        raise ValueError(f"unsupported key type: {jwk.get('kty')}")

    canonical = json.dumps(
        {"crv": jwk["crv"], "kty": jwk["kty"], "x": jwk["x"], "y": jwk["y"]},
        separators=(",", ":"),
        sort_keys=True,
    )
    return _b64url_encode(hashlib.sha256(canonical.encode("utf-8")).digest())


def target_uri(url: str) -> str:
    """Return the htu value for a URL: scheme, host and path only.

    RFC 9449 Section 4.2: the HTTP target URI without query and fragment.
    Userinfo is dropped so credentials embedded in a URL are never signed.
    """
    parsed = urlsplit(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"not an absolute HTTP URL: {url!r}")

    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    if parsed.port is not None:
        host = f"{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}{parsed.path or '/'}"


@dataclass(frozen=True)
class DPoPKeyPair:
    """EC P-256 key pair used exclusively for DPoP proofs."""

    private_key: ec.EllipticCurvePrivateKey

    def __post_init__(self) -> None:
        if not isinstance(self.private_key, ec.EllipticCurvePrivateKey):
            raise ConfigurationError("DPoP key must be an EC private key")
        if not isinstance(self.private_key.curve, ec.SECP256R1):
            raise ConfigurationError(
                f"DPoP key must use P-256, got {self.private_key.curve.name}"
            )

    @classmethod
    def generate(cls) -> DPoPKeyPair:
        """Generate a new random P-256 key pair."""
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def from_private_jwk(cls, jwk: dict[str, Any] | str) -> DPoPKeyPair:
        """Load a key pair from a private EC JWK (must contain ``d``).

        Raises:
            ConfigurationError: If the JWK is malformed or holds no private part
        """
        try:
            key = ECAlgorithm.from_jwk(jwk)
        except (jwt.PyJWTError, ValueError, KeyError, TypeError) as e:
            raise ConfigurationError(f"Invalid DPoP private JWK: {e}") from e

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ConfigurationError("DPoP JWK does not contain a private key")
        return cls(key)

    @property
    def public_jwk(self) -> dict[str, str]:
        return public_jwk_from_key(self.private_key.public_key())

    @property
    def thumbprint(self) -> str:
        return compute_jwk_thumbprint(self.public_jwk)


class DPoPSigner:
    """Builds and signs DPoP proof JWTs.

    Args:
        clock: Returns the current Unix time; injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def sign(
        self,
        method: str,
        url: str,
        private_key: ec.EllipticCurvePrivateKey,
        public_jwk: dict[str, Any],
    ) -> str:
        """Create a signed proof for a single HTTP request.

        Args:
            method: HTTP method of the request the proof accompanies
            url: Full target URL; query and fragment are stripped for htu
            private_key: EC P-256 private key used to sign
            public_jwk: Public half of the key, embedded in the header

        Returns:
            Compact JWS string for the ``DPoP`` header

        Raises:
            ProofGenerationError: If the key is unusable or signing fails
        """
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(
            private_key.curve, ec.SECP256R1
        ):
            raise ProofGenerationError(f"{DPOP_ALGORITHM} requires an EC P-256 key")

        try:
            headers = {"typ": DPOP_TYPE, "alg": DPOP_ALGORITHM, "jwk": dict(public_jwk)}
            payload = {
                "htu": target_uri(url),
                "htm": method.upper(),
                "jti": str(uuid.uuid4()),
                "iat": int(self._clock()),
            }
            return jwt.encode(
                payload, private_key, algorithm=DPOP_ALGORITHM, headers=headers
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise ProofGenerationError(f"Failed to generate DPoP proof: {e}") from e

    def sign_with(self, key_pair: DPoPKeyPair, method: str, url: str) -> str:
        """Sign a proof with both halves taken from a DPoPKeyPair."""
        return self.sign(method, url, key_pair.private_key, key_pair.public_jwk)
