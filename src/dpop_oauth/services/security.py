"""Security utilities guarding outbound requests and rendered values.

Provides SSRF-safe URL validation, string sanitization for logs and markup,
CSRF token helpers, and a structural JWT check.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import secrets
import socket
from collections.abc import Awaitable, Callable, Iterable
from urllib.parse import urlsplit

import jwt

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[list[str]]]

_PRIVATE_IPV4_NETWORKS = tuple(
    ipaddress.IPv4Network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",  # Loopback
        "0.0.0.0/8",  # "This" network
    )
)

_PRIVATE_IPV6_NETWORKS = tuple(
    ipaddress.IPv6Network(cidr)
    for cidr in (
        "fd00::/8",  # Unique local
        "fe80::/10",  # Link-local
        "::1/128",
    )
)

_HTML_ESCAPES = str.maketrans(
    {
        "<": "&lt;",
        ">": "&gt;",
        "&": "&amp;",
        "'": "&#39;",
        '"': "&quot;",
    }
)


async def resolve_host(host: str) -> list[str]:
    """Resolve a hostname to all of its IPv4 and IPv6 addresses."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_private_ip(address: str) -> bool:
    """Check whether an address is private, loopback or link-local.

    Raises:
        ValueError: If the address is not a valid IP address
    """
    # Strip IPv6 zone identifiers such as fe80::1%eth0
    ip = ipaddress.ip_address(address.split("%", 1)[0])

    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped
        else:
            return any(ip in network for network in _PRIVATE_IPV6_NETWORKS)

    return any(ip in network for network in _PRIVATE_IPV4_NETWORKS)


class UrlValidator:
    """Admissibility check for outbound request targets.

    A URL passes only if it uses HTTPS, its host is on the allow-list, and
    every address the host resolves to is public. All failures collapse to
    ``False`` so callers cannot probe the network through error details.

    Args:
        allowed_hosts: Hostnames that outbound requests may target
        resolver: Async hostname resolver; defaults to the event loop's
            getaddrinfo
    """

    def __init__(self, allowed_hosts: Iterable[str], resolver: Resolver | None = None):
        self.allowed_hosts = frozenset(host.lower() for host in allowed_hosts)
        self._resolver = resolver if resolver is not None else resolve_host

    async def is_valid_url(self, url: str) -> bool:
        try:
            parsed = urlsplit(url)

            if parsed.scheme != "https":
                logger.debug(f"Rejected URL with scheme {parsed.scheme!r}")
                return False

            host = (parsed.hostname or "").lower()
            if host not in self.allowed_hosts:
                logger.debug(f"Rejected URL host {host!r}: not in allow-list")
                return False

            addresses = await self._resolver(host)
            if not addresses:
                logger.debug(f"Rejected URL host {host!r}: no addresses resolved")
                return False

            for address in addresses:
                if is_private_ip(address):
                    logger.debug(
                        f"Rejected URL host {host!r}: resolves to private {address}"
                    )
                    return False

            return True

        except Exception as e:
            logger.debug(f"Rejected URL during validation: {e}")
            return False


def sanitize_string(value: str) -> str:
    """Escape the HTML-significant characters in a value meant for display.

    Only for values destined for rendering or logging; never apply this to
    tokens or other opaque values sent back to a server.
    """
    return value.translate(_HTML_ESCAPES)


def is_valid_jwt(token: str) -> bool:
    """Check that a string is a structurally well-formed JWT.

    The signature is not verified.
    """
    try:
        jwt.decode(token, options={"verify_signature": False})
        return True
    except jwt.PyJWTError:
        return False


def generate_csrf_token() -> str:
    """Generate a cryptographically secure CSRF token (64 hex characters)."""
    return secrets.token_hex(32)


def verify_csrf_token(token: str, expected: str) -> bool:
    """Compare a CSRF token against the session's copy in constant time."""
    return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
