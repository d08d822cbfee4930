"""Tests for the SSRF-safe URL gate."""

import asyncio
import socket
from unittest.mock import AsyncMock, patch

import pytest

from dpop_oauth.services.security import UrlValidator, is_private_ip, resolve_host


def resolver_returning(*addresses: str) -> AsyncMock:
    return AsyncMock(return_value=list(addresses))


class TestIsValidUrl:
    async def test_https_allow_listed_public_host_is_valid(self):
        # Arrange
        validator = UrlValidator(["bsky.social"], resolver=resolver_returning("93.184.216.34"))

        # Act & Assert
        assert await validator.is_valid_url("https://bsky.social/oauth/par")

    async def test_http_scheme_is_rejected(self):
        resolver = resolver_returning("93.184.216.34")
        validator = UrlValidator(["bsky.social"], resolver=resolver)

        assert not await validator.is_valid_url("http://bsky.social/oauth/par")
        resolver.assert_not_awaited()

    async def test_host_outside_allow_list_is_rejected(self):
        resolver = resolver_returning("93.184.216.34")
        validator = UrlValidator(["bsky.social"], resolver=resolver)

        assert not await validator.is_valid_url("https://evil.example.com/oauth/par")
        resolver.assert_not_awaited()

    async def test_allow_list_is_case_insensitive(self):
        validator = UrlValidator(["BSKY.social"], resolver=resolver_returning("93.184.216.34"))

        assert await validator.is_valid_url("https://Bsky.Social/oauth/token")

    @pytest.mark.parametrize(
        "address",
        [
            "10.0.0.5",
            "172.16.4.1",
            "172.31.255.255",
            "192.168.1.1",
            "127.0.0.1",
            "0.0.0.0",
            "fd12:3456:789a::1",
            "fe80::1",
            "::1",
            "::ffff:10.0.0.1",
        ],
    )
    async def test_host_resolving_to_private_address_is_rejected(self, address):
        validator = UrlValidator(["bsky.social"], resolver=resolver_returning(address))

        assert not await validator.is_valid_url("https://bsky.social/oauth/par")

    async def test_any_private_address_among_several_rejects(self):
        validator = UrlValidator(
            ["bsky.social"],
            resolver=resolver_returning("93.184.216.34", "192.168.0.10"),
        )

        assert not await validator.is_valid_url("https://bsky.social/oauth/par")

    async def test_dns_failure_is_not_valid(self):
        resolver = AsyncMock(side_effect=socket.gaierror("Name or service not known"))
        validator = UrlValidator(["bsky.social"], resolver=resolver)

        assert not await validator.is_valid_url("https://bsky.social/oauth/par")

    async def test_empty_resolution_is_not_valid(self):
        validator = UrlValidator(["bsky.social"], resolver=resolver_returning())

        assert not await validator.is_valid_url("https://bsky.social/oauth/par")

    @pytest.mark.parametrize("url", ["", "not a url", "https://", "https://[::1"])
    async def test_malformed_input_returns_false(self, url):
        validator = UrlValidator(["bsky.social"], resolver=resolver_returning("93.184.216.34"))

        assert not await validator.is_valid_url(url)


class TestIsPrivateIp:
    @pytest.mark.parametrize("address", ["8.8.8.8", "172.32.0.1", "2606:4700::1111"])
    def test_public_addresses(self, address):
        assert not is_private_ip(address)

    def test_zone_identifier_is_ignored(self):
        assert is_private_ip("fe80::1%eth0")

    def test_invalid_address_raises(self):
        with pytest.raises(ValueError):
            is_private_ip("not-an-ip")


class TestResolveHost:
    async def test_returns_addresses_from_getaddrinfo(self):
        # Arrange
        infos = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 0)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("2606:2800::1", 0, 0, 0)),
        ]

        # Act
        loop = asyncio.get_running_loop()
        with patch.object(loop, "getaddrinfo", new=AsyncMock(return_value=infos)):
            addresses = await resolve_host("example.com")

        # Assert
        assert addresses == ["93.184.216.34", "2606:2800::1"]
