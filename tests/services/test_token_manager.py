"""Tests for token exchange and refresh at the token endpoint.

- Form encoding and DPoP header on every request
- Successful exchange and refresh parsing
- RFC 6749 error responses mapped to the grant's error type
- Malformed bodies and transport failures
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from dpop_oauth.models.errors import TokenExchangeError, TokenRefreshError
from dpop_oauth.models.tokens import RefreshTokenRequest, TokenRequest
from dpop_oauth.services.tokens import OAuth2TokenManager


class TestTokenExchange:
    """Test authorization code to access token exchange."""

    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.code_verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        self.token_request = TokenRequest(
            token_endpoint="https://bsky.social/oauth/token",
            code="auth-code-123",
            code_verifier=self.code_verifier,
            client_id="https://app.example.com/client-metadata.json",
            redirect_uri="https://app.example.com/oauth/callback",
        )

    async def test_successful_token_exchange_with_all_fields(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "access_token": "access-token-xyz",
            "token_type": "DPoP",
            "expires_in": 3600,
            "refresh_token": "refresh-token-abc",
            "scope": "openid profile",
        }
        self.token_manager._http_client.post.return_value = mock_response

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            self.token_request, "proof-jwt"
        )

        # Assert
        assert token_response.access_token == "access-token-xyz"
        assert token_response.token_type == "DPoP"
        assert token_response.expires_in == 3600
        assert token_response.refresh_token == "refresh-token-abc"
        assert token_response.scope == "openid profile"

        self.token_manager._http_client.post.assert_awaited_once()
        call_args = self.token_manager._http_client.post.call_args
        assert call_args[0][0] == "https://bsky.social/oauth/token"

        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "authorization_code",
            "code": "auth-code-123",
            "code_verifier": self.code_verifier,
            "client_id": "https://app.example.com/client-metadata.json",
            "redirect_uri": "https://app.example.com/oauth/callback",
        }

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"
        assert headers["DPoP"] == "proof-jwt"

    async def test_minimal_response_without_refresh_token(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"access_token": "at", "token_type": "DPoP"}
        self.token_manager._http_client.post.return_value = mock_response

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            self.token_request, "proof-jwt"
        )

        # Assert
        record = token_response.to_token_record(now=1000.0)
        assert record.access_token == "at"
        assert record.refresh_token is None
        assert record.expires_at is None

    async def test_bearer_token_type_is_accepted_with_warning(self, caplog):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"access_token": "at", "token_type": "Bearer"}
        self.token_manager._http_client.post.return_value = mock_response

        token_response = await self.token_manager.exchange_code_for_token(
            self.token_request, "proof-jwt"
        )

        assert token_response.token_type == "Bearer"
        assert "Expected token_type DPoP" in caplog.text

    async def test_invalid_grant_error_response(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 400
        mock_response.json.return_value = {
            "error": "invalid_grant",
            "error_description": "Authorization code has expired",
        }
        self.token_manager._http_client.post.return_value = mock_response

        # Act & Assert
        with pytest.raises(TokenExchangeError) as exc_info:
            await self.token_manager.exchange_code_for_token(
                self.token_request, "proof-jwt"
            )

        error = exc_info.value
        assert error.status_code == 400
        assert error.error == "invalid_grant"
        assert error.error_description == "Authorization code has expired"

    async def test_dpop_nonce_error_is_not_retried(self):
        mock_response = MagicMock()
        mock_response.status_code = 400
        mock_response.json.return_value = {"error": "use_dpop_nonce"}
        self.token_manager._http_client.post.return_value = mock_response

        with pytest.raises(TokenExchangeError) as exc_info:
            await self.token_manager.exchange_code_for_token(
                self.token_request, "proof-jwt"
            )

        assert exc_info.value.error == "use_dpop_nonce"
        assert self.token_manager._http_client.post.await_count == 1

    async def test_success_status_with_malformed_body(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"token_type": "DPoP"}
        self.token_manager._http_client.post.return_value = mock_response

        # Act & Assert
        with pytest.raises(TokenExchangeError, match="Invalid token response format"):
            await self.token_manager.exchange_code_for_token(
                self.token_request, "proof-jwt"
            )

    async def test_success_status_with_non_json_body(self):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.side_effect = ValueError("Expecting value")
        self.token_manager._http_client.post.return_value = mock_response

        with pytest.raises(TokenExchangeError, match="Invalid token response format"):
            await self.token_manager.exchange_code_for_token(
                self.token_request, "proof-jwt"
            )

    async def test_transport_failure(self):
        # Arrange
        self.token_manager._http_client.post.side_effect = httpx.ReadTimeout("timed out")

        # Act & Assert
        with pytest.raises(TokenExchangeError, match="authorization_code grant"):
            await self.token_manager.exchange_code_for_token(
                self.token_request, "proof-jwt"
            )


class TestTokenRefresh:
    """Test access token refresh."""

    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.refresh_request = RefreshTokenRequest(
            token_endpoint="https://bsky.social/oauth/token",
            refresh_token="refresh-token-abc",
            client_id="https://app.example.com/client-metadata.json",
        )

    async def test_successful_refresh(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "access_token": "new-access-token",
            "token_type": "DPoP",
            "expires_in": 3600,
            "refresh_token": "new-refresh-token",
        }
        self.token_manager._http_client.post.return_value = mock_response

        # Act
        token_response = await self.token_manager.refresh_access_token(
            self.refresh_request, "refresh-proof"
        )

        # Assert
        assert token_response.access_token == "new-access-token"
        assert token_response.refresh_token == "new-refresh-token"

        call_args = self.token_manager._http_client.post.call_args
        assert call_args[1]["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-token-abc",
            "client_id": "https://app.example.com/client-metadata.json",
        }
        assert call_args[1]["headers"]["DPoP"] == "refresh-proof"

    async def test_refresh_error_raises_refresh_error(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 400
        mock_response.json.return_value = {
            "error": "invalid_grant",
            "error_description": "Refresh token revoked",
        }
        self.token_manager._http_client.post.return_value = mock_response

        # Act & Assert
        with pytest.raises(TokenRefreshError) as exc_info:
            await self.token_manager.refresh_access_token(
                self.refresh_request, "refresh-proof"
            )
        assert exc_info.value.error == "invalid_grant"
        assert not isinstance(exc_info.value, TokenExchangeError)

    async def test_refresh_transport_failure(self):
        self.token_manager._http_client.post.side_effect = httpx.ConnectError("refused")

        with pytest.raises(TokenRefreshError, match="refresh_token grant"):
            await self.token_manager.refresh_access_token(
                self.refresh_request, "refresh-proof"
            )


class TestClientOwnership:
    async def test_close_closes_owned_client(self):
        token_manager = OAuth2TokenManager()
        token_manager._http_client = AsyncMock()

        await token_manager.close()

        token_manager._http_client.aclose.assert_awaited_once()

    async def test_close_leaves_shared_client_open(self):
        shared = AsyncMock()
        token_manager = OAuth2TokenManager(http_client=shared)

        await token_manager.close()

        shared.aclose.assert_not_awaited()
