"""Unit tests for API key authentication module."""

from unittest.mock import patch

import pytest

from gatekeeper.core.auth import parse_api_keys, validate_api_key, verify_api_key
from gatekeeper.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_single_key(self) -> None:
        assert parse_api_keys("my-secret-key") == {"my-secret-key"}

    def test_parse_keys_with_whitespace(self) -> None:
        """Whitespace around keys is trimmed."""
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_inputs_return_empty_set(self, raw) -> None:
        assert parse_api_keys(raw) == set()

    def test_parse_removes_duplicate_keys(self) -> None:
        assert parse_api_keys("key1,key2,key1,key3,key2") == {"key1", "key2", "key3"}


class TestValidateAPIKey:
    """Test core API key validation logic."""

    @patch("gatekeeper.core.auth.settings")
    def test_validate_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        validate_api_key("any-random-key")
        validate_api_key(None)

    @pytest.mark.parametrize("configured", [None, ""])
    @patch("gatekeeper.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings, configured) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = configured

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"
        assert "no valid keys are configured" in exc_info.value.message

    @patch("gatekeeper.core.auth.settings")
    def test_validate_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key-1,valid-key-2"

        validate_api_key("valid-key-1")
        validate_api_key("valid-key-2")

    @patch("gatekeeper.core.auth.settings")
    def test_validate_rejects_invalid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key-1,valid-key-2"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("invalid-key")

        assert exc_info.value.code == "invalid_api_key"

    @pytest.mark.parametrize("provided", [None, ""])
    @patch("gatekeeper.core.auth.settings")
    def test_validate_rejects_missing_key(self, mock_settings, provided) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(provided)

        assert exc_info.value.code == "missing_api_key"

    @patch("gatekeeper.core.auth.settings")
    def test_validate_handles_whitespace_in_configured_keys(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = " key1 , key2 , key3 "

        validate_api_key("key1")
        validate_api_key("key2")

        # Provided keys are compared verbatim
        with pytest.raises(AuthenticationAppError):
            validate_api_key(" key1 ")


class TestVerifyAPIKeyDependency:
    """Test FastAPI dependency for API key verification."""

    @pytest.mark.asyncio
    @patch("gatekeeper.core.auth.settings")
    async def test_verify_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        await verify_api_key(x_api_key=None)

    @pytest.mark.asyncio
    @patch("gatekeeper.core.auth.settings")
    async def test_verify_raises_when_key_invalid(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            await verify_api_key(x_api_key="wrong-key")

        assert exc_info.value.code == "invalid_api_key"

    @pytest.mark.asyncio
    @patch("gatekeeper.core.auth.settings")
    async def test_verify_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "my-valid-key,another-key"

        await verify_api_key(x_api_key="my-valid-key")
        await verify_api_key(x_api_key="another-key")
