"""Tests for the exception hierarchy and user-facing messages."""

import pytest

from posqa_core.errors import (
    NETWORK_UNAVAILABLE_MESSAGE,
    ApiConnectionError,
    ApiError,
    ApiHttpError,
    ApiTimeoutError,
    ConfigurationError,
    DnsResolutionError,
    PosqaError,
    StoreCorruptionError,
    StoreError,
    user_message,
)


class TestHierarchy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError("x"),
            ApiTimeoutError(100),
            DnsResolutionError("x"),
            ApiHttpError(500),
            StoreCorruptionError("k", "bad json"),
        ],
    )
    def test_all_derive_from_base(self, exc: Exception) -> None:
        """Every error is a PosqaError."""
        assert isinstance(exc, PosqaError)

    def test_dns_is_connection_error(self) -> None:
        """DNS failures are connection failures."""
        assert issubclass(DnsResolutionError, ApiConnectionError)
        assert issubclass(ApiConnectionError, ApiError)

    def test_timeout_message(self) -> None:
        """Timeouts name the elapsed budget."""
        exc = ApiTimeoutError(5000)
        assert str(exc) == "Request timeout after 5000ms"
        assert exc.timeout_ms == 5000

    def test_http_error_carries_status(self) -> None:
        """HTTP errors carry the status code."""
        exc = ApiHttpError(503)
        assert exc.status_code == 503
        assert str(exc) == "HTTP error! status: 503"

    def test_corruption_is_store_error(self) -> None:
        """Corruption errors carry the key."""
        exc = StoreCorruptionError("offline_transactions", "not a list")
        assert isinstance(exc, StoreError)
        assert exc.key == "offline_transactions"


class TestUserMessage:
    """Tests for user_message()."""

    def test_network_messages_are_distinct(self) -> None:
        """Timeout, refused, DNS and unknown failures map to distinct strings."""
        messages = {
            user_message(ApiTimeoutError(100)),
            user_message(ApiConnectionError("refused")),
            user_message(DnsResolutionError("nxdomain")),
            user_message(OSError("offline")),
        }
        assert len(messages) == 4

    def test_timeout_message(self) -> None:
        """Timeouts ask the user to retry."""
        assert user_message(ApiTimeoutError(100)) == "The request took too long. Please try again."

    def test_dns_before_connection(self) -> None:
        """The more specific DNS message wins."""
        assert "reach the server" in user_message(DnsResolutionError("x"))

    def test_unknown_error(self) -> None:
        """Unknown errors fall back to the network message."""
        assert user_message(RuntimeError("x")) == NETWORK_UNAVAILABLE_MESSAGE
