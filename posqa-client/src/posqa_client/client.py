"""Async HTTP client for the POS backend API.

Every action is a GET request against one configured endpoint, with the
action name and its parameters carried in the query string. This client is
shared by all test modules; timeouts and retries are injected through
ApiConfig.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import socket
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from posqa_core.backoff import SleepFunc
from posqa_core.errors import (
    ApiConnectionError,
    ApiHttpError,
    ApiResponseError,
    ApiTimeoutError,
    ConfigurationError,
    DnsResolutionError,
)

from posqa_client.config import ApiConfig
from posqa_client.models import ApiResponse

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ApiTimeoutError, ApiConnectionError)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
)


def encode_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Serialize action parameters for the query string.

    None values are dropped, booleans become ``true``/``false`` and
    containers are JSON encoded.
    """
    encoded: dict[str, str] = {}
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        elif isinstance(value, (dict, list, tuple)):
            encoded[name] = json.dumps(value, separators=(",", ":"))
        else:
            encoded[name] = str(value)
    return encoded


def _is_dns_failure(exc: BaseException) -> bool:
    """Return True if a connection error was caused by name resolution."""
    cause: BaseException | None = exc
    while cause is not None:
        if isinstance(cause, socket.gaierror):
            return True
        cause = cause.__cause__ or cause.__context__
    text = str(exc).lower()
    return any(marker in text for marker in _DNS_MARKERS)


class PosApiClient:
    """Async client for the POS backend API.

    Example:
        >>> config = ApiConfig(api_url="https://pos.example.com/exec", timeout=5.0)
        >>> async with PosApiClient(config) as api:
        ...     response = await api.call("searchIngredients", query="flour")
        ...     print(response.data)
    """

    def __init__(
        self,
        config: ApiConfig,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the API client.

        Args:
            config: Endpoint, timeout and retry settings.
            client: Optional httpx client (for testing).
            sleep: Coroutine used between retries (for testing).
        """
        self._config = config
        self._retry = dataclasses.replace(config.retry, retry_on=RETRYABLE_ERRORS)
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    async def __aenter__(self) -> PosApiClient:
        """Async context manager entry."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout,
                headers={"Accept": "application/json", **self._config.headers},
            )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def config(self) -> ApiConfig:
        """Return the client configuration."""
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with PosApiClient(...) as api:'")
        return self._client

    async def call(self, action: str, **params: Any) -> ApiResponse:
        """Invoke one API action.

        Args:
            action: Action name (e.g., "addPurchase").
            **params: Action parameters, serialized into the query string.

        Returns:
            The parsed response envelope.

        Raises:
            ConfigurationError: If no API URL is configured. Never retried.
            ApiTimeoutError: If every attempt timed out.
            DnsResolutionError: If the host name cannot be resolved.
            ApiConnectionError: If the server cannot be reached.
            ApiHttpError: If the server answered with a non-success status.
            ApiResponseError: If the body is not a valid response envelope.
        """
        if not self._config.configured:
            raise ConfigurationError("API URL not configured")

        query = {"action": action, **encode_params(params)}

        async def attempt() -> ApiResponse:
            return await self._request(query)

        return await self._retry.call(attempt, sleep=self._sleep)

    async def _request(self, query: dict[str, str]) -> ApiResponse:
        """Perform a single GET request and parse the envelope."""
        client = self._get_client()
        logger.debug("GET %s action=%s", self._config.api_url, query["action"])
        try:
            response = await client.get(
                self._config.api_url,
                params=query,
                headers={"Accept": "application/json"},
                timeout=self._config.timeout,
            )
        except httpx.TimeoutException as exc:
            raise ApiTimeoutError(self._config.timeout_ms) from exc
        except httpx.TransportError as exc:
            if _is_dns_failure(exc):
                raise DnsResolutionError(f"Unable to resolve API host: {exc}") from exc
            raise ApiConnectionError(f"Connection failed: {exc}") from exc

        if not response.is_success:
            raise ApiHttpError(response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise ApiResponseError(f"Response is not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise ApiResponseError(f"Response is not a JSON object: {type(body).__name__}")

        try:
            return ApiResponse.model_validate(body)
        except ValidationError as exc:
            raise ApiResponseError(f"Invalid response envelope: {exc}") from exc
