"""Configuration for the POS API client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from posqa_core.backoff import RetryPolicy


@dataclass(frozen=True)
class ApiConfig:
    """Connection settings for the POS backend API.

    Attributes:
        api_url: Endpoint URL of the spreadsheet-style API. Empty means
            unconfigured; every call then fails with a ConfigurationError.
        timeout: Per-request timeout in seconds.
        retry: Retry policy applied to timeouts and connection failures.
        headers: Extra headers sent with every request.
    """

    api_url: str = ""
    timeout: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy.no_retry)
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        """Return True if an API URL is set."""
        return bool(self.api_url.strip())

    @property
    def timeout_ms(self) -> int:
        """Return the request timeout in milliseconds."""
        return int(round(self.timeout * 1000))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ApiConfig:
        """Create a configuration from a mapping.

        Recognized keys are ``api_url``, ``timeout`` (seconds), ``retries``
        (extra attempts after the first), ``retry_delay`` (seconds) and
        ``headers``.
        """
        retries = int(data.get("retries", 0))
        retry = RetryPolicy(
            max_attempts=retries + 1,
            base_delay=float(data.get("retry_delay", 0.5)),
        )
        return cls(
            api_url=str(data.get("api_url") or ""),
            timeout=float(data.get("timeout", 10.0)),
            retry=retry,
            headers=dict(data.get("headers", {})),
        )
