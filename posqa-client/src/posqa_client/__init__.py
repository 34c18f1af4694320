"""HTTP client for the POS backend API.

This package provides the single shared client used by every posqa test
module to call the spreadsheet-style POS API.

Example usage:

    from posqa_client import ApiConfig, PosApiClient

    async with PosApiClient(ApiConfig(api_url=url, timeout=5.0)) as api:
        response = await api.call("getBootstrapData")
        if response.is_success:
            print(response.data)
"""

from posqa_client.client import RETRYABLE_ERRORS, PosApiClient, encode_params
from posqa_client.config import ApiConfig
from posqa_client.models import ApiResponse, ResponseStatus

__all__ = [
    "ApiConfig",
    "ApiResponse",
    "PosApiClient",
    "RETRYABLE_ERRORS",
    "ResponseStatus",
    "encode_params",
]
