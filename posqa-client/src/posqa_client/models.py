"""Pydantic models for the POS backend API.

Every action answers with a JSON envelope of the form
``{"status": "success" | "error", "data": ..., "message": ...}``. Actions are
free to add further top-level fields, which are kept as extras.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class ResponseStatus(str, Enum):
    """Status reported by the API envelope.

    Attributes:
        SUCCESS: The action completed.
        ERROR: The action was rejected; ``message`` explains why.
    """

    SUCCESS = "success"
    ERROR = "error"


class ApiResponse(BaseModel):
    """Response envelope of one API action.

    Attributes:
        status: Success or error.
        data: Action-specific payload.
        message: Human-readable message, typically set on errors.
    """

    model_config = ConfigDict(extra="allow")

    status: ResponseStatus
    data: Any = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        """Return True if the action completed."""
        return self.status == ResponseStatus.SUCCESS

    def lookup(self, name: str, default: Any = None) -> Any:
        """Look up a key in ``data`` (when it is a mapping) or in the extras."""
        if isinstance(self.data, dict) and name in self.data:
            return self.data[name]
        extra = self.model_extra or {}
        return extra.get(name, default)

    def has_fields(self, *names: str) -> bool:
        """Return True if every name is present in ``data``."""
        if not isinstance(self.data, dict):
            return False
        return all(name in self.data for name in names)
