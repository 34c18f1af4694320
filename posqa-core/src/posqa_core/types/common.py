"""Common types used across posqa modules.

Type Aliases:
    ModuleKey: Registry key of a test module (e.g., "performance").
    RequirementId: Requirement reference such as "3.1" or "7.4".

Classes:
    Timestamp: Wall-clock timestamp with nanosecond precision.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NewType

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ModuleKey = NewType("ModuleKey", str)
"""Type alias for test module registry keys."""

RequirementId = NewType("RequirementId", str)
"""Type alias for requirement references."""


@dataclass(frozen=True, order=True)
class Timestamp:
    """Wall-clock timestamp stored as nanoseconds since the Unix epoch.

    Timestamps order naturally, so they can be compared directly when
    resolving conflicts or sorting history.

    Attributes:
        unix_ns: Nanoseconds since Unix epoch.

    Example:
        >>> ts = Timestamp.now()
        >>> print(ts.to_iso())
    """

    unix_ns: int

    @classmethod
    def now(cls) -> Timestamp:
        """Create a timestamp for the current time."""
        return cls(unix_ns=time.time_ns())

    @classmethod
    def from_ms(cls, unix_ms: int) -> Timestamp:
        """Create a timestamp from epoch milliseconds."""
        return cls(unix_ns=int(unix_ms) * 1_000_000)

    @classmethod
    def from_datetime(cls, dt: datetime) -> Timestamp:
        """Create a timestamp from a datetime object.

        Args:
            dt: A datetime object to convert. Naive datetimes are assumed to
                be in UTC.

        Returns:
            A new Timestamp corresponding to the given datetime.
        """
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        micros = (dt - _EPOCH) // timedelta(microseconds=1)
        return cls(unix_ns=micros * 1_000)

    @classmethod
    def from_iso(cls, value: str) -> Timestamp:
        """Parse an ISO 8601 string (a trailing "Z" is accepted)."""
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return cls.from_datetime(datetime.fromisoformat(value))

    def to_datetime(self) -> datetime:
        """Convert to a timezone-aware datetime object in UTC."""
        return _EPOCH + timedelta(microseconds=self.unix_ns // 1_000)

    def to_iso(self) -> str:
        """Return the timestamp as an ISO 8601 string in UTC."""
        return self.to_datetime().isoformat().replace("+00:00", "Z")

    @property
    def unix_ms(self) -> int:
        """Return the timestamp as milliseconds since Unix epoch.

        Returns:
            Integer milliseconds (truncated, not rounded).
        """
        return self.unix_ns // 1_000_000

    @property
    def unix_seconds(self) -> float:
        """Return the timestamp as seconds since Unix epoch."""
        return self.unix_ns / 1_000_000_000
