"""Conflict detection and resolution strategies for synchronized records.

Three strategies are supported:

    LAST_WRITE_WINS: keep the record with the strictly later timestamp.
    MERGE: field-level union; each side contributes the fields it updated,
        fields updated on both sides come from the preferred side.
    MANUAL: keep both records as a pending Conflict for a human to resolve.

All functions are pure: they never mutate their inputs.

Example:
    >>> local = VersionedRecord("ing-1", {"stock": 10}, Timestamp(0), frozenset({"stock"}))
    >>> remote = VersionedRecord("ing-1", {"name": "X", "price": 55}, Timestamp(1),
    ...                          frozenset({"name", "price"}))
    >>> merge_records(local, remote).data
    {'stock': 10, 'name': 'X', 'price': 55}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from posqa_core.errors import ConflictError
from posqa_core.types.common import Timestamp


class ConflictStrategy(Enum):
    """Strategy used to resolve a data conflict."""

    LAST_WRITE_WINS = "last_write_wins"
    MERGE = "merge"
    MANUAL = "manual"


class Side(Enum):
    """Side of a conflict."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class VersionedRecord:
    """A record as seen by one side of a synchronization.

    Attributes:
        record_id: Identifier shared by both sides.
        data: Field values.
        timestamp: Time of the last write.
        updated_fields: Fields changed by the last write.
        version: Version the write was based on, if tracked.
    """

    record_id: str
    data: Mapping[str, Any]
    timestamp: Timestamp
    updated_fields: frozenset[str] = frozenset()
    version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.record_id,
            "data": dict(self.data),
            "timestamp": self.timestamp.to_iso(),
            "updated_fields": sorted(self.updated_fields),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VersionedRecord:
        """Create a record from its dictionary form."""
        return cls(
            record_id=data["id"],
            data=dict(data.get("data", {})),
            timestamp=Timestamp.from_iso(data["timestamp"]),
            updated_fields=frozenset(data.get("updated_fields", [])),
            version=data.get("version"),
        )


@dataclass(frozen=True)
class Conflict:
    """A detected conflict between a local and a remote record.

    Attributes:
        local: The local record.
        remote: The remote record.
        fields: Fields whose values differ.
        detected_at: Time the conflict was detected.
    """

    local: VersionedRecord
    remote: VersionedRecord
    fields: tuple[str, ...]
    detected_at: Timestamp = field(default_factory=Timestamp.now)

    @property
    def record_id(self) -> str:
        """Return the identifier of the conflicting record."""
        return self.local.record_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.record_id,
            "local": self.local.to_dict(),
            "remote": self.remote.to_dict(),
            "fields": list(self.fields),
            "detected_at": self.detected_at.to_iso(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Conflict:
        """Create a conflict from its dictionary form."""
        return cls(
            local=VersionedRecord.from_dict(data["local"]),
            remote=VersionedRecord.from_dict(data["remote"]),
            fields=tuple(data.get("fields", [])),
            detected_at=Timestamp.from_iso(data["detected_at"]),
        )


@dataclass(frozen=True)
class Resolution:
    """Outcome of applying a strategy to a pair of records.

    Attributes:
        strategy: The strategy applied.
        record: The resolved record, or None when left for manual resolution.
        conflict: The pending conflict for MANUAL resolution.
        winner: Which side won for LAST_WRITE_WINS.
    """

    strategy: ConflictStrategy
    record: VersionedRecord | None = None
    conflict: Conflict | None = None
    winner: Side | None = None

    @property
    def resolved(self) -> bool:
        """Return True if a record was produced."""
        return self.record is not None

    def require_record(self) -> VersionedRecord:
        """Return the resolved record.

        Raises:
            ConflictError: If the conflict was left for manual resolution.
        """
        if self.record is None:
            record_id = self.conflict.record_id if self.conflict is not None else "?"
            raise ConflictError(f"Conflict on '{record_id}' requires manual resolution")
        return self.record


def differing_fields(local: VersionedRecord, remote: VersionedRecord) -> tuple[str, ...]:
    """Return the fields whose values differ between two records."""
    names = list(local.data) + [k for k in remote.data if k not in local.data]
    return tuple(k for k in names if local.data.get(k) != remote.data.get(k))


def detect_conflict(local: VersionedRecord, remote: VersionedRecord) -> Conflict | None:
    """Detect a concurrent modification of the same record version.

    Two records conflict when they share an identifier and a version but
    carry different values.

    Returns:
        The conflict, or None when the records do not conflict.
    """
    if local.record_id != remote.record_id or local.version != remote.version:
        return None
    fields = differing_fields(local, remote)
    if not fields:
        return None
    return Conflict(local=local, remote=remote, fields=fields)


def resolve_last_write_wins(local: VersionedRecord, remote: VersionedRecord) -> VersionedRecord:
    """Keep the record with the strictly later timestamp (local on a tie)."""
    if remote.timestamp > local.timestamp:
        return remote
    return local


def merge_records(
    local: VersionedRecord,
    remote: VersionedRecord,
    prefer: Side = Side.REMOTE,
) -> VersionedRecord:
    """Merge two records field by field.

    A field updated on only one side is taken from that side. A field
    updated on both sides, or on neither, is taken from ``prefer`` when it
    has a value there.

    Args:
        local: The local record.
        remote: The remote record.
        prefer: Side that wins fields both sides touched.

    Returns:
        The merged record, stamped with the later timestamp.
    """
    preferred, other = (remote, local) if prefer == Side.REMOTE else (local, remote)
    merged: dict[str, Any] = {}
    for name in list(local.data) + [k for k in remote.data if k not in local.data]:
        in_local = name in local.updated_fields
        in_remote = name in remote.updated_fields
        if in_local and not in_remote:
            source = local
        elif in_remote and not in_local:
            source = remote
        else:
            source = preferred if name in preferred.data else other
        if name not in source.data:
            source = remote if source is local else local
        merged[name] = source.data[name]

    versions = [v for v in (local.version, remote.version) if v is not None]
    return VersionedRecord(
        record_id=local.record_id,
        data=merged,
        timestamp=max(local.timestamp, remote.timestamp),
        updated_fields=local.updated_fields | remote.updated_fields,
        version=max(versions) if versions else None,
    )


def resolve(
    local: VersionedRecord,
    remote: VersionedRecord,
    strategy: ConflictStrategy,
    prefer: Side = Side.REMOTE,
) -> Resolution:
    """Resolve two records with an explicit strategy.

    MANUAL resolution never picks a record: it returns the pending conflict,
    which callers persist for a human to resolve.
    """
    if strategy == ConflictStrategy.LAST_WRITE_WINS:
        record = resolve_last_write_wins(local, remote)
        winner = Side.REMOTE if record is remote else Side.LOCAL
        return Resolution(strategy=strategy, record=record, winner=winner)
    if strategy == ConflictStrategy.MERGE:
        return Resolution(strategy=strategy, record=merge_records(local, remote, prefer))
    conflict = Conflict(local=local, remote=remote, fields=differing_fields(local, remote))
    return Resolution(strategy=strategy, conflict=conflict)
