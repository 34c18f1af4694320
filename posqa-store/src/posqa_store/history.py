"""Bounded history of comprehensive summaries.

Each run's summary is stored under ``automated-test-results-<epoch-ms>``.
After every save the oldest entries are evicted so that at most ``cap``
remain.
"""

from __future__ import annotations

import logging
from typing import Callable

from posqa_core.errors import StoreCorruptionError
from posqa_core.types.common import Timestamp
from posqa_core.types.report import ComprehensiveSummary, HistoryEntry

from posqa_store.records import read_json, write_json
from posqa_store.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "automated-test-results-"
DEFAULT_CAP = 10


class ResultHistory:
    """Bounded, timestamp-keyed history of comprehensive summaries.

    Example:
        >>> history = ResultHistory(MemoryStore(), cap=10)
        >>> key = await history.save(summary)
        >>> latest = await history.load()
    """

    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = DEFAULT_PREFIX,
        cap: int = DEFAULT_CAP,
        clock: Callable[[], Timestamp] = Timestamp.now,
    ) -> None:
        """Initialize the history.

        Args:
            store: Keyed store holding the entries.
            prefix: Key prefix of history entries.
            cap: Maximum number of entries kept.
            clock: Source of save timestamps (for testing).
        """
        if cap < 1:
            raise ValueError(f"History cap must be at least 1: {cap}")
        self._store = store
        self._prefix = prefix
        self._cap = cap
        self._clock = clock

    @property
    def cap(self) -> int:
        """Return the maximum number of entries kept."""
        return self._cap

    def key_for(self, unix_ms: int) -> str:
        """Return the store key for a save time in epoch milliseconds."""
        return f"{self._prefix}{unix_ms}"

    def _stamp(self, key: str) -> int | None:
        suffix = key[len(self._prefix):]
        return int(suffix) if suffix.isdigit() else None

    async def _stamped(self) -> list[tuple[int, str]]:
        stamped = []
        for key in await self._store.keys(self._prefix):
            stamp = self._stamp(key)
            if stamp is None:
                logger.debug("Ignoring non-history key: %s", key)
                continue
            stamped.append((stamp, key))
        return sorted(stamped)

    async def keys(self) -> list[str]:
        """Return history keys, oldest first (ordered by their timestamp)."""
        return [key for _, key in await self._stamped()]

    async def save(self, summary: ComprehensiveSummary) -> str:
        """Store a summary and evict the oldest entries beyond the cap.

        Returns:
            The key the summary was stored under.
        """
        unix_ms = self._clock().unix_ms
        existing = set(await self.keys())
        while self.key_for(unix_ms) in existing:
            unix_ms += 1
        key = self.key_for(unix_ms)
        await write_json(self._store, key, summary.to_dict())
        logger.info("Saved test results under %s", key)
        await self.prune()
        return key

    async def prune(self) -> list[str]:
        """Delete the oldest entries beyond the cap.

        Returns:
            The deleted keys.
        """
        keys = await self.keys()
        evicted = keys[: max(0, len(keys) - self._cap)]
        for key in evicted:
            await self._store.delete(key)
        if evicted:
            logger.debug("Evicted %d history entries", len(evicted))
        return evicted

    async def load(self, key: str | None = None) -> ComprehensiveSummary | None:
        """Load one summary, the most recent one by default.

        Raises:
            StoreCorruptionError: If the stored entry cannot be decoded.
        """
        if key is None:
            keys = await self.keys()
            if not keys:
                return None
            key = keys[-1]
        data = await read_json(self._store, key)
        if data is None:
            return None
        try:
            return ComprehensiveSummary.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreCorruptionError(key, f"invalid summary: {exc}") from exc

    async def entries(self, limit: int = 10) -> list[HistoryEntry]:
        """Return up to ``limit`` entries, most recent first.

        Corrupted entries are skipped with a warning.
        """
        result: list[HistoryEntry] = []
        for stamp, key in reversed(await self._stamped()):
            if len(result) >= limit:
                break
            try:
                summary = await self.load(key)
            except StoreCorruptionError as exc:
                logger.warning("Skipping history entry: %s", exc)
                continue
            if summary is None:
                continue
            result.append(HistoryEntry(key=key, timestamp=Timestamp.from_ms(stamp), summary=summary))
        return result

    async def clear(self) -> int:
        """Delete every history entry and return how many were removed."""
        keys = await self.keys()
        for key in keys:
            await self._store.delete(key)
        return len(keys)
