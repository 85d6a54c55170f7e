from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable

from jobsync.core.config import get_settings
from jobsync.services.records import SourceResult


@dataclass(slots=True)
class SourceStatus:
    source: str
    success: bool
    created: int
    updated: int
    skipped: int
    errors: list[str]
    finished_at: datetime
    recorded_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "finished_at": self.finished_at,
        }


class SyncState:
    """Process-scoped sync state: one lock per source and the last outcome per source.

    Only the event loop thread touches this object. Status entries are last-write-wins per source
    and are evicted ``ttl_seconds`` after they were recorded, checked on every read and write.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._status: dict[str, SourceStatus] = {}

    def source_lock(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source] = lock
        return lock

    def is_running(self, source: str) -> bool:
        lock = self._locks.get(source)
        return lock is not None and lock.locked()

    def record_result(self, result: SourceResult, *, finished_at: datetime | None = None) -> None:
        self._evict()
        self._status[result.source] = SourceStatus(
            source=result.source,
            success=result.success,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            errors=list(result.errors),
            finished_at=finished_at or datetime.now(timezone.utc),
            recorded_at=self._clock(),
        )

    def source_status(self) -> dict[str, SourceStatus]:
        self._evict()
        return dict(self._status)

    def _evict(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        expired = [source for source, status in self._status.items() if status.recorded_at <= cutoff]
        for source in expired:
            del self._status[source]


@lru_cache
def get_sync_state() -> SyncState:
    return SyncState(ttl_seconds=get_settings().source_status_ttl_seconds)
