"""TTL snapshot cache with per-building single-flight refresh."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from building_compliance.common.constants import DEFAULT_TTL_SECONDS
from building_compliance.common.errors import AllSourcesFailed
from building_compliance.common.logging import default_logger, log_event, log_warning
from building_compliance.common.models import ComplianceSnapshot
from building_compliance.common.store import JsonStore

FetchSnapshotFn = Callable[[], "ComplianceSnapshot | None"]


@dataclass(frozen=True)
class CacheEntry:
    snapshot: ComplianceSnapshot
    stored_at: float

    def to_dict(self) -> dict:
        return {"stored_at": self.stored_at, "snapshot": self.snapshot.to_dict()}

    @classmethod
    def from_dict(cls, payload: dict) -> "CacheEntry":
        return cls(
            snapshot=ComplianceSnapshot.from_dict(payload["snapshot"]),
            stored_at=float(payload["stored_at"]),
        )


class AggregationCache:
    """Snapshots keyed by building id, refreshed at most once at a time per key.

    Concurrent callers for the same building share one in-flight ``Future``.
    When a refresh yields no snapshot (every source failed) the previous
    snapshot is served marked stale; with nothing cached ``AllSourcesFailed``
    propagates to every waiter.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        stale_while_revalidate: bool = False,
        store_path: Path | None = None,
        clock: Callable[[], float] = time.time,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.stale_while_revalidate = stale_while_revalidate
        self.clock = clock
        self.executor = executor
        self.logger = logger or default_logger()
        self.lock = threading.Lock()
        self.store = JsonStore(store_path) if store_path is not None else None
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, Future] = {}
        self._generations: dict[str, int] = {}
        if self.store is not None:
            for key, payload in self.store.items():
                self._entries[key] = CacheEntry.from_dict(payload)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.stored_at < self.ttl_seconds

    def get_or_fetch(
        self,
        building_id: str,
        fetch_fn: FetchSnapshotFn,
        *,
        force: bool = False,
    ) -> ComplianceSnapshot:
        """Return a fresh snapshot, refreshing through ``fetch_fn`` when needed.

        ``force`` skips the freshness check but still joins a refresh that is
        already running for the same building.
        """
        with self.lock:
            entry = self._entries.get(building_id)
            if entry is not None and not force and self._is_fresh(entry):
                return entry.snapshot
            future = self._inflight.get(building_id)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[building_id] = future
            serve_stale = entry is not None and self.stale_while_revalidate and not force
            generation = self._generations.get(building_id, 0)

        if serve_stale:
            if owner:
                self._start_background(building_id, fetch_fn, future, generation)
            return entry.snapshot.as_stale()

        if owner:
            self._refresh(building_id, fetch_fn, future, generation)
        return future.result()

    def _start_background(
        self, building_id: str, fetch_fn: FetchSnapshotFn, future: Future, generation: int
    ) -> None:
        log_event(
            self.logger,
            "serving expired snapshot while refreshing",
            stage="cache",
            building_id=building_id,
            event="CACHE_REVALIDATE",
            status="stale",
        )
        if self.executor is not None:
            self.executor.submit(self._refresh, building_id, fetch_fn, future, generation)
            return
        thread = threading.Thread(
            target=self._refresh,
            args=(building_id, fetch_fn, future, generation),
            name=f"revalidate-{building_id}",
            daemon=True,
        )
        thread.start()

    def _release(self, building_id: str, future: Future) -> None:
        if self._inflight.get(building_id) is future:
            del self._inflight[building_id]

    def _refresh(
        self, building_id: str, fetch_fn: FetchSnapshotFn, future: Future, generation: int
    ) -> None:
        """Run ``fetch_fn`` and settle ``future``.

        A result gathered across an ``invalidate`` of the same building is
        handed to its waiters but never stored.
        """
        try:
            snapshot = fetch_fn()
        except AllSourcesFailed:
            snapshot = None
        except Exception as exc:
            with self.lock:
                self._release(building_id, future)
            log_warning(
                self.logger,
                "snapshot refresh failed",
                stage="cache",
                building_id=building_id,
                event="REVALIDATE_FAILED",
                status="failed",
                error_code=getattr(exc, "error_code", "UNEXPECTED_ERROR"),
            )
            future.set_exception(exc)
            return

        with self.lock:
            if snapshot is not None:
                if self._generations.get(building_id, 0) == generation:
                    self._put(building_id, snapshot)
                result: ComplianceSnapshot | None = snapshot
            else:
                previous = self._entries.get(building_id)
                result = previous.snapshot.as_stale() if previous is not None else None
            self._release(building_id, future)

        if result is None:
            future.set_exception(AllSourcesFailed(f"every source failed for {building_id} and nothing is cached"))
            return
        if snapshot is None:
            log_warning(
                self.logger,
                "every source failed; serving last known snapshot",
                stage="cache",
                building_id=building_id,
                event="STALE_FALLBACK",
                status="stale",
                error_code=AllSourcesFailed.error_code,
            )
        future.set_result(result)

    def _put(self, building_id: str, snapshot: ComplianceSnapshot) -> None:
        entry = CacheEntry(snapshot=snapshot, stored_at=self.clock())
        self._entries[building_id] = entry
        if self.store is not None:
            self.store.put(building_id, entry.to_dict())

    def invalidate(self, building_id: str) -> bool:
        with self.lock:
            existed = self._entries.pop(building_id, None) is not None
            self._generations[building_id] = self._generations.get(building_id, 0) + 1
            self._inflight.pop(building_id, None)
            if self.store is not None:
                self.store.delete(building_id)
        return existed

    def peek(self, building_id: str) -> ComplianceSnapshot | None:
        with self.lock:
            entry = self._entries.get(building_id)
        return entry.snapshot if entry is not None else None

    def is_fresh(self, building_id: str) -> bool:
        with self.lock:
            entry = self._entries.get(building_id)
            return entry is not None and self._is_fresh(entry)

    def snapshots(self) -> list[ComplianceSnapshot]:
        with self.lock:
            return [self._entries[key].snapshot for key in sorted(self._entries)]
