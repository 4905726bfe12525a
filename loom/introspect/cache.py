from __future__ import annotations

import copy
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from ._internal.config import get_cache_ttl_seconds
from ._internal.errors import introspection_failed_error
from ._internal.model_rules import model_name_from_id
from .probe import check_canceled
from .types import ModelCapabilities

_WAIT_POLL_SECONDS = 0.05


def cache_key(model_id: str) -> str:
    return model_name_from_id(model_id).strip().lower()


@dataclass(slots=True)
class _Entry:
    snapshot: ModelCapabilities
    stored_at: float


@dataclass(slots=True)
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: ModelCapabilities | None = None
    error: BaseException | None = None


class CapabilityCache:
    """
    Per-model snapshot cache with a freshness window and in-flight deduplication.

    Concurrent callers asking for the same key share one build; other keys
    build in parallel. The registry lock is only held to look up or publish an
    entry, never while a build runs. Callers always receive their own deep copy.
    Low-confidence snapshots are stored like any other result, so an unreachable
    runner is not contacted again inside the window.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ttl = get_cache_ttl_seconds() if ttl_seconds is None else float(ttl_seconds)
        if ttl < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, _InFlight] = {}

    def _fresh(self, entry: _Entry, now: float) -> bool:
        return now - entry.stored_at < self.ttl_seconds

    def get_or_build(
        self,
        model_id: str,
        build: Callable[[], ModelCapabilities],
        *,
        cancel: threading.Event | None = None,
    ) -> ModelCapabilities:
        key = cache_key(model_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not self._fresh(entry, self._clock()):
                logger.debug("capability cache entry for {} is stale", key)
                del self._entries[key]
                entry = None
            if entry is not None:
                snapshot = entry.snapshot
            else:
                existing = self._inflight.get(key)
                owner = existing is None
                flight = _InFlight() if existing is None else existing
                if owner:
                    self._inflight[key] = flight

        if entry is not None:
            logger.debug("capability cache hit for {}", key)
            return copy.deepcopy(snapshot)
        if owner:
            return self._build(key, flight, build)
        logger.debug("waiting on in-flight capability build for {}", key)
        return self._wait(flight, cancel)

    def _build(self, key: str, flight: _InFlight, build: Callable[[], ModelCapabilities]) -> ModelCapabilities:
        snapshot: ModelCapabilities | None = None
        try:
            snapshot = build()
        except Exception as e:
            flight.error = e
            raise
        except BaseException:
            flight.error = introspection_failed_error("capability build interrupted")
            raise
        finally:
            with self._lock:
                if snapshot is not None:
                    self._entries[key] = _Entry(snapshot=copy.deepcopy(snapshot), stored_at=self._clock())
                self._inflight.pop(key, None)
            flight.result = snapshot
            flight.done.set()
        return snapshot

    def _wait(self, flight: _InFlight, cancel: threading.Event | None) -> ModelCapabilities:
        check_canceled(cancel)
        while not flight.done.wait(_WAIT_POLL_SECONDS):
            check_canceled(cancel)
        if flight.error is not None:
            raise flight.error
        if flight.result is None:
            raise introspection_failed_error("in-flight capability build produced no result")
        return copy.deepcopy(flight.result)

    def peek(self, model_id: str) -> ModelCapabilities | None:
        """Fresh cached snapshot for `model_id`, or `None`; never builds."""
        key = cache_key(model_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._fresh(entry, self._clock()):
                return None
            snapshot = entry.snapshot
        return copy.deepcopy(snapshot)

    def invalidate(self, model_id: str) -> bool:
        with self._lock:
            return self._entries.pop(cache_key(model_id), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
