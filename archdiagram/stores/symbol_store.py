"""Content-addressed cache of parsed source units."""

from __future__ import annotations

import json
import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from ..logging import get_logger
from ..models import SourceUnit
from .codec import unit_from_dict, unit_to_dict

_CACHE_VERSION = 1

_logger = get_logger("stores.symbols")


@dataclass
class StoreStats:
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    evictions: int = 0


class SymbolStore:
    """Thread-safe read-through LRU cache of SourceUnits.

    Concurrent ``get_or_parse`` calls for the same key share one in-flight
    loader; the others block on its future. Failed loads are not cached.
    """

    def __init__(self, capacity: int = 4096, path: Path | None = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self._capacity = capacity
        self._path = path
        self._entries: "OrderedDict[str, SourceUnit]" = OrderedDict()
        self._inflight: Dict[str, Future[SourceUnit]] = {}
        self._lock = threading.Lock()
        self._dirty = False
        self.stats = StoreStats()
        if self._path is not None:
            self._load(self._path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get_or_parse(self, key: str, loader: Callable[[], SourceUnit]) -> SourceUnit:
        with self._lock:
            unit = self._entries.get(key)
            if unit is not None:
                self._entries.move_to_end(key)
                self.stats.hits += 1
                return unit
            joined = self._inflight.get(key)
            if joined is None:
                future: Future[SourceUnit] = Future()
                self._inflight[key] = future
                self.stats.misses += 1
            else:
                self.stats.coalesced += 1

        if joined is not None:
            return joined.result()

        try:
            unit = loader()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise
        with self._lock:
            self._inflight.pop(key, None)
            self._insert(key, unit)
        future.set_result(unit)
        return unit

    def peek(self, key: str) -> Optional[SourceUnit]:
        """Return a cached unit without loading it or touching recency."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, unit: SourceUnit) -> None:
        with self._lock:
            self._insert(key, unit)

    def invalidate(self, keys: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
            if removed:
                self._dirty = True
        if removed:
            _logger.debug("Invalidated %d cached unit(s)", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dirty = True

    def persist(self) -> None:
        with self._lock:
            if not self._dirty or self._path is None:
                return
            payload = {
                "version": _CACHE_VERSION,
                "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "entries": {key: unit_to_dict(unit) for key, unit in self._entries.items()},
            }
            self._dirty = False
            path = self._path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    # ------------------------------------------------------------------
    # Internal helpers

    def _insert(self, key: str, unit: SourceUnit) -> None:
        self._entries[key] = unit
        self._entries.move_to_end(key)
        self._dirty = True
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            _logger.debug("Evicted %s from symbol store", evicted)

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            _logger.warning("Ignoring unreadable symbol cache %s: %s", path, exc)
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        for key, raw in entries.items():
            if not isinstance(key, str):
                continue
            unit = unit_from_dict(raw)
            if unit is not None:
                self._insert(key, unit)
        self._dirty = False


__all__ = ["StoreStats", "SymbolStore"]
