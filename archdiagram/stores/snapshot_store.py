"""Persistence collaborator for graphs and diagram models."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote, unquote

from ..errors import PersistenceFailure
from ..logging import get_logger
from ..models import ArchitectureGraph, DiagramModel
from .codec import diagram_from_dict, diagram_to_dict, graph_from_dict, graph_to_dict

_logger = get_logger("stores.snapshots")


class KeyValueStore(Protocol):
    """Minimal get/put/delete contract used for persisted results."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def put(self, key: str, value: Dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


class InMemoryStore:
    """Process-local store; values are copied through JSON to mimic persistence."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        encoded = json.dumps(value, sort_keys=True)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))


class JsonDirectoryStore:
    """Stores one JSON document per key under a directory."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return json.loads(text)

    def put(self, key: str, value: Dict[str, Any]) -> None:
        path = self._path(key)
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(value, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(path)

    def delete(self, key: str) -> bool:
        with self._lock:
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                return False
        return True

    def keys(self, prefix: str = "") -> List[str]:
        if not self._root.exists():
            return []
        keys = (unquote(path.name[: -len(".json")]) for path in self._root.glob("*.json"))
        return sorted(key for key in keys if key.startswith(prefix))


class SnapshotRepository:
    """Typed access to graphs keyed by (project, commit) and diagrams keyed by project."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def graph_key(project_id: str, commit: str) -> str:
        return f"graph/{project_id}/{commit}"

    @staticmethod
    def diagram_key(project_id: str) -> str:
        return f"diagram/{project_id}"

    def get_graph(self, project_id: str, commit: str) -> Optional[ArchitectureGraph]:
        key = self.graph_key(project_id, commit)
        try:
            payload = self._store.get(key)
            return graph_from_dict(payload) if payload is not None else None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailure(f"Failed to load graph '{key}': {exc}") from exc

    def put_graph(self, graph: ArchitectureGraph) -> None:
        key = self.graph_key(graph.project_id, graph.commit)
        try:
            self._store.put(key, graph_to_dict(graph))
        except (OSError, ValueError, TypeError) as exc:
            raise PersistenceFailure(f"Failed to store graph '{key}': {exc}") from exc
        _logger.debug("Stored graph %s", key)

    def delete_graph(self, project_id: str, commit: str) -> bool:
        key = self.graph_key(project_id, commit)
        try:
            return self._store.delete(key)
        except OSError as exc:
            raise PersistenceFailure(f"Failed to delete graph '{key}': {exc}") from exc

    def get_diagram(self, project_id: str) -> Optional[DiagramModel]:
        key = self.diagram_key(project_id)
        try:
            payload = self._store.get(key)
            return diagram_from_dict(payload) if payload is not None else None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailure(f"Failed to load diagram '{key}': {exc}") from exc

    def put_diagram(self, model: DiagramModel) -> None:
        key = self.diagram_key(model.project_id)
        try:
            self._store.put(key, diagram_to_dict(model))
        except (OSError, ValueError, TypeError) as exc:
            raise PersistenceFailure(f"Failed to store diagram '{key}': {exc}") from exc
        _logger.debug("Stored diagram %s (revision %d)", key, model.revision)

    def delete_diagram(self, project_id: str) -> bool:
        key = self.diagram_key(project_id)
        try:
            return self._store.delete(key)
        except OSError as exc:
            raise PersistenceFailure(f"Failed to delete diagram '{key}': {exc}") from exc

    def list_commits(self, project_id: str) -> List[str]:
        prefix = f"graph/{project_id}/"
        try:
            return [key[len(prefix) :] for key in self._store.keys(prefix)]
        except OSError as exc:
            raise PersistenceFailure(f"Failed to list graphs for '{project_id}': {exc}") from exc


__all__ = [
    "InMemoryStore",
    "JsonDirectoryStore",
    "KeyValueStore",
    "SnapshotRepository",
]
