"""Blob storage for the two shared documents.

The core treats persistence as an opaque key-value store holding whole JSON
documents. Discipline is "read whole, mutate whole, write whole"; there are
no partial writes.

Keys:

    questTree     ← QuestGraph snapshot
    permissions   ← PermissionPolicy snapshot

Two implementations are provided:

    Storage       : one JSON file per key under a base directory.
    MemoryStorage : a dict; several contexts may share one instance to act
                     as clients of the same world.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from quest_manager.errors import StorageError

logger = logging.getLogger(__name__)

QUEST_TREE_KEY = "questTree"
PERMISSIONS_KEY = "permissions"


class BlobStore(Protocol):
    def load(self, key: str) -> dict[str, Any] | None: ...

    def save(self, key: str, blob: dict[str, Any]) -> None: ...


class Storage:
    """JSON file storage.

    Directory layout:

        {base}/
          questTree.json
          permissions.json
    """

    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    def _path(self, key: str) -> Path:
        return self._base / f"{key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {path}") from e

    def save(self, key: str, blob: dict[str, Any]) -> None:
        path = self._path(key)
        try:
            path.write_text(json.dumps(blob, indent=2))
        except OSError as e:
            raise StorageError(f"Cannot write {path}") from e
        logger.debug("saved %s (%d bytes)", key, path.stat().st_size)


class MemoryStorage:
    """In-process blob store. Documents are deep-copied in and out."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._blobs: dict[str, dict[str, Any]] = copy.deepcopy(initial or {})

    def load(self, key: str) -> dict[str, Any] | None:
        blob = self._blobs.get(key)
        return copy.deepcopy(blob) if blob is not None else None

    def save(self, key: str, blob: dict[str, Any]) -> None:
        self._blobs[key] = copy.deepcopy(blob)


# ---------------------------------------------------------------------------
# Export files
# ---------------------------------------------------------------------------

def write_export(path: Path, data: dict[str, Any]) -> None:
    path.write_text(json.dumps(data, indent=2))


def read_export(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())
