"""
Entity store collaborator.

The core persists every collection (properties, sell cycles, matches, ...)
as a whole JSON array under one key: it always loads the full array, mutates
it, and writes the full array back. There is no partial update, locking or
versioning, so two concurrent writers to the same key can lose updates.

Two reference backends:
- InMemoryEntityStore: process-local dict; values are JSON round-tripped on
  every get/set so callers never alias stored state
- JsonFileEntityStore: one ``<key>.json`` file per collection in a directory
"""

import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from ..config import config
from ..errors import StoreError, wrap_store_error

logger = structlog.get_logger(__name__)


@runtime_checkable
class EntityStore(Protocol):
    """Per-collection key -> JSON array persistence."""

    def get(self, key: str) -> list[dict[str, Any]]:
        """Return the full array stored under ``key`` (empty if never set)."""
        ...

    def set(self, key: str, items: list[dict[str, Any]]) -> None:
        """Replace the full array stored under ``key``."""
        ...


class InMemoryEntityStore:
    """Dict-backed store for tests and single-process use."""

    def __init__(self, initial: dict[str, list[dict[str, Any]]] | None = None):
        self._data: dict[str, str] = {}
        for key, items in (initial or {}).items():
            self.set(key, items)

    def get(self, key: str) -> list[dict[str, Any]]:
        raw = self._data.get(key)
        if raw is None:
            return []
        return json.loads(raw)

    def set(self, key: str, items: list[dict[str, Any]]) -> None:
        try:
            self._data[key] = json.dumps(items)
        except (TypeError, ValueError) as e:
            raise wrap_store_error(e, {'key': key}, writing=True) from e

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileEntityStore:
    """
    File-backed store: ``<directory>/<key>.json`` per collection.

    Writes go to a temporary sibling file that is then renamed over the
    target, so a crashed write never leaves a truncated collection.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or '/' in key or '\\' in key or key.startswith('.'):
            raise StoreError(f"Invalid collection key: {key!r}", context={'key': key})
        return self.directory / f"{key}.json"

    def get(self, key: str) -> list[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise wrap_store_error(e, {'key': key, 'path': str(path)}) from e
        if not isinstance(data, list):
            raise wrap_store_error(
                ValueError(f"expected a JSON array, got {type(data).__name__}"),
                {'key': key, 'path': str(path)},
            )
        return data

    def set(self, key: str, items: list[dict[str, Any]]) -> None:
        path = self._path(key)
        tmp = path.with_suffix('.json.tmp')
        try:
            tmp.write_text(json.dumps(items, indent=2), encoding='utf-8')
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise wrap_store_error(e, {'key': key, 'path': str(path)}, writing=True) from e
        logger.debug('json_store.write', key=key, count=len(items))


def create_store(directory: str | Path | None = None) -> EntityStore:
    """
    Build the configured store backend.

    Uses ``directory`` or BROKERAGE_STORE_PATH for a JsonFileEntityStore and
    falls back to an InMemoryEntityStore when neither is set.
    """
    target = directory or config.STORE_PATH
    if target:
        logger.info('entity_store.created', backend='json_file', directory=str(target))
        return JsonFileEntityStore(target)
    logger.info('entity_store.created', backend='in_memory')
    return InMemoryEntityStore()
