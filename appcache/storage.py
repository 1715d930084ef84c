"""Persistence of a cache manager's entries to a key-value storage area."""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from pydantic import TypeAdapter

from .cache import CacheManager
from .schemas import CacheEntry
from .settings import settings

logger = logging.getLogger(__name__)

_entry_list = TypeAdapter(List[CacheEntry])


class StorageArea(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class SessionStorage:
    """Storage area that lives as long as the process."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class PersistentStorage:
    """Storage area backed by a directory, one `<key>.json` file per key.

    Writes go to a temporary file first and are moved into place with
    `os.replace`, so readers never see a half-written slot. Keys are plain
    file names; path separators are rejected with `ValueError`.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key or key in (".", "..") or "/" in key or "\\" in key:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(value, encoding="utf-8")
        os.replace(temp_path, path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StorageCache:
    """Saves and restores a `CacheManager` through a `StorageArea`.

    Parameters
    ----------
    storage : StorageArea
        Where the serialized entries live.
    storage_key : str
        Slot name inside the storage area.

    Notes
    -----
    - Save and load failures are logged; the cache keeps working in memory.
    - Several processes sharing one slot are not coordinated. The last
      `save()` wins.
    """

    def __init__(self, storage: StorageArea, storage_key: str = settings.storage_key):
        self.storage = storage
        self.storage_key = storage_key

    def save(self, manager: CacheManager) -> None:
        try:
            payload = _entry_list.dump_json(manager.export_entries()).decode("utf-8")
            self.storage.set_item(self.storage_key, payload)
        except Exception:
            logger.error("Failed to save cache to storage", exc_info=True)
            return
        logger.debug("Cache saved to storage under %s", self.storage_key)

    def load(self, manager: CacheManager) -> None:
        try:
            payload = self.storage.get_item(self.storage_key)
            if not payload:
                return
            entries = _entry_list.validate_json(payload)
        except Exception:
            logger.error("Failed to load cache from storage", exc_info=True)
            return
        manager.import_entries(entries)
        logger.debug("Cache loaded from storage under %s", self.storage_key)

    def clear(self) -> None:
        self.storage.remove_item(self.storage_key)
        logger.debug("Cache cleared from storage under %s", self.storage_key)
