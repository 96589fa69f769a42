"""
Persisted key-value stores standing in for browser local/session storage.

函数级注释：
- JsonFileStore：每个键对应目录下的一个 <key>.json 文件，写入时先写临时文件再 os.replace，
  避免半截写入；
- MemoryStore：进程内字典，用于会话级缓存与测试；
- load_json_mapping / save_json_mapping：统一的“读-改-写”辅助函数，
  损坏或非字典内容一律视为空映射，写入失败只记录日志不抛出。
"""
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Any

from models.errors import StorageUnavailable

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore:
    """String-valued key-value store interface."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Session-scoped store kept in memory."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """Durable store writing one file per key under a directory."""

    def __init__(self, directory: str):
        self.logger = logging.getLogger(__name__)
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create store directory {self.directory}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._ensure_dir()
            path = self._path_for(key)
            tmp = path.with_suffix(".json.tmp")
            try:
                tmp.write_text(value, encoding="utf-8")
                os.replace(tmp, path)
            except OSError as e:
                raise StorageUnavailable(f"Cannot write {path}: {e}") from e
            self.logger.debug(f"Store write: {path}")

    def remove(self, key: str) -> None:
        with self._lock:
            path = self._path_for(key)
            try:
                if path.exists():
                    path.unlink()
            except OSError as e:
                raise StorageUnavailable(f"Cannot remove {path}: {e}") from e

    def keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))


def load_json_mapping(store: KeyValueStore, key: str) -> Dict[str, Any]:
    """Load a JSON object from the store; anything unreadable or malformed is an empty mapping."""
    try:
        raw = store.get(key)
    except StorageUnavailable as e:
        logger.warning(f"Failed to read store key {key}: {e}")
        return {}
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Store key {key} is corrupt, treating as empty: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Store key {key} is malformed, treating as empty.")
        return {}
    return data


def save_json_mapping(store: KeyValueStore, key: str, mapping: Dict[str, Any]) -> bool:
    """Persist a mapping; returns False (and logs) when the store rejects the write."""
    try:
        store.set(key, json.dumps(mapping, ensure_ascii=False))
        return True
    except (StorageUnavailable, TypeError, ValueError) as e:
        logger.warning(f"Failed to save store key {key}: {e}")
        return False
