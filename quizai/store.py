from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import LedgerIOFailure

_LOCKS: Dict[str, threading.RLock] = defaultdict(threading.RLock)


def path_lock(path: str) -> threading.RLock:
    return _LOCKS[os.path.abspath(path)]


def dump_json(data: Any, indent: Optional[int] = 2) -> str:
    return json.dumps(data, indent=indent, ensure_ascii=False) + "\n"


def atomic_write_json(path: str, data: Any, *, indent: Optional[int] = 2) -> None:
    """
    Replace `path` with `data` as JSON. The value is serialized before any
    file is touched, so an unserializable value leaves the previous file
    intact. The temp file sits next to the target and is removed on failure.
    """
    payload = dump_json(data, indent)
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    with path_lock(path):
        fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.remove(tmp_path)
            raise


@dataclass
class StoreResult:
    ok: bool
    value: Any = None
    error: Optional[LedgerIOFailure] = None

    @classmethod
    def success(cls, value: Any = None) -> "StoreResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, message: str) -> "StoreResult":
        return cls(ok=False, error=LedgerIOFailure(message))


class KeyValueStore:
    """
    Named JSON slots. `read`/`write` report problems through StoreResult and
    never raise, so a broken store can degrade a feature but not a request.
    A missing key reads as ok with value None.
    """

    def read(self, key: str) -> StoreResult:
        raise NotImplementedError

    def write(self, key: str, value: Any) -> StoreResult:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()

    def read(self, key: str) -> StoreResult:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return StoreResult.success(None)
        try:
            return StoreResult.success(json.loads(raw))
        except ValueError as e:
            return StoreResult.failure(f"malformed value for {key}: {e}")

    def write(self, key: str, value: Any) -> StoreResult:
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            return StoreResult.failure(f"unserializable value for {key}: {e}")
        with self._lock:
            self._data[key] = raw
        return StoreResult.success(value)

    def put_raw(self, key: str, raw: str) -> None:
        with self._lock:
            self._data[key] = raw


def _safe_key(key: str) -> str:
    key = key.strip() or "default"
    key = re.sub(r"[^a-zA-Z0-9._-]+", "_", key)
    return key[:128]


class JsonFileStore(KeyValueStore):
    """One `<key>.json` file per slot under `base_dir`, written atomically."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = base_dir

    def path_for(self, key: str) -> str:
        return os.path.join(self.base_dir, f"{_safe_key(key)}.json")

    def read(self, key: str) -> StoreResult:
        path = self.path_for(key)
        with path_lock(path):
            if not os.path.exists(path):
                return StoreResult.success(None)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return StoreResult.success(json.load(f))
            except (OSError, ValueError) as e:
                return StoreResult.failure(f"read {path}: {e}")

    def write(self, key: str, value: Any) -> StoreResult:
        path = self.path_for(key)
        try:
            atomic_write_json(path, value, indent=None)
        except (OSError, TypeError, ValueError) as e:
            return StoreResult.failure(f"write {path}: {e}")
        return StoreResult.success(value)
