"""キー・バリュー型の永続ストア (chrome.storage.local 相当)."""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from tracklens.watchers.logger import logger

ACTIVITY_KEY = "activity"
TRACKING_KEY = "tracking"
CACHED_ANALYSIS_KEY = "cachedAnalysis"


class StorageError(RuntimeError):
    """永続ストアの読み書きに失敗した."""


class KeyValueStore(Protocol):
    def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    def set(self, items: Mapping[str, Any]) -> None: ...


class MemoryStore:
    """プロセス内のみのストア (テスト・一時利用向け)."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = threading.Lock()

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    def set(self, items: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.update(copy.deepcopy(dict(items)))


class JsonFileStore:
    """1つのJSONファイルに全レコードを保存するストア.

    書き込みは一時ファイル経由で置き換えるため、途中で落ちても壊れない.
    キー間のトランザクション保証はない.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            msg = f"failed to read {self.path}: {e}"
            raise StorageError(msg) from e
        if not isinstance(data, dict):
            msg = f"unexpected document in {self.path}"
            raise StorageError(msg)
        return data

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            data = self._read()
        return {k: data[k] for k in keys if k in data}

    def _quarantine(self, error: StorageError) -> None:
        """読めないファイルを .corrupt に退避する (次の書き込みで作り直す)."""
        corrupt_path = self.path.with_suffix(".corrupt")
        logger.error("%s; moving it to %s", error, corrupt_path)
        try:
            self.path.replace(corrupt_path)
        except OSError:
            logger.exception("Could not move %s aside", self.path)

    def set(self, items: Mapping[str, Any]) -> None:
        with self._lock:
            try:
                data = self._read()
            except StorageError as e:
                self._quarantine(e)
                data = {}
            data.update(items)
            temp_path = self.path.with_suffix(".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with temp_path.open("w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False)
                temp_path.replace(self.path)
            except (OSError, TypeError, ValueError) as e:
                msg = f"failed to write {self.path}: {e}"
                raise StorageError(msg) from e
