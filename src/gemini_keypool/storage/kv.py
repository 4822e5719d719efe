# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Durable key-value stores for the pool.

The pool only needs get/set of string values under two fixed names, so any
backend with those two operations will do:

- MemoryStore: process-local dict (tests, throwaway sessions)
- JsonFileStore: one JSON document on disk, replaced atomically on write
- EnvFileStore: values kept in a .env file through python-dotenv
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from dotenv import get_key, set_key

from ..core.config import PoolSettings

lib_logger = logging.getLogger("gemini_keypool")


class KeyValueStore(Protocol):
    """Anything with string get/set semantics."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """
    Store backed by a single JSON object on disk.

    Reads go through an in-memory copy loaded on first access. Each write
    rewrites the whole document to a temp file in the same directory and
    swaps it in with os.replace, so a crash never leaves half a file behind.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data

        self._data = {}
        if not self.file_path.is_file():
            return self._data

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                content = f.read()
            loaded = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            lib_logger.warning(
                f"Corrupted store file {self.file_path}: {e}. Starting fresh."
            )
            return self._data
        except OSError as e:
            lib_logger.warning(
                f"Cannot read store file {self.file_path}: {e}. Using empty state."
            )
            return self._data

        if not isinstance(loaded, dict):
            lib_logger.warning(
                f"Store file {self.file_path} does not hold a JSON object. Starting fresh."
            )
            return self._data

        self._data = {k: v for k, v in loaded.items() if isinstance(v, str)}
        return self._data

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._write(data)
        self._data = data

    def _write(self, data: Dict[str, str]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.file_path.name}.", dir=str(self.file_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        lib_logger.debug(f"Wrote {len(data)} value(s) to {self.file_path}")


class EnvFileStore:
    """
    Store backed by a .env file, using python-dotenv's get_key/set_key.

    Values are always single-quoted; set_key escapes backslashes and quotes
    itself, so they are passed through untouched.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        if not self.file_path.is_file():
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self.file_path.touch()

    def get(self, key: str) -> Optional[str]:
        return get_key(str(self.file_path), key)

    def set(self, key: str, value: str) -> None:
        set_key(str(self.file_path), key, value, quote_mode="always")


def open_store(settings: PoolSettings) -> KeyValueStore:
    """Build the store selected by the settings."""
    path = settings.resolved_store_path
    if settings.store_backend == "env":
        return EnvFileStore(path)
    return JsonFileStore(path)
