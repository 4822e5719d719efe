# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .kv import EnvFileStore, JsonFileStore, KeyValueStore, MemoryStore, open_store

__all__ = [
    "EnvFileStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "open_store",
]
