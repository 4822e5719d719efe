# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime settings for the pool and the Gemini provider.

Environment variables:
    KEYPOOL_ROTATION_DELAY: Seconds to wait before a rotated retry (default: 0.5)
    KEYPOOL_STORE_PATH: Path of the store file (default: ./keypool.json)
    KEYPOOL_STORE_BACKEND: "json" or "env" (default: json)
    GEMINI_MODEL: Default model id (default: gemini-3-flash-preview)
    GEMINI_API_BASE: REST base URL (default: https://generativelanguage.googleapis.com/v1beta)
    GEMINI_TIMEOUT: Request timeout in seconds (default: 60)

The apps call python-dotenv's load_dotenv() before from_env(), so values from
the .env file next to the data directory are picked up too.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import (
    DEFAULT_GEMINI_API_BASE,
    DEFAULT_GEMINI_MODEL,
    DEFAULT_GEMINI_TIMEOUT,
    DEFAULT_ROTATION_DELAY,
    DEFAULT_STORE_FILENAME,
    MAX_ROTATION_DELAY,
    MIN_ROTATION_DELAY,
)
from ..utils.paths import get_data_file


def _env_int(name: str, default: int) -> int:
    """Parse an integer from environment variable with fallback to default."""
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Parse a float from environment variable with fallback to default."""
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        return default


def clamp_rotation_delay(delay: float) -> float:
    """Keep the retry pause short but never zero."""
    return min(MAX_ROTATION_DELAY, max(MIN_ROTATION_DELAY, delay))


@dataclass
class PoolSettings:
    """
    Complete configuration for a pool session.

    Loaded by from_env() and passed to the stores, the pool and the provider.
    """

    rotation_delay: float = DEFAULT_ROTATION_DELAY
    store_path: Optional[Path] = None  # None = <data dir>/keypool.json
    store_backend: str = "json"  # "json" or "env"
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_api_base: str = DEFAULT_GEMINI_API_BASE
    gemini_timeout: int = DEFAULT_GEMINI_TIMEOUT

    def __post_init__(self):
        self.rotation_delay = clamp_rotation_delay(self.rotation_delay)
        if self.store_backend not in ("json", "env"):
            self.store_backend = "json"

    @property
    def resolved_store_path(self) -> Path:
        if self.store_path is not None:
            return Path(self.store_path)
        if self.store_backend == "env":
            return get_data_file(".env")
        return get_data_file(DEFAULT_STORE_FILENAME)

    @classmethod
    def from_env(cls) -> "PoolSettings":
        store_path = os.environ.get("KEYPOOL_STORE_PATH")
        return cls(
            rotation_delay=_env_float("KEYPOOL_ROTATION_DELAY", DEFAULT_ROTATION_DELAY),
            store_path=Path(store_path) if store_path else None,
            store_backend=os.environ.get("KEYPOOL_STORE_BACKEND", "json").strip().lower(),
            gemini_model=os.environ.get("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            gemini_api_base=os.environ.get(
                "GEMINI_API_BASE", DEFAULT_GEMINI_API_BASE
            ).rstrip("/"),
            gemini_timeout=max(1, _env_int("GEMINI_TIMEOUT", DEFAULT_GEMINI_TIMEOUT)),
        )
