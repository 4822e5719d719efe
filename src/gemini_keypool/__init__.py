# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Gemini API key pool with health tracking and automatic rotation.

The provider module (litellm + httpx) is not imported here; import
gemini_keypool.providers.gemini_provider explicitly when making real calls.
"""

import logging

from .core.config import PoolSettings
from .core.errors import (
    ClassifiedError,
    CredentialValidationError,
    InvokeError,
    KeyPoolError,
    NoCredentialsError,
    classify_error,
    mask_credential,
)
from .core.types import ErrorClass, ValidationReason
from .pool import CredentialPool, HealthRecord, HealthStatus
from .storage import EnvFileStore, JsonFileStore, MemoryStore, open_store

lib_logger = logging.getLogger("gemini_keypool")
if not lib_logger.handlers:
    lib_logger.addHandler(logging.NullHandler())

__all__ = [
    "ClassifiedError",
    "CredentialPool",
    "CredentialValidationError",
    "EnvFileStore",
    "ErrorClass",
    "HealthRecord",
    "HealthStatus",
    "InvokeError",
    "JsonFileStore",
    "KeyPoolError",
    "MemoryStore",
    "NoCredentialsError",
    "PoolSettings",
    "ValidationReason",
    "classify_error",
    "mask_credential",
    "open_store",
]
