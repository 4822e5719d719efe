# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .health import HealthRecord, HealthStatus
from .manager import CredentialPool
from .selection import next_healthy, validate_credential

__all__ = [
    "CredentialPool",
    "HealthRecord",
    "HealthStatus",
    "next_healthy",
    "validate_credential",
]
