# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Per-key health records.

A record tracks consecutive failures (used for rotation eligibility), the
lifetime attempt count, the last attempt time and the last error message.
Records serialize to the same field names the browser build wrote, so a
health map exported from there loads unchanged.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.constants import UNHEALTHY_FAILURE_THRESHOLD

lib_logger = logging.getLogger("gemini_keypool")


class HealthStatus:
    """Display badge derived from a health record."""

    UNUSED = "unused"
    HEALTHY = "healthy"
    WARNING = "warning"
    FAILED = "failed"


@dataclass
class HealthRecord:
    consecutive_failures: int = 0
    total_calls: int = 0
    last_used_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_healthy(self) -> bool:
        """Eligible as a rotation target."""
        return self.consecutive_failures < UNHEALTHY_FAILURE_THRESHOLD

    @property
    def status(self) -> str:
        if self.total_calls == 0:
            return HealthStatus.UNUSED
        if self.consecutive_failures == 0:
            return HealthStatus.HEALTHY
        if self.consecutive_failures >= UNHEALTHY_FAILURE_THRESHOLD:
            return HealthStatus.FAILED
        return HealthStatus.WARNING

    def copy(self) -> "HealthRecord":
        return replace(self)

    def mark_success(self, now: datetime) -> None:
        self.consecutive_failures = 0
        self.total_calls += 1
        self.last_used_at = now
        self.last_error = None

    def mark_failure(self, now: datetime, message: str) -> None:
        self.consecutive_failures += 1
        self.total_calls += 1
        self.last_used_at = now
        self.last_error = message

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "failures": self.consecutive_failures,
            "lastUsed": _format_timestamp(self.last_used_at),
            "totalCalls": self.total_calls,
        }
        if self.last_error is not None:
            data["lastError"] = self.last_error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthRecord":
        """
        Build a record from stored data.

        Unknown or malformed fields fall back to zero values instead of
        failing the whole load.
        """
        last_error = data.get("lastError")
        return cls(
            consecutive_failures=_non_negative_int(data.get("failures")),
            total_calls=_non_negative_int(data.get("totalCalls")),
            last_used_at=_parse_timestamp(data.get("lastUsed")),
            last_error=str(last_error) if last_error is not None else None,
        )


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 strings (with or without "Z") and epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        lib_logger.debug(f"Ignoring unreadable timestamp {value!r}: {e}")
    return None
