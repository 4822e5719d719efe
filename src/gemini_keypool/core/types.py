# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the key pool.

This module contains the small value types used across the pool manager,
the error helpers and the terminal apps.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Set


# =============================================================================
# ERROR CLASS ENUM
# =============================================================================


class ErrorClass:
    """
    Failure classes driving the retry policy.

    Quota and auth failures are tied to the key that was used and can be
    fixed by switching keys. Everything else is treated as fatal.
    """

    QUOTA = "quota"
    AUTH = "auth"
    OTHER = "other"


# =============================================================================
# ERROR ACTION ENUM
# =============================================================================


class ErrorAction:
    """
    Actions to take after a failed attempt.

    Used by CredentialPool.invoke to determine next steps.
    """

    ROTATE = "rotate"  # Try the next key
    FAIL = "fail"  # Surface the failure to the caller


# =============================================================================
# ADMISSION
# =============================================================================


class ValidationReason:
    """Why a key was refused at admission. Checked in this order."""

    EMPTY = "empty"
    BAD_PREFIX = "bad_prefix"
    BAD_LENGTH = "bad_length"
    DUPLICATE = "duplicate"
    POOL_FULL = "pool_full"


# =============================================================================
# RETRY TYPES
# =============================================================================


@dataclass
class AttemptRecord:
    """One attempt made during a logical invoke call."""

    index: int
    error_class: Optional[str] = None  # None = success


@dataclass
class RetryState:
    """
    State tracking for one logical invoke call.

    ``tried_indices`` also holds positions skipped because their key was
    removed mid-call, so no key is ever tried twice.
    """

    attempts: List[AttemptRecord] = field(default_factory=list)
    tried_indices: Set[int] = field(default_factory=set)

    def record_attempt(self, index: int, error_class: Optional[str] = None) -> None:
        """Record that the key at ``index`` was tried."""
        self.attempts.append(AttemptRecord(index, error_class))
        self.tried_indices.add(index)

    def can_rotate(self, pool_size: int) -> bool:
        """True while at least one key of the snapshot is untried."""
        return len(self.tried_indices) < pool_size

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def summary(self) -> str:
        """Attempt trail for logs, e.g. '#1 quota, #3 auth'."""
        return ", ".join(
            f"#{a.index + 1} {a.error_class or 'ok'}" for a in self.attempts
        )
