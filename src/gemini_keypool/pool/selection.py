# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Pure decision functions: key admission and rotation target selection.

Nothing here touches the store or the clock, so the pool manager can call
these on a snapshot of its state.
"""

from typing import AbstractSet, Optional, Sequence

from ..core.constants import (
    CREDENTIAL_LENGTH,
    CREDENTIAL_PREFIX,
    MAX_POOL_SIZE,
)
from ..core.errors import CredentialValidationError
from ..core.types import ValidationReason
from .health import HealthRecord


def validate_credential(
    raw: Optional[str],
    existing: Sequence[str],
    max_size: int = MAX_POOL_SIZE,
) -> str:
    """
    Check a key against the admission rules.

    Checks run in order and the first failing one is reported:
    empty, prefix, length, duplicate, pool size.

    Args:
        raw: The key as typed by the user
        existing: Keys already in the pool
        max_size: Pool capacity

    Returns:
        The trimmed key

    Raises:
        CredentialValidationError: With the reason of the first failed check
    """
    key = (raw or "").strip()
    if not key:
        raise CredentialValidationError(
            ValidationReason.EMPTY, "API key must not be empty"
        )
    if not key.startswith(CREDENTIAL_PREFIX):
        raise CredentialValidationError(
            ValidationReason.BAD_PREFIX,
            f"Invalid API key format (must start with '{CREDENTIAL_PREFIX}')",
        )
    if len(key) != CREDENTIAL_LENGTH:
        raise CredentialValidationError(
            ValidationReason.BAD_LENGTH,
            f"API key must be exactly {CREDENTIAL_LENGTH} characters (got {len(key)})",
        )
    if key in existing:
        raise CredentialValidationError(
            ValidationReason.DUPLICATE, "API key has already been added"
        )
    if len(existing) >= max_size:
        raise CredentialValidationError(
            ValidationReason.POOL_FULL, f"Maximum {max_size} API keys allowed"
        )
    return key


def next_healthy(
    records: Sequence[HealthRecord],
    from_index: int,
    skip: AbstractSet[int] = frozenset(),
) -> int:
    """
    Pick the next rotation target after ``from_index``.

    Scans forward cyclically starting at from_index + 1 and returns the first
    healthy position (fewer than 3 consecutive failures). If the whole pool
    is degraded, falls back to from_index + 1 so rotation always moves on.

    ``skip`` holds positions already tried in the current call. Untried
    healthy positions win, then any untried position, then the plain
    fallback. With an empty ``skip`` this is exactly the rule above.

    Args:
        records: Health records, one per pool position
        from_index: Position that just failed
        skip: Positions to avoid if anything else is left

    Returns:
        Index into records
    """
    size = len(records)
    if size == 0:
        raise ValueError("next_healthy() needs a non-empty pool")

    order = [(from_index + step) % size for step in range(1, size + 1)]
    untried = [idx for idx in order if idx not in skip]

    for idx in untried:
        if records[idx].is_healthy:
            return idx
    if untried:
        return untried[0]
    return (from_index + 1) % size
