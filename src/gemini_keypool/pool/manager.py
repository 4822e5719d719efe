# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
CredentialPool facade.

This is the main public API of the library: it owns the key list, the health
map and the preferred index, and wraps every outbound call in the
retry/rotation loop.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from ..core.constants import (
    DEFAULT_ROTATION_DELAY,
    MAX_POOL_SIZE,
    STORE_HEALTH_NAME,
    STORE_KEYS_NAME,
)
from ..core.config import clamp_rotation_delay
from ..core.errors import (
    ClassifiedError,
    InvokeError,
    NoCredentialsError,
    classify_error,
    mask_credential,
    should_rotate_on_error,
)
from ..core.types import ErrorAction, RetryState
from ..storage.kv import KeyValueStore
from .health import HealthRecord
from .selection import next_healthy, validate_credential

lib_logger = logging.getLogger("gemini_keypool")

Operation = Callable[[str], Awaitable[Any]]
RotateHook = Callable[[int, int, ClassifiedError], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialPool:
    """
    Pool of Gemini API keys with health tracking and rotation.

    This class provides the primary interface for:
    - Admitting and removing keys
    - Running calls with automatic rotation on quota/auth failures
    - Tracking and resetting per-key health
    - Persisting everything to a key-value store after each change

    Example:
        pool = CredentialPool.load(JsonFileStore("keypool.json"))
        await pool.add_credential("AIza...")

        response = await pool.invoke(
            lambda key: provider.acompletion(key, messages)
        )
    """

    def __init__(
        self,
        store: KeyValueStore,
        credentials: Optional[Sequence[str]] = None,
        health: Optional[Dict[str, HealthRecord]] = None,
        rotation_delay: float = DEFAULT_ROTATION_DELAY,
        max_size: int = MAX_POOL_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        on_rotate: Optional[RotateHook] = None,
    ):
        """
        Initialize CredentialPool.

        Args:
            store: Durable store the pool writes back to after every change
            credentials: Initial keys, in rotation order
            health: Initial health records keyed by credential
            rotation_delay: Seconds to wait before a rotated retry
            max_size: Pool capacity
            clock: Returns the current aware datetime (injectable for tests)
            sleep: Awaitable sleep used between rotated attempts
            on_rotate: Called as on_rotate(from_index, to_index, error) on rotation
        """
        self._store = store
        self._credentials: List[str] = list(credentials or [])
        self._health: Dict[str, HealthRecord] = {
            cred: record
            for cred, record in (health or {}).items()
            if cred in self._credentials
        }
        self._preferred_index = 0
        self._rotation_delay = clamp_rotation_delay(rotation_delay)
        self._max_size = max_size
        self._clock = clock or _utcnow
        self._sleep = sleep or asyncio.sleep
        self._on_rotate = on_rotate

        # Guards every read-then-write of keys, health and preferred index
        self._lock = asyncio.Lock()

    @classmethod
    def load(cls, store: KeyValueStore, **kwargs: Any) -> "CredentialPool":
        """
        Build a pool from the state persisted in ``store``.

        Malformed documents are logged and treated as empty.
        """
        credentials = _decode_credentials(store.get(STORE_KEYS_NAME))
        health = _decode_health(store.get(STORE_HEALTH_NAME))
        pool = cls(store, credentials=credentials, health=health, **kwargs)
        lib_logger.debug(
            f"CredentialPool loaded with {len(pool._credentials)} key(s), "
            f"{len(pool._health)} health record(s)"
        )
        return pool

    # =========================================================================
    # READ ACCESSORS
    # =========================================================================

    @property
    def size(self) -> int:
        return len(self._credentials)

    @property
    def credentials(self) -> Tuple[str, ...]:
        return tuple(self._credentials)

    @property
    def preferred_index(self) -> int:
        """Position tried first on the next call (0 for an empty pool)."""
        return self._wrap_index(self._preferred_index)

    @property
    def preferred_credential(self) -> Optional[str]:
        if not self._credentials:
            return None
        return self._credentials[self.preferred_index]

    @property
    def rotation_delay(self) -> float:
        return self._rotation_delay

    def health(self, credential: str) -> HealthRecord:
        """Copy of the key's health record, zero record if never used."""
        return self._get_health(credential, create=False).copy()

    def health_snapshot(self) -> List[Tuple[int, str, HealthRecord]]:
        """(index, credential, record copy) for every key, for display."""
        return [
            (idx, cred, self.health(cred)) for idx, cred in enumerate(self._credentials)
        ]

    def next_healthy(self, from_index: int) -> int:
        """Rotation target after ``from_index`` given current health."""
        records = [self._get_health(c, create=False) for c in self._credentials]
        return next_healthy(records, from_index)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def add_credential(self, raw: Optional[str]) -> str:
        """
        Validate and append a key.

        Returns:
            The trimmed key as stored

        Raises:
            CredentialValidationError: On the first failed admission check
        """
        async with self._lock:
            key = validate_credential(raw, self._credentials, self._max_size)
            self._credentials.append(key)
            self._save()
        lib_logger.info(
            f"Added key {mask_credential(key)} as #{len(self._credentials)}"
        )
        return key

    async def remove_credential(self, index: int) -> str:
        """
        Remove the key at ``index`` together with its health record.

        The preferred index is left alone and wrapped on next use.

        Raises:
            IndexError: If index is out of range
        """
        async with self._lock:
            if not 0 <= index < len(self._credentials):
                raise IndexError(
                    f"No key at position {index} (pool has {len(self._credentials)})"
                )
            key = self._credentials.pop(index)
            self._health.pop(key, None)
            self._save()
        lib_logger.info(f"Removed key {mask_credential(key)} from position #{index + 1}")
        return key

    async def reset_health(self, credential: str) -> None:
        """Zero the key's health record (calls included). Idempotent."""
        async with self._lock:
            if credential not in self._credentials:
                lib_logger.debug(
                    f"reset_health: {mask_credential(credential)} is not in the pool"
                )
                return
            self._health[credential] = HealthRecord()
            self._save()
        lib_logger.info(f"Reset health for {mask_credential(credential)}")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def invoke(self, operation: Operation) -> Any:
        """
        Run ``operation`` with rotation.

        The operation is awaited with one key at a time, starting at the
        preferred index. Quota and auth failures rotate to the next healthy
        untried key after a short pause; any other failure, or running out of
        keys, ends the call.

        Args:
            operation: async callable taking the key to use

        Returns:
            Whatever the successful operation returned

        Raises:
            NoCredentialsError: The pool is empty
            InvokeError: Terminal failure, chained to the last exception
        """
        async with self._lock:
            if not self._credentials:
                lib_logger.warning("invoke() called with no keys configured")
                raise NoCredentialsError()
            keys = list(self._credentials)
            index = self._wrap_index(self._preferred_index)
            self._preferred_index = index

        retry_state = RetryState()

        while True:
            credential = keys[index]
            lib_logger.info(
                f"Attempting call with key #{index + 1} {mask_credential(credential)} "
                f"(attempt {retry_state.attempt_count + 1}/{len(keys)})"
            )
            try:
                result = await operation(credential)
            except Exception as e:
                last_error = e
                classified = classify_error(e)
                retry_state.record_attempt(index, classified.error_class)
                action, next_index = await self._handle_failure(
                    credential, index, keys, classified, retry_state
                )
                if action == ErrorAction.FAIL:
                    raise self._terminal_error(
                        credential, index, classified, retry_state
                    ) from e
            else:
                retry_state.record_attempt(index)
                await self._record_success(credential)
                lib_logger.info(
                    f"Call succeeded with key #{index + 1} {mask_credential(credential)}"
                )
                return result

            self._notify_rotation(index, next_index, classified)
            await self._sleep(self._rotation_delay)

            live_index = await self._skip_removed(keys, next_index, retry_state)
            if live_index is None:
                raise self._terminal_error(
                    credential, index, classified, retry_state
                ) from last_error
            index = live_index

    async def _handle_failure(
        self,
        credential: str,
        index: int,
        keys: List[str],
        classified: ClassifiedError,
        retry_state: RetryState,
    ) -> Tuple[str, int]:
        """
        Record the failure and decide whether to rotate.

        Returns:
            (ErrorAction, index of the next key to try)
        """
        async with self._lock:
            record = self._record_failure(credential, classified.message)
            if record is not None:
                self._save()

            if not should_rotate_on_error(classified):
                return ErrorAction.FAIL, index
            if not retry_state.can_rotate(len(keys)):
                return ErrorAction.FAIL, index

            records = [self._get_health(k, create=False) for k in keys]
            next_index = next_healthy(records, index, retry_state.tried_indices)

            next_key = keys[next_index]
            if next_key in self._credentials:
                self._preferred_index = self._credentials.index(next_key)
            return ErrorAction.ROTATE, next_index

    async def _skip_removed(
        self, keys: List[str], index: int, retry_state: RetryState
    ) -> Optional[int]:
        """
        Move past keys removed from the pool since the call started.

        Returns:
            Snapshot position of the next live key, or None when every live
            key has already been tried
        """
        async with self._lock:
            while keys[index] not in self._credentials:
                lib_logger.info(
                    f"Key #{index + 1} {mask_credential(keys[index])} was removed "
                    f"during the call, skipping it"
                )
                retry_state.tried_indices.add(index)
                if not any(
                    i not in retry_state.tried_indices and k in self._credentials
                    for i, k in enumerate(keys)
                ):
                    return None
                records = [self._get_health(k, create=False) for k in keys]
                index = next_healthy(records, index, retry_state.tried_indices)

            self._preferred_index = self._credentials.index(keys[index])
            return index

    def _terminal_error(
        self,
        credential: str,
        index: int,
        classified: ClassifiedError,
        retry_state: RetryState,
    ) -> InvokeError:
        exhausted = should_rotate_on_error(classified)
        lib_logger.error(
            f"Call failed on key #{index + 1} {mask_credential(credential)} "
            f"({classified.error_class}, "
            f"{'all keys tried' if exhausted else 'not recoverable'}): "
            f"{classified.message[:150]} [attempts: {retry_state.summary()}]"
        )
        return InvokeError(
            classified.message,
            classified.error_class,
            exhausted=exhausted,
            attempts=retry_state.attempt_count,
        )

    def _notify_rotation(
        self, from_index: int, to_index: int, classified: ClassifiedError
    ) -> None:
        reason = "Quota exhausted" if classified.is_quota else "Key rejected"
        lib_logger.warning(
            f"Key rotation: #{from_index + 1} failed ({reason}), "
            f"rotating to #{to_index + 1}"
        )
        if self._on_rotate is None:
            return
        try:
            self._on_rotate(from_index, to_index, classified)
        except Exception as e:
            lib_logger.warning(f"on_rotate hook failed: {e}")

    # =========================================================================
    # HEALTH
    # =========================================================================

    def _get_health(self, credential: str, create: bool = False) -> HealthRecord:
        record = self._health.get(credential)
        if record is None:
            record = HealthRecord()
            if create:
                self._health[credential] = record
        return record

    async def _record_success(self, credential: str) -> None:
        async with self._lock:
            if credential not in self._credentials:
                lib_logger.debug(
                    f"Not recording success for removed key {mask_credential(credential)}"
                )
                return
            self._get_health(credential, create=True).mark_success(self._clock())
            self._save()

    def _record_failure(self, credential: str, message: str) -> Optional[HealthRecord]:
        """Caller holds the lock. Returns None for keys removed meanwhile."""
        if credential not in self._credentials:
            lib_logger.debug(
                f"Not recording failure for removed key {mask_credential(credential)}"
            )
            return None
        record = self._get_health(credential, create=True)
        record.mark_failure(self._clock(), message)
        return record

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _save(self) -> None:
        """
        Write keys and health back to the store.

        A failed write is logged and retried implicitly by the next mutation;
        in-memory state stays authoritative.
        """
        health = {
            cred: self._health[cred].to_dict()
            for cred in self._credentials
            if cred in self._health
        }
        try:
            self._store.set(STORE_KEYS_NAME, json.dumps(self._credentials))
            self._store.set(STORE_HEALTH_NAME, json.dumps(health))
        except OSError as e:
            lib_logger.error(f"Failed to persist key pool: {e}")

    def _wrap_index(self, index: int) -> int:
        if not self._credentials:
            return 0
        return index % len(self._credentials)


# =============================================================================
# STORE DECODING
# =============================================================================


def _decode_credentials(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as e:
        lib_logger.warning(f"Stored key list is not valid JSON ({e}). Ignoring it.")
        return []
    if not isinstance(loaded, list):
        lib_logger.warning("Stored key list is not a JSON array. Ignoring it.")
        return []

    credentials: List[str] = []
    for item in loaded:
        if isinstance(item, str) and item.strip() and item not in credentials:
            credentials.append(item)
    if len(credentials) != len(loaded):
        lib_logger.warning(
            f"Dropped {len(loaded) - len(credentials)} empty, duplicate or "
            f"non-string stored key(s)"
        )
    return credentials


def _decode_health(raw: Optional[str]) -> Dict[str, HealthRecord]:
    if not raw:
        return {}
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as e:
        lib_logger.warning(f"Stored health map is not valid JSON ({e}). Ignoring it.")
        return {}
    if not isinstance(loaded, dict):
        lib_logger.warning("Stored health map is not a JSON object. Ignoring it.")
        return {}
    return {
        cred: HealthRecord.from_dict(data)
        for cred, data in loaded.items()
        if isinstance(data, dict)
    }
