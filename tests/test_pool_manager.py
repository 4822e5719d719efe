"""Tests for the credential pool manager."""

import asyncio
import json
import logging

import pytest

from gemini_keypool import (
    CredentialPool,
    CredentialValidationError,
    ErrorClass,
    HealthRecord,
    InvokeError,
    NoCredentialsError,
    ValidationReason,
)
from gemini_keypool.core.constants import STORE_HEALTH_NAME, STORE_KEYS_NAME


QUOTA = "429 quota exceeded"
AUTH = "403 api key invalid"


class TestAdmission:
    """add_credential / remove_credential."""

    @pytest.mark.asyncio
    async def test_add_appends_in_order(self, make_pool, keys):
        pool = make_pool()
        for key in keys:
            await pool.add_credential(key)

        assert pool.credentials == tuple(keys)
        assert pool.size == 3

    @pytest.mark.asyncio
    async def test_add_trims_whitespace(self, make_pool, key_of):
        pool = make_pool()
        stored = await pool.add_credential(f"  {key_of(1)}\n")

        assert stored == key_of(1)
        assert pool.credentials == (key_of(1),)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw,reason",
        [
            ("", ValidationReason.EMPTY),
            ("   ", ValidationReason.EMPTY),
            (None, ValidationReason.EMPTY),
            ("BIza" + "0" * 35, ValidationReason.BAD_PREFIX),
            ("AIza" + "0" * 34, ValidationReason.BAD_LENGTH),
            ("AIza" + "0" * 36, ValidationReason.BAD_LENGTH),
        ],
    )
    async def test_add_rejects_malformed(self, make_pool, raw, reason):
        pool = make_pool()
        with pytest.raises(CredentialValidationError) as exc_info:
            await pool.add_credential(raw)

        assert exc_info.value.reason == reason
        assert pool.size == 0

    @pytest.mark.asyncio
    async def test_add_rejects_duplicate(self, make_pool, key_of):
        pool = make_pool([key_of(1)])
        with pytest.raises(CredentialValidationError) as exc_info:
            await pool.add_credential(key_of(1))
        assert exc_info.value.reason == ValidationReason.DUPLICATE

    @pytest.mark.asyncio
    async def test_add_rejects_when_full(self, make_pool, key_of):
        pool = make_pool([key_of(i) for i in range(10)])
        with pytest.raises(CredentialValidationError) as exc_info:
            await pool.add_credential(key_of(10))

        assert exc_info.value.reason == ValidationReason.POOL_FULL
        assert pool.size == 10

    @pytest.mark.asyncio
    async def test_add_does_not_create_health_record(self, make_pool, store, key_of):
        pool = make_pool()
        await pool.add_credential(key_of(1))

        assert json.loads(store.get(STORE_HEALTH_NAME)) == {}
        assert pool.health(key_of(1)) == HealthRecord()

    @pytest.mark.asyncio
    async def test_remove_drops_key_and_health(self, make_pool, store, keys, scripted):
        pool = make_pool(keys)
        await pool.invoke(scripted({keys[0]: ["ok"]}))

        removed = await pool.remove_credential(0)

        assert removed == keys[0]
        assert pool.credentials == tuple(keys[1:])
        assert keys[0] not in json.loads(store.get(STORE_HEALTH_NAME))

    @pytest.mark.asyncio
    async def test_remove_out_of_range(self, make_pool, keys):
        pool = make_pool(keys)
        with pytest.raises(IndexError):
            await pool.remove_credential(3)
        assert pool.size == 3


class TestInvoke:
    """Rotation and retry behaviour of invoke()."""

    @pytest.mark.asyncio
    async def test_empty_pool_raises_without_calling(self, make_pool, scripted):
        pool = make_pool()
        op = scripted({})

        with pytest.raises(NoCredentialsError):
            await pool.invoke(op)
        assert op.calls == []

    @pytest.mark.asyncio
    async def test_success_resets_failures_and_counts_call(
        self, make_pool, keys, clock, scripted
    ):
        pool = make_pool(
            keys,
            health={keys[0]: HealthRecord(consecutive_failures=2, total_calls=5, last_error="x")},
        )

        result = await pool.invoke(scripted({keys[0]: ["ok"]}))

        record = pool.health(keys[0])
        assert result == "ok"
        assert record.consecutive_failures == 0
        assert record.total_calls == 6
        assert record.last_used_at == clock.now
        assert record.last_error is None

    @pytest.mark.asyncio
    async def test_quota_failure_rotates_automatically(self, make_pool, keys, scripted, sleeps):
        pool = make_pool(keys)
        op = scripted({keys[0]: [Exception(QUOTA)], keys[1]: ["ok"]})

        result = await pool.invoke(op)

        assert result == "ok"
        assert op.calls == [keys[0], keys[1]]
        assert pool.preferred_index == 1
        assert sleeps == [pool.rotation_delay]

    @pytest.mark.asyncio
    async def test_rotated_key_is_sticky(self, make_pool, keys, scripted):
        pool = make_pool(keys)
        op = scripted({keys[0]: [Exception(QUOTA)], keys[1]: ["ok"]})

        await pool.invoke(op)
        await pool.invoke(op)

        assert op.calls == [keys[0], keys[1], keys[1]]

    @pytest.mark.asyncio
    async def test_documented_scenario(self, make_pool, keys, scripted):
        pool = make_pool(keys)
        op = scripted(
            {
                keys[0]: [Exception(QUOTA)],
                keys[1]: [Exception(AUTH)],
                keys[2]: ["done"],
            }
        )

        assert await pool.invoke(op) == "done"

        assert pool.preferred_index == 2
        assert pool.health(keys[0]).consecutive_failures == 1
        assert pool.health(keys[1]).consecutive_failures == 1
        assert pool.health(keys[2]).consecutive_failures == 0
        assert pool.health(keys[0]).last_error == QUOTA
        assert pool.health(keys[1]).last_error == AUTH

    @pytest.mark.asyncio
    async def test_all_quota_tries_each_key_once(self, make_pool, keys, scripted, sleeps):
        pool = make_pool(keys)
        op = scripted({k: [Exception(QUOTA)] for k in keys})

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(op)

        error = exc_info.value
        assert op.calls == keys
        assert error.exhausted is True
        assert error.error_class == ErrorClass.QUOTA
        assert error.attempts == 3
        assert error.message == QUOTA
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_single_key_quota_is_exhausted(self, make_pool, keys, scripted, sleeps):
        pool = make_pool(keys[:1])

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(scripted({keys[0]: [Exception(QUOTA)]}))

        assert exc_info.value.exhausted is True
        assert exc_info.value.attempts == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_other_failure_never_rotates(self, make_pool, keys, scripted, sleeps):
        pool = make_pool(keys)
        original = ConnectionError("connection reset by peer")
        op = scripted({keys[0]: [original], keys[1]: ["ok"]})

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(op)

        error = exc_info.value
        assert op.calls == [keys[0]]
        assert error.exhausted is False
        assert error.error_class == ErrorClass.OTHER
        assert error.__cause__ is original
        assert pool.preferred_index == 0
        assert pool.health(keys[0]).consecutive_failures == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_other_failure_after_rotation_stops(self, make_pool, keys, scripted):
        pool = make_pool(keys)
        op = scripted(
            {keys[0]: [Exception(QUOTA)], keys[1]: [ValueError("malformed response")]}
        )

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(op)

        assert op.calls == [keys[0], keys[1]]
        assert exc_info.value.exhausted is False
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_rotation_skips_unhealthy_keys(self, make_pool, keys, scripted):
        pool = make_pool(keys, health={keys[1]: HealthRecord(consecutive_failures=3, total_calls=3)})
        op = scripted({keys[0]: [Exception(QUOTA)], keys[2]: ["ok"]})

        assert await pool.invoke(op) == "ok"
        assert op.calls == [keys[0], keys[2]]

    @pytest.mark.asyncio
    async def test_degraded_pool_still_tries_every_key_once(self, make_pool, keys, scripted):
        pool = make_pool(keys, health={keys[1]: HealthRecord(consecutive_failures=3, total_calls=3)})
        op = scripted({k: [Exception(QUOTA)] for k in keys})

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(op)

        assert op.calls == [keys[0], keys[2], keys[1]]
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_every_attempt_counts_a_call(self, make_pool, keys, scripted):
        pool = make_pool(keys)
        op = scripted({keys[0]: [Exception(QUOTA)], keys[1]: ["ok"]})

        await pool.invoke(op)

        assert pool.health(keys[0]).total_calls == 1
        assert pool.health(keys[1]).total_calls == 1
        assert pool.health(keys[2]).total_calls == 0

    @pytest.mark.asyncio
    async def test_stale_preferred_index_wraps(self, make_pool, keys, scripted):
        pool = make_pool(keys)
        op = scripted(
            {keys[0]: [Exception(QUOTA), "ok"], keys[1]: [Exception(QUOTA)], keys[2]: ["ok"]}
        )
        await pool.invoke(op)
        assert pool.preferred_index == 2

        await pool.remove_credential(2)

        assert pool.preferred_index == 0
        assert await pool.invoke(op) == "ok"
        assert op.calls[-1] == keys[0]

    @pytest.mark.asyncio
    async def test_key_removed_during_call(self, make_pool, keys, scripted):
        pool = make_pool(keys)

        async def op(key):
            if key == keys[0]:
                await pool.remove_credential(0)
                raise Exception(QUOTA)
            return key

        assert await pool.invoke(op) == keys[1]
        assert pool.credentials == tuple(keys[1:])
        assert pool.preferred_index == 0
        assert pool.health(keys[1]).total_calls == 1

    @pytest.mark.asyncio
    async def test_rotation_target_removed_during_call_is_skipped(self, make_pool, keys):
        pool = make_pool(keys)
        calls = []

        async def op(key):
            calls.append(key)
            if key == keys[0]:
                await pool.remove_credential(1)
                raise Exception(QUOTA)
            return key

        assert await pool.invoke(op) == keys[2]
        assert calls == [keys[0], keys[2]]
        assert pool.preferred_credential == keys[2]
        assert pool.health(keys[1]).total_calls == 0

    @pytest.mark.asyncio
    async def test_no_live_key_left_after_removal(self, make_pool, keys, sleeps):
        pool = make_pool(keys[:2])
        calls = []
        failure = Exception(QUOTA)

        async def op(key):
            calls.append(key)
            await pool.remove_credential(1)
            raise failure

        with pytest.raises(InvokeError) as exc_info:
            await pool.invoke(op)

        assert calls == [keys[0]]
        assert exc_info.value.exhausted
        assert exc_info.value.attempts == 1
        assert exc_info.value.__cause__ is failure
        assert pool.credentials == (keys[0],)

    @pytest.mark.asyncio
    async def test_terminal_failure_logs_attempt_trail(self, make_pool, keys, scripted, caplog):
        pool = make_pool(keys)
        op = scripted({k: [Exception(QUOTA)] for k in keys})

        with caplog.at_level(logging.ERROR, logger="gemini_keypool"):
            with pytest.raises(InvokeError):
                await pool.invoke(op)

        assert "#1 quota, #2 quota, #3 quota" in caplog.text

    @pytest.mark.asyncio
    async def test_on_rotate_hook(self, make_pool, keys, scripted):
        seen = []
        pool = make_pool(keys, on_rotate=lambda f, t, err: seen.append((f, t, err.error_class)))
        op = scripted({keys[0]: [Exception(AUTH)], keys[1]: ["ok"]})

        await pool.invoke(op)

        assert seen == [(0, 1, ErrorClass.AUTH)]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_rotation(self, make_pool, keys, scripted):
        def hook(f, t, err):
            raise RuntimeError("toast failed")

        pool = make_pool(keys, on_rotate=hook)
        op = scripted({keys[0]: [Exception(QUOTA)], keys[1]: ["ok"]})

        assert await pool.invoke(op) == "ok"

    @pytest.mark.asyncio
    async def test_cancel_during_rotation_wait(self, make_pool, keys, scripted):
        sleeping = asyncio.Event()

        async def blocking_sleep(delay):
            sleeping.set()
            await asyncio.Event().wait()

        pool = make_pool(keys, sleep=blocking_sleep)
        op = scripted({keys[0]: [Exception(QUOTA)], keys[1]: ["ok"]})

        task = asyncio.create_task(pool.invoke(op))
        await sleeping.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert op.calls == [keys[0]]
        assert pool.health(keys[0]).consecutive_failures == 1


class TestHealthReset:

    @pytest.mark.asyncio
    async def test_reset_makes_key_eligible_again(self, make_pool, keys):
        pool = make_pool(keys, health={keys[1]: HealthRecord(consecutive_failures=3, total_calls=7)})
        assert pool.next_healthy(0) == 2

        await pool.reset_health(keys[1])

        assert pool.next_healthy(0) == 1
        assert pool.health(keys[1]) == HealthRecord()

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, make_pool, keys):
        pool = make_pool(keys)
        await pool.reset_health(keys[0])
        await pool.reset_health(keys[0])

        assert pool.health(keys[0]) == HealthRecord()
        assert pool.credentials == tuple(keys)

    @pytest.mark.asyncio
    async def test_reset_unknown_key_is_ignored(self, make_pool, keys, key_of):
        pool = make_pool(keys)
        await pool.reset_health(key_of(99))
        assert pool.size == 3

    def test_health_returns_copy(self, make_pool, keys):
        pool = make_pool(keys)
        pool.health(keys[0]).consecutive_failures = 5

        assert pool.health(keys[0]).consecutive_failures == 0


class TestPersistence:

    @pytest.mark.asyncio
    async def test_every_mutation_writes_both_keys(self, make_pool, store, keys, scripted):
        pool = make_pool()
        await pool.add_credential(keys[0])
        assert json.loads(store.get(STORE_KEYS_NAME)) == [keys[0]]

        await pool.invoke(scripted({keys[0]: ["ok"]}))
        health = json.loads(store.get(STORE_HEALTH_NAME))
        assert health[keys[0]]["totalCalls"] == 1
        assert health[keys[0]]["failures"] == 0

        await pool.reset_health(keys[0])
        assert json.loads(store.get(STORE_HEALTH_NAME))[keys[0]]["totalCalls"] == 0

    @pytest.mark.asyncio
    async def test_reload_restores_keys_and_health(self, make_pool, store, keys, clock, scripted):
        pool = make_pool(keys)
        await pool.invoke(scripted({keys[0]: [Exception(AUTH)], keys[1]: ["ok"]}))

        reloaded = CredentialPool.load(store)

        assert reloaded.credentials == pool.credentials
        for key in keys:
            assert reloaded.health(key) == pool.health(key)
        assert reloaded.health(keys[0]).last_used_at == clock.now

    def test_load_ignores_malformed_documents(self, store):
        store.set(STORE_KEYS_NAME, "{not json")
        store.set(STORE_HEALTH_NAME, "[]")

        pool = CredentialPool.load(store)

        assert pool.size == 0
        assert pool.preferred_credential is None

    @pytest.mark.asyncio
    async def test_load_drops_duplicates_and_orphan_health(self, store, key_of):
        store.set(STORE_KEYS_NAME, json.dumps([key_of(1), key_of(1), 42, key_of(2)]))
        store.set(
            STORE_HEALTH_NAME,
            json.dumps(
                {
                    key_of(1): {"failures": 2, "lastUsed": None, "totalCalls": 4},
                    key_of(9): {"failures": 1, "lastUsed": None, "totalCalls": 1},
                }
            ),
        )

        pool = CredentialPool.load(store)

        assert pool.credentials == (key_of(1), key_of(2))
        assert pool.health(key_of(1)).consecutive_failures == 2

        await pool.reset_health(key_of(2))
        assert key_of(9) not in json.loads(store.get(STORE_HEALTH_NAME))
