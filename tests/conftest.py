"""Shared fixtures for key pool tests."""

from datetime import datetime, timedelta, timezone

import pytest

from gemini_keypool import CredentialPool, MemoryStore


def make_key(n: int) -> str:
    """A well-formed 39 character key, unique per n."""
    return f"AIza{n:035d}"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class ScriptedOperation:
    """
    Async operation whose outcome is scripted per key.

    ``outcomes`` maps key -> list of results; an Exception instance is raised,
    anything else is returned. The last entry repeats once the list runs out.
    """

    def __init__(self, outcomes):
        self.outcomes = {k: list(v) for k, v in outcomes.items()}
        self.calls = []

    async def __call__(self, key):
        self.calls.append(key)
        script = self.outcomes[key]
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_pool(store, clock, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    def _make(keys=(), **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", fake_sleep)
        return CredentialPool(store, credentials=list(keys), **kwargs)

    return _make


@pytest.fixture
def keys():
    return [make_key(i) for i in range(1, 4)]


@pytest.fixture
def key_of():
    return make_key


@pytest.fixture
def scripted():
    return ScriptedOperation
