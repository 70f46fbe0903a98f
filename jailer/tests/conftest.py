"""Shared fixtures: fake clock, in-memory ipset and fakeredis-backed jailers."""

from __future__ import annotations

import random

import fakeredis.aioredis
import pytest

from jailer.core.config import Settings
from jailer.core.exceptions import EnforcementError
from jailer.integration.redis_store import InfractionStore
from jailer.jail.lifecycle import ServiceJailer

T0 = 1_700_000_000


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIpSet:
    """Enforcement point double recording every call."""

    def __init__(self, members=()):
        self.members = list(members)
        self.calls: list[tuple[str, object]] = []
        self.fail = False

    async def add(self, ip) -> None:
        self.calls.append(("add", ip))
        if self.fail:
            raise EnforcementError(["ipset", "add", "test", str(ip)], 1, "boom")
        if ip not in self.members:
            self.members.append(ip)

    async def remove(self, ip) -> None:
        self.calls.append(("remove", ip))
        if self.fail:
            raise EnforcementError(["ipset", "del", "test", str(ip)], 1, "boom")
        if ip in self.members:
            self.members.remove(ip)

    async def list_members(self):
        return list(self.members)


def make_settings(**overrides) -> Settings:
    values = {
        "MAX_RETRY": 5,
        "FIND_TIME": 600,
        "BAN_TIME": 3600,
        "STARTUP_JITTER_SECONDS": 0,
        "SCAN_PERIOD_MIN_SECONDS": 60,
        "SCAN_PERIOD_MAX_SECONDS": 120,
        "IPSET_NAME": "test",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def ipset():
    return FakeIpSet()


@pytest.fixture()
def make_jailer(clock, ipset):
    """Factory; call it inside the running event loop."""

    def factory(store: InfractionStore | None = None, **overrides) -> ServiceJailer:
        if store is None:
            store = InfractionStore(fakeredis.aioredis.FakeRedis(decode_responses=True))
        return ServiceJailer(store, ipset, make_settings(**overrides), clock=clock, rng=random.Random(7))

    return factory
