# tests/test_nonces.py
import asyncio
import re

import pytest

from cws.security.nonces import DEFAULT_NONCE_TTL_MS, InMemoryNonceRegistry, RedisNonceRegistry

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRedis:
    """The handful of redis.asyncio.Redis calls the registry makes, backed by dicts."""

    def __init__(self):
        self.data = {}
        self.sets = {}
        self.expiry = {}
        self.closed = False

    async def set(self, key, value, px=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        self.expiry[key] = px
        return True

    async def getdel(self, key):
        self.expiry.pop(key, None)
        return self.data.pop(key, None)

    async def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key, *members):
        self.sets.get(key, set()).difference_update(members)
        return len(members)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def pexpire(self, key, ms):
        self.expiry[key] = ms
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return InMemoryNonceRegistry(nonce_ttl_ms=60_000, clock=clock)


def test_default_ttl_is_five_minutes():
    assert DEFAULT_NONCE_TTL_MS == 300_000
    assert InMemoryNonceRegistry().nonce_ttl_ms == 300_000


@pytest.mark.asyncio
async def test_issue_returns_canonical_uuid(registry):
    nonce = await registry.issue_nonce()

    assert UUID_PATTERN.match(nonce)
    assert nonce in registry


@pytest.mark.asyncio
async def test_issued_nonces_are_distinct(registry):
    nonces = {await registry.issue_nonce() for _ in range(200)}
    assert len(nonces) == 200
    assert len(registry) == 200


@pytest.mark.asyncio
async def test_nonce_verifies_exactly_once(registry):
    nonce = await registry.issue_nonce()

    assert await registry.verify_and_consume(nonce) is True
    assert await registry.verify_and_consume(nonce) is False
    assert nonce not in registry


@pytest.mark.asyncio
async def test_concurrent_consumers_get_one_success(registry):
    nonce = await registry.issue_nonce()

    results = await asyncio.gather(*(registry.verify_and_consume(nonce) for _ in range(20)))

    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_unknown_nonce_is_rejected_without_mutation(registry):
    nonce = await registry.issue_nonce()

    assert await registry.verify_and_consume("00000000-0000-0000-0000-000000000000") is False
    assert await registry.verify_and_consume(None) is False
    assert len(registry) == 1
    assert nonce in registry


@pytest.mark.asyncio
async def test_nonce_valid_up_to_ttl(registry, clock):
    nonce = await registry.issue_nonce()
    clock.advance(60_000)

    assert await registry.verify_and_consume(nonce) is True


@pytest.mark.asyncio
async def test_expired_nonce_is_rejected_and_removed(registry, clock):
    nonce = await registry.issue_nonce()
    clock.advance(60_001)

    assert await registry.verify_and_consume(nonce) is False
    assert nonce not in registry


@pytest.mark.asyncio
async def test_issue_sweeps_expired_entries(registry, clock):
    stale = [await registry.issue_nonce() for _ in range(5)]
    clock.advance(60_001)

    fresh = await registry.issue_nonce()

    assert len(registry) == 1
    assert fresh in registry
    assert not any(nonce in registry for nonce in stale)


@pytest.mark.asyncio
async def test_sweep_reports_removed_count(registry, clock):
    await registry.issue_nonce()
    await registry.issue_nonce()
    clock.advance(30_000)
    await registry.issue_nonce()
    clock.advance(30_001)

    assert await registry.sweep() == 2
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_clear_forgets_everything(registry):
    nonce = await registry.issue_nonce()
    await registry.clear()

    assert len(registry) == 0
    assert await registry.verify_and_consume(nonce) is False


@pytest.mark.asyncio
async def test_redis_registry_single_use(clock):
    fake = FakeRedis()
    registry = RedisNonceRegistry(fake, nonce_ttl_ms=60_000, clock=clock)

    nonce = await registry.issue_nonce()

    assert UUID_PATTERN.match(nonce)
    assert fake.data[f"cws:nonce:{nonce}"] == str(clock.now)
    assert fake.expiry[f"cws:nonce:{nonce}"] > 60_000
    assert await registry.verify_and_consume(nonce) is True
    assert await registry.verify_and_consume(nonce) is False


@pytest.mark.asyncio
async def test_redis_registry_expiry(clock):
    fake = FakeRedis()
    registry = RedisNonceRegistry(fake, nonce_ttl_ms=60_000, clock=clock)
    nonce = await registry.issue_nonce()
    clock.advance(60_001)

    assert await registry.verify_and_consume(nonce) is False
    assert f"cws:nonce:{nonce}" not in fake.data


@pytest.mark.asyncio
async def test_redis_registry_clear_and_close(clock):
    fake = FakeRedis()
    fake.data["unrelated"] = "keep"
    registry = RedisNonceRegistry(fake, clock=clock)
    await registry.issue_nonce()
    await registry.issue_nonce()

    await registry.clear()
    await registry.close()

    assert fake.data == {"unrelated": "keep"}
    assert fake.sets == {}
    assert fake.closed


@pytest.mark.asyncio
async def test_redis_clear_leaves_other_instances_alone(clock):
    fake = FakeRedis()
    stopping = RedisNonceRegistry(fake, clock=clock, instance_id="gw-a")
    peer = RedisNonceRegistry(fake, clock=clock, instance_id="gw-b")
    own = await stopping.issue_nonce()
    theirs = await peer.issue_nonce()

    await stopping.clear()

    assert f"cws:nonce:{own}" not in fake.data
    assert "cws:issued:gw-a" not in fake.sets
    assert await stopping.verify_and_consume(own) is False
    assert await peer.verify_and_consume(theirs) is True


@pytest.mark.asyncio
async def test_redis_consumed_nonce_leaves_issued_set(clock):
    fake = FakeRedis()
    registry = RedisNonceRegistry(fake, clock=clock, instance_id="gw-a")
    first = await registry.issue_nonce()
    second = await registry.issue_nonce()

    assert await registry.verify_and_consume(first) is True

    assert fake.sets["cws:issued:gw-a"] == {second}
