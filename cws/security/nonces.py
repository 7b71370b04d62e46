# cws/security/nonces.py
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from cws.utils.encoding import now_ms

logger = logging.getLogger(__name__)

DEFAULT_NONCE_TTL_MS = 300_000


class BaseNonceRegistry(ABC):
    """
    Issues single-use challenge nonces and verifies them exactly once.

    A nonce verifies only while `now - issued_at <= nonce_ttl_ms`; both a
    successful verification and a registered-but-expired one remove it.
    """

    def __init__(self, nonce_ttl_ms: int = DEFAULT_NONCE_TTL_MS, clock: Callable[[], int] = now_ms):
        self.nonce_ttl_ms = nonce_ttl_ms
        self._clock = clock

    @staticmethod
    def _new_value() -> str:
        return str(uuid.uuid4())

    @abstractmethod
    async def issue_nonce(self) -> str:
        pass

    @abstractmethod
    async def verify_and_consume(self, value: str) -> bool:
        pass

    @abstractmethod
    async def sweep(self) -> int:
        """Removes expired entries and returns how many were dropped."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryNonceRegistry(BaseNonceRegistry):
    """Process-local registry: a dict of value -> issued_at_ms behind a lock."""

    def __init__(self, nonce_ttl_ms: int = DEFAULT_NONCE_TTL_MS, clock: Callable[[], int] = now_ms):
        super().__init__(nonce_ttl_ms, clock)
        self._issued: Dict[str, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._issued)

    def __contains__(self, value: object) -> bool:
        with self._lock:
            return value in self._issued

    async def issue_nonce(self) -> str:
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            value = self._new_value()
            while value in self._issued:
                value = self._new_value()
            self._issued[value] = now
        logger.debug(f"[Nonce] Issued {value}.")
        return value

    async def verify_and_consume(self, value: str) -> bool:
        with self._lock:
            issued_at = self._issued.get(value) if isinstance(value, str) else None
            if issued_at is None:
                return False
            del self._issued[value]
            if self._clock() - issued_at > self.nonce_ttl_ms:
                logger.debug(f"[Nonce] {value} was presented after it expired.")
                return False
        return True

    async def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    async def clear(self) -> None:
        with self._lock:
            self._issued.clear()

    def _sweep_locked(self, now: int) -> int:
        expired = [value for value, issued_at in self._issued.items() if now - issued_at > self.nonce_ttl_ms]
        for value in expired:
            del self._issued[value]
        if expired:
            logger.debug(f"[Nonce] Swept {len(expired)} expired nonce(s).")
        return len(expired)


class RedisNonceRegistry(BaseNonceRegistry):
    """
    Registry shared through Redis. Each nonce is a key holding its issue
    time; GETDEL makes consumption atomic across gateway processes, and key
    expiry does the sweeping.

    Every registry also keeps a set of the nonces it issued itself, so that
    `clear()` on one gateway leaves the challenges of its peers alone.
    """
    _KEY_PREFIX = "cws:nonce:"
    _ISSUED_PREFIX = "cws:issued:"
    # Keys outlive the TTL slightly so expiry is decided by the age check, not by Redis.
    _EXPIRY_GRACE_MS = 1000

    def __init__(
        self,
        client: redis.Redis,
        nonce_ttl_ms: int = DEFAULT_NONCE_TTL_MS,
        clock: Callable[[], int] = now_ms,
        instance_id: Optional[str] = None,
    ):
        super().__init__(nonce_ttl_ms, clock)
        self._redis = client
        self.instance_id = instance_id or uuid.uuid4().hex
        self._issued_key = f"{self._ISSUED_PREFIX}{self.instance_id}"

    def _key(self, value: str) -> str:
        return f"{self._KEY_PREFIX}{value}"

    async def issue_nonce(self) -> str:
        expiry_ms = self.nonce_ttl_ms + self._EXPIRY_GRACE_MS
        while True:
            value = self._new_value()
            created = await self._redis.set(self._key(value), self._clock(), px=expiry_ms, nx=True)
            if created:
                await self._redis.sadd(self._issued_key, value)
                await self._redis.pexpire(self._issued_key, expiry_ms)
                logger.debug(f"[Nonce] Issued {value} (redis, instance {self.instance_id}).")
                return value

    async def verify_and_consume(self, value: str) -> bool:
        if not isinstance(value, str):
            return False
        raw = await self._redis.getdel(self._key(value))
        if raw is None:
            return False
        await self._redis.srem(self._issued_key, value)
        try:
            issued_at = int(raw)
        except ValueError:
            logger.warning(f"[Nonce] Corrupt issue time stored for {value}: {raw!r}")
            return False
        return self._clock() - issued_at <= self.nonce_ttl_ms

    async def sweep(self) -> int:
        return 0

    async def clear(self) -> None:
        """Drops the nonces this registry issued; other instances are untouched."""
        values = await self._redis.smembers(self._issued_key)
        await self._redis.delete(self._issued_key, *(self._key(value) for value in values))

    async def close(self) -> None:
        await self._redis.aclose()
