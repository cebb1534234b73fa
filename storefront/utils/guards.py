"""
Verrous « opération en cours » par clé (ex: order-create:<user_id>, cart-merge:<user_id>).

- InFlightGuard: ensemble de clés en mémoire protégé par un Lock (un seul process).
- RedisInFlightGuard: SET NX EX + suppression atomique (Lua) pour plusieurs workers.
Les deux échouent immédiatement (pas d'attente) si la clé est déjà tenue.
"""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Set, Type

import redis
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from storefront.config import GUARD_REDIS_URL, GUARD_TTL_SECONDS
from storefront.errors import AlreadyInProgress

logger = logging.getLogger(__name__)

# Compare-and-delete: ne libère que si la valeur est toujours la nôtre
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


MARKER_TTL_SECONDS = 24 * 60 * 60


class InFlightGuard:
    def __init__(self):
        self._lock = threading.Lock()
        self._held: Set[str] = set()
        self._markers: Dict[str, float] = {}

    def remember(self, key: str, ttl: int = MARKER_TTL_SECONDS) -> None:
        """Marque une opération comme faite (ex: ligne de panier invité déjà fusionnée)."""
        now = time.monotonic()
        with self._lock:
            # purge des marqueurs expirés
            for k in [k for k, exp in self._markers.items() if exp < now]:
                del self._markers[k]
            self._markers[key] = now + ttl

    def seen(self, key: str) -> bool:
        with self._lock:
            expires = self._markers.get(key)
            if expires is None:
                return False
            if expires < time.monotonic():
                del self._markers[key]
                return False
            return True

    def try_acquire(self, key: str) -> Optional[str]:
        with self._lock:
            if key in self._held:
                return None
            self._held.add(key)
            return key

    def release(self, key: str, token: Optional[str] = None) -> None:
        with self._lock:
            self._held.discard(key)

    @contextmanager
    def hold(self, key: str, error: Type[AlreadyInProgress] = AlreadyInProgress) -> Iterator[None]:
        token = self.try_acquire(key)
        if token is None:
            logger.info("guard busy key=%s", key)
            raise error()
        try:
            yield
        finally:
            self.release(key, token)


class RedisInFlightGuard(InFlightGuard):
    """Même contrat que InFlightGuard, partagé entre workers via Redis. Le TTL évite un verrou orphelin."""

    def __init__(self, client: "redis.Redis", ttl: int = GUARD_TTL_SECONDS, prefix: str = "guard:"):
        self.redis = client
        self.ttl = ttl
        self.prefix = prefix

    @redis_retry()
    def try_acquire(self, key: str) -> Optional[str]:
        token = uuid.uuid4().hex
        ok = self.redis.set(name=self.prefix + key, value=token, nx=True, ex=self.ttl)
        return token if ok else None

    @redis_retry()
    def release(self, key: str, token: Optional[str] = None) -> None:
        if token is None:
            return
        self.redis.eval(_RELEASE_LUA, 1, self.prefix + key, token)

    @redis_retry()
    def remember(self, key: str, ttl: int = MARKER_TTL_SECONDS) -> None:
        self.redis.set(name=self.prefix + "done:" + key, value="1", ex=ttl)

    @redis_retry()
    def seen(self, key: str) -> bool:
        return bool(self.redis.exists(self.prefix + "done:" + key))


_guard: Optional[InFlightGuard] = None

def get_guard() -> InFlightGuard:
    """Verrou partagé du process: Redis si GUARD_REDIS_URL est défini, sinon mémoire."""
    global _guard
    if _guard is None:
        if GUARD_REDIS_URL:
            _guard = RedisInFlightGuard(redis.Redis.from_url(GUARD_REDIS_URL, decode_responses=True))
            logger.info("In-flight guard backed by redis")
        else:
            _guard = InFlightGuard()
    return _guard
