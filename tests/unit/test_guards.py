import fakeredis
import pytest

from storefront.errors import AlreadyCreating, AlreadyInProgress
from storefront.utils.guards import InFlightGuard, RedisInFlightGuard


def test_memory_guard_is_exclusive_per_key():
    g = InFlightGuard()
    with g.hold("order-create:u1"):
        assert g.try_acquire("order-create:u1") is None
        with pytest.raises(AlreadyCreating):
            with g.hold("order-create:u1", AlreadyCreating):
                pass
        with g.hold("order-create:u2"):
            pass
    assert g.try_acquire("order-create:u1") is not None


def test_memory_guard_releases_on_error():
    g = InFlightGuard()
    with pytest.raises(RuntimeError):
        with g.hold("k"):
            raise RuntimeError("boom")
    assert g.try_acquire("k") is not None


def test_memory_markers():
    g = InFlightGuard()
    assert not g.seen("cart-merged:u1:g1:p1")
    g.remember("cart-merged:u1:g1:p1")
    assert g.seen("cart-merged:u1:g1:p1")
    g.remember("short", ttl=-1)
    assert not g.seen("short")


def test_expired_markers_are_purged_on_remember():
    g = InFlightGuard()
    for i in range(100):
        g.remember(f"cart-merged:u1:g1:p{i}", ttl=-1)
    g.remember("cart-merged:u1:g2:p1")
    assert list(g._markers) == ["cart-merged:u1:g2:p1"]


def test_redis_guard_set_nx_and_owner_release():
    r = fakeredis.FakeRedis(decode_responses=True)
    g = RedisInFlightGuard(r, ttl=30)

    token = g.try_acquire("order-create:u1")
    assert token
    assert g.try_acquire("order-create:u1") is None
    assert 0 < r.ttl("guard:order-create:u1") <= 30

    # un autre détenteur ne libère pas le verrou
    g.release("order-create:u1", "not-mine")
    assert r.get("guard:order-create:u1") == token
    g.release("order-create:u1", token)
    assert not r.exists("guard:order-create:u1")


def test_redis_guard_hold_and_markers():
    r = fakeredis.FakeRedis(decode_responses=True)
    g = RedisInFlightGuard(r)
    with g.hold("cart-merge:u1"):
        with pytest.raises(AlreadyInProgress):
            with g.hold("cart-merge:u1"):
                pass
    assert not r.exists("guard:cart-merge:u1")

    g.remember("cart-merged:u1:g1:p1")
    assert g.seen("cart-merged:u1:g1:p1")
    assert not g.seen("cart-merged:u1:g1:p2")
