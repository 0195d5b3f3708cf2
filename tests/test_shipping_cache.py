"""
Tests for the shipping quote LRU/TTL cache.
"""
import pytest

from app.services.shipping_cache import ShippingQuoteCache, make_cache_key


@pytest.fixture
def cache(fake_clock):
    return ShippingQuoteCache(ttl_seconds=3600, max_size=3, clock=fake_clock.monotonic)


def test_cache_key_format():
    assert make_cache_key("p1", "fr", None) == "shipping:p1:FR:default"
    assert make_cache_key("p1", "FR", "v2") == "shipping:p1:FR:v2"


def test_hit_within_ttl(cache, fake_clock):
    cache.set("p1", "FR", None, "outcome")
    fake_clock.now += 3599

    assert cache.get("p1", "FR") == "outcome"
    assert cache.get_stats()["hits"] == 1


def test_expired_entry_is_a_miss(cache, fake_clock):
    cache.set("p1", "FR", None, "outcome")
    fake_clock.now += 3600

    assert cache.get("p1", "FR") is None
    assert len(cache) == 0


def test_lru_eviction(cache):
    cache.set("p1", "FR", None, 1)
    cache.set("p2", "FR", None, 2)
    cache.set("p3", "FR", None, 3)
    cache.get("p1", "FR")  # p1 becomes most recent
    cache.set("p4", "FR", None, 4)

    assert cache.get("p2", "FR") is None
    assert cache.get("p1", "FR") == 1
    assert cache.get_stats()["evictions"] == 1


def test_variant_keys_are_distinct(cache):
    cache.set("p1", "FR", "v1", "a")
    cache.set("p1", "FR", None, "b")

    assert cache.get("p1", "FR", "v1") == "a"
    assert cache.get("p1", "FR") == "b"


def test_invalidate_single_and_product(cache):
    cache.set("p1", "FR", None, "a")
    cache.set("p1", "DE", None, "b")
    cache.set("p2", "FR", None, "c")

    assert cache.invalidate("p1", "FR") == 1
    assert cache.invalidate("p1", "FR") == 0
    assert cache.invalidate("p1") == 1
    assert cache.get("p2", "FR") == "c"


def test_clear(cache):
    cache.set("p1", "FR", None, "a")
    cache.clear()

    assert len(cache) == 0
