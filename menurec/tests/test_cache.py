from __future__ import annotations

from unittest.mock import patch

from conftest import add, new_user, seed_taste_groups
from menurec.recommendations.cache import cache_get, cache_set, clear_cache, get_cache_stats
from menurec.recommendations.models import Context
from menurec.recommendations.strategies import CollaborativeStrategy


def test_cache_miss_then_hit():
    key = {"kind": "neighbors", "user": "u1", "size": 10}
    assert cache_get(key) is None
    cache_set(key, [("u2", 0.9)])
    assert cache_get(key) == [("u2", 0.9)]

    stats = get_cache_stats()
    assert stats["misses"] == 1
    assert stats["hits"] == 1
    assert stats["size"] == 1
    assert stats["hitRate"] == 50.0


def test_cache_key_ignores_dict_order():
    cache_set({"a": 1, "b": 2}, "value")
    assert cache_get({"b": 2, "a": 1}) == "value"


@patch("menurec.recommendations.cache.time.time")
def test_cache_entries_expire(mock_time):
    mock_time.return_value = 1000.0
    cache_set({"kind": "neighbors"}, ["x"])

    mock_time.return_value = 1000.0 + 299
    assert cache_get({"kind": "neighbors"}, ttl=300) == ["x"]

    mock_time.return_value = 1000.0 + 301
    assert cache_get({"kind": "neighbors"}, ttl=300) is None
    assert get_cache_stats()["size"] == 0


def test_clear_cache_resets_stats():
    cache_set({"k": 1}, 1)
    cache_get({"k": 1})
    clear_cache()
    assert get_cache_stats() == {"size": 0, "hits": 0, "misses": 0, "hitRate": 0.0}


def test_neighbour_lists_are_cached(store, catalog):
    seed_taste_groups(store)
    user = new_user()
    for item in ("101", "102", "103"):
        add(store, user, item, "purchase")
    strategy = CollaborativeStrategy(store)
    candidates = catalog.available_ids()

    first = strategy.score(user, candidates, Context())
    assert get_cache_stats()["misses"] == 1
    second = strategy.score(user, candidates, Context())
    assert get_cache_stats()["hits"] == 1
    assert first == second


def test_new_interactions_invalidate_neighbours(store, catalog):
    seed_taste_groups(store)
    user = new_user()
    for item in ("101", "102", "103"):
        add(store, user, item, "purchase")
    strategy = CollaborativeStrategy(store)
    candidates = catalog.available_ids()

    strategy.score(user, candidates, Context())
    add(store, user, "104", "click")
    strategy.score(user, candidates, Context())
    assert get_cache_stats()["misses"] == 2


def test_version_mismatch_is_a_miss():
    cache_set({"kind": "neighbors", "user": "u1"}, ["old"], version=3)
    assert cache_get({"kind": "neighbors", "user": "u1"}, version=4) is None
    assert get_cache_stats()["size"] == 0


@patch("menurec.recommendations.cache._MAX_ENTRIES", 3)
def test_oldest_entries_are_evicted_at_capacity():
    for i in range(5):
        cache_set({"k": i}, i)
    assert get_cache_stats()["size"] == 3
    assert cache_get({"k": 0}) is None
    assert cache_get({"k": 4}) == 4


def test_cache_size_bounded_across_many_interactions(store, catalog):
    seed_taste_groups(store)
    user = new_user()
    for item in ("101", "102", "103"):
        add(store, user, item, "purchase")
    strategy = CollaborativeStrategy(store)
    candidates = catalog.available_ids()

    for _ in range(200):
        strategy.score(user, candidates, Context())
        add(store, new_user(), "104", "view")
    stats = get_cache_stats()
    assert stats["size"] == 1
    assert stats["misses"] == 200
