import pytest

from feedcache.core import EntityStore, Freshness, classify
from feedcache.errors import MissingEntityId


@pytest.fixture
def store(clock):
    """Create a small entity store on the fake clock."""
    return EntityStore(max_entries=3, max_age=1800, fresh_duration=300, clock=clock)


def test_classify_boundaries():
    """Test the fresh/stale/expired thresholds."""
    assert classify(0, 300, 1800) is Freshness.FRESH
    assert classify(299.9, 300, 1800) is Freshness.FRESH
    assert classify(300, 300, 1800) is Freshness.STALE
    assert classify(1799.9, 300, 1800) is Freshness.STALE
    assert classify(1800, 300, 1800) is Freshness.EXPIRED


def test_put_get_remove(store):
    """Test basic store operations."""
    assert store.put({"id": "p1", "likes": 1}) == "p1"
    assert store.get("p1") == {"id": "p1", "likes": 1}
    assert "p1" in store

    assert store.remove("p1") is True
    assert store.get("p1") is None
    # Idempotent
    assert store.remove("p1") is False


def test_put_requires_id(store):
    """Test that a payload without an id is rejected."""
    with pytest.raises(MissingEntityId):
        store.put({"name": "no id"})

    with pytest.raises(ValueError):
        store.put({"id": None})


def test_lazy_expiry(store, clock):
    """Test that an entry is readable until max_age and absent from then on."""
    store.put({"id": "u1"})

    clock.advance(1799)
    assert store.get("u1") == {"id": "u1"}

    clock.advance(1)
    assert store.get("u1") is None
    assert len(store) == 0


def test_merge(store, clock):
    """Test shallow merge into an existing entry."""
    store.put({"id": "p1", "likes": 1, "title": "hello"})
    clock.advance(400)
    assert store.freshness("p1") is Freshness.STALE

    assert store.merge("p1", {"likes": 5}) is True
    assert store.get("p1") == {"id": "p1", "likes": 5, "title": "hello"}
    # Merge refreshes cached_at
    assert store.freshness("p1") is Freshness.FRESH


def test_merge_never_creates(store):
    """Test that merging into a missing id is a no-op."""
    assert store.merge("ghost", {"likes": 1}) is False
    assert store.get("ghost") is None
    assert len(store) == 0


def test_merge_keeps_id(store):
    """Test that a merge cannot re-key an entity."""
    store.put({"id": "p1"})
    store.merge("p1", {"id": "p2", "likes": 2})

    assert store.get("p1") == {"id": "p1", "likes": 2}
    assert store.get("p2") is None


def test_merge_into_expired_is_noop(store, clock):
    """Test that an expired entity cannot be revived by a merge."""
    store.put({"id": "p1"})
    clock.advance(1800)

    assert store.merge("p1", {"likes": 1}) is False
    assert store.get("p1") is None


def test_evicts_oldest(store, clock):
    """Test that exceeding capacity evicts exactly the oldest entry."""
    for i in range(4):
        store.put({"id": f"p{i}"})
        clock.advance(1)

    assert len(store) == 3
    assert store.get("p0") is None
    for i in range(1, 4):
        assert store.get(f"p{i}") == {"id": f"p{i}"}


def test_eviction_tie_prefers_least_recently_written(store):
    """Test that entries written at the same instant evict in write order."""
    store.put({"id": "a"})
    store.put({"id": "b"})
    store.put({"id": "c"})
    store.put({"id": "a", "v": 2})  # rewrite moves 'a' to the back
    store.put({"id": "d"})

    assert store.get("b") is None
    assert store.get("a") == {"id": "a", "v": 2}
    assert store.get("c") is not None
    assert store.get("d") is not None


def test_reads_are_copies(store):
    """Test that mutating a read result leaves the cache untouched."""
    payload = {"id": "p1", "likes": 1}
    store.put(payload)
    payload["likes"] = 99

    read = store.get("p1")
    read["likes"] = 42

    assert store.get("p1")["likes"] == 1
    assert store.items()["p1"]["likes"] == 1


def test_items_skips_expired(store, clock):
    """Test that items() reports only live entries."""
    store.put({"id": "old"})
    clock.advance(1000)
    store.put({"id": "new"})
    clock.advance(900)

    assert list(store.items()) == ["new"]


def test_age_and_freshness_of_missing(store):
    """Test introspection of ids that were never stored."""
    assert store.age("nope") is None
    assert store.freshness("nope") is None


def test_custom_id_field(clock):
    """Test stores keyed by a field other than 'id'."""
    store = EntityStore(max_entries=2, max_age=60, fresh_duration=10, id_field="slug", clock=clock)
    store.put({"slug": "hello-world", "title": "Hello"})

    assert store.get("hello-world")["title"] == "Hello"
    assert store.stats() == {"size": 1, "max_size": 2}


def test_len_counts_only_live_entries(store, clock):
    """Test that expired entries no read has dropped yet are not counted."""
    store.put({"id": "p1"})
    clock.advance(1000)
    store.put({"id": "p2"})
    clock.advance(800)

    assert len(store) == 1
    assert store.stats()["size"] == 1
    assert store.purge_expired() == 1
    assert list(store) == ["p2"]


def test_drop_hook(clock):
    """Test that eviction and expiry report the dropped id, removal does not."""
    dropped = []
    store = EntityStore(max_entries=2, max_age=1800, fresh_duration=300,
                        clock=clock, on_drop=dropped.append)
    store.put({"id": "p1"})
    clock.advance(1)
    store.put({"id": "p2"})
    clock.advance(1)
    store.put({"id": "p3"})
    assert dropped == ["p1"]

    store.remove("p3")
    clock.advance(1800)
    assert store.get("p2") is None
    assert dropped == ["p1", "p2"]
