import pytest
from structlog.testing import capture_logs

from feedcache.core import Freshness
from feedcache.refresh import RefreshCoordinator


@pytest.fixture
def coordinator(clock):
    return RefreshCoordinator(stale_while_revalidate=120, clock=clock)


def test_only_stale_records_refresh(coordinator):
    """Test that fresh, expired and missing records never ask for a refresh."""
    assert coordinator.should_refresh("k", Freshness.FRESH) is False
    assert coordinator.should_refresh("k", Freshness.EXPIRED) is False
    assert coordinator.should_refresh("k", None) is False
    assert coordinator.should_refresh("k", Freshness.STALE) is True


def test_mark_suppresses_refresh_within_window(coordinator, clock):
    """Test de-duplication of refresh signals for one key."""
    assert coordinator.should_refresh("k", Freshness.STALE) is True
    coordinator.mark_refreshed("k")
    assert coordinator.should_refresh("k", Freshness.STALE) is False

    # Other keys are unaffected
    assert coordinator.should_refresh("other", Freshness.STALE) is True

    clock.advance(119)
    assert coordinator.should_refresh("k", Freshness.STALE) is False
    clock.advance(1)
    assert coordinator.should_refresh("k", Freshness.STALE) is True


def test_forget(coordinator):
    coordinator.mark_refreshed("list:a")
    coordinator.mark_refreshed("list:b")
    coordinator.mark_refreshed("entity:a")

    coordinator.forget("list:a")
    assert coordinator.last_marked("list:a") is None

    coordinator.forget_prefix("list:")
    assert coordinator.last_marked("list:b") is None
    assert coordinator.last_marked("entity:a") is not None

    coordinator.clear_marks()
    assert coordinator.last_marked("entity:a") is None


def test_broadcast_in_registration_order(coordinator):
    """Test that subscribers are notified in the order they registered."""
    calls = []
    coordinator.subscribe(lambda: calls.append(1))
    coordinator.subscribe(lambda: calls.append(2))
    coordinator.subscribe(lambda: calls.append(3))

    assert coordinator.broadcast() == 3
    assert calls == [1, 2, 3]


def test_failing_subscriber_does_not_stop_others(coordinator):
    """Test that each subscriber runs in isolation."""
    calls = []

    def broken():
        raise RuntimeError("subscriber blew up")

    coordinator.subscribe(lambda: calls.append("first"))
    coordinator.subscribe(broken)
    coordinator.subscribe(lambda: calls.append("last"))

    with capture_logs() as logs:
        delivered = coordinator.broadcast()

    assert delivered == 2
    assert calls == ["first", "last"]
    errors = [log for log in logs if log["event"] == "error_occurred"]
    assert len(errors) == 1
    assert errors[0]["error_type"] == "RuntimeError"
    assert errors[0]["operation"] == "global_refresh"


def test_unsubscribe(coordinator):
    """Test removing a subscription, twice."""
    calls = []
    unsubscribe = coordinator.subscribe(lambda: calls.append("x"))
    assert coordinator.subscriber_count == 1

    unsubscribe()
    unsubscribe()

    assert coordinator.subscriber_count == 0
    assert coordinator.broadcast() == 0
    assert calls == []


def test_same_callback_subscribed_twice(coordinator):
    """Test that each registration is independent."""
    calls = []

    def callback():
        calls.append("x")

    first = coordinator.subscribe(callback)
    coordinator.subscribe(callback)
    first()

    assert coordinator.broadcast() == 1
    assert calls == ["x"]


def test_old_marks_are_pruned(coordinator, clock):
    """Test that marks past the window are dropped as new marks arrive."""
    for i in range(1000):
        coordinator.mark_refreshed(f"list:{i}")
        clock.advance(1)

    assert coordinator.mark_count == 120
    assert coordinator.last_marked("list:0") is None
    assert coordinator.last_marked("list:999") is not None


def test_remarking_moves_key_to_newest(coordinator, clock):
    """Test that pruning follows the latest mark of each key."""
    coordinator.mark_refreshed("a")
    coordinator.mark_refreshed("b")
    clock.advance(100)
    coordinator.mark_refreshed("a")
    clock.advance(50)
    coordinator.mark_refreshed("c")

    assert coordinator.last_marked("b") is None
    assert coordinator.last_marked("a") == clock() - 50
    assert coordinator.mark_count == 2
