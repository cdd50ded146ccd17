import threading
from datetime import datetime, timezone

from app.services.change_feed import ChangeFeed
from app.services.live_gallery import ConnectionState
from app.services.live_session import LiveSession, LiveSessionRegistry
from app.services.photo_record import FeedEvent, FeedKind, PhotoRecord


def rec(pid, day=1, visible=True):
    return PhotoRecord(str(pid), 7, "u", f"ev/{pid}.jpg", visible, datetime(2024, 1, day, tzinfo=timezone.utc))


def test_feed_status_and_unsubscribe_are_idempotent():
    feed = ChangeFeed()
    states, events = [], []
    unsubscribe = feed.subscribe(7, events.append, states.append)
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert feed.publish(7, FeedEvent(FeedKind.INSERTED, rec(1))) == 1
    assert feed.publish(8, FeedEvent(FeedKind.INSERTED, rec(2))) == 0
    unsubscribe()
    unsubscribe()
    assert states[-1] == ConnectionState.DISCONNECTED
    assert states.count(ConnectionState.DISCONNECTED) == 1
    assert feed.subscriber_count(7) == 0
    assert len(events) == 1


def test_feed_isolates_failing_subscriber():
    feed = ChangeFeed()
    got = []

    def broken(_event):
        raise RuntimeError("closed socket")

    feed.subscribe(7, broken, lambda s: None)
    feed.subscribe(7, got.append, lambda s: None)
    assert feed.publish(7, FeedEvent(FeedKind.INSERTED, rec(1))) == 1
    assert len(got) == 1


def test_session_seeds_and_follows_feed():
    feed = ChangeFeed()
    session = LiveSession(7, feed, lambda: [rec(1)], poll_interval=0)
    with session:
        assert session.engine.is_connected
        feed.publish(7, FeedEvent(FeedKind.INSERTED, rec(2, day=2)))
        assert [p.id for p in session.engine.get_sorted_view()] == ["2", "1"]
    assert session.closed
    assert session.engine.state == ConnectionState.DISCONNECTED
    assert feed.subscriber_count(7) == 0


def test_seed_failure_is_not_fatal():
    calls = {"n": 0}

    def fetch():
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConnectionError("db unreachable")
        return [rec(1)]

    session = LiveSession(7, ChangeFeed(), fetch, poll_interval=0).start()
    try:
        assert len(session.engine) == 0
        assert session.poll_once() is True
        assert len(session.engine) == 1
    finally:
        session.close()


def test_failed_poll_leaves_state_untouched():
    snapshots = [[rec(1), rec(2)]]

    def fetch():
        if not snapshots:
            raise TimeoutError("poll timed out")
        return snapshots.pop(0)

    session = LiveSession(7, ChangeFeed(), fetch, poll_interval=0).start()
    try:
        version = session.engine.version
        assert session.poll_once() is False
        assert session.poll_failures == 1
        assert session.engine.version == version
        assert len(session.engine) == 2
    finally:
        session.close()


def test_poll_thread_refreshes_and_stops_on_close():
    polled = threading.Event()
    snapshots = {"n": 0}

    def fetch():
        snapshots["n"] += 1
        if snapshots["n"] > 1:
            polled.set()
            return [rec(1), rec(3, day=3)]
        return [rec(1)]

    session = LiveSession(7, ChangeFeed(), fetch, poll_interval=0.01).start()
    assert polled.wait(2.0)
    session.close()
    assert "3" in session.engine
    count = snapshots["n"]
    threading.Event().wait(0.05)
    assert snapshots["n"] == count


def test_heartbeat_and_cleanup_hooks():
    beats, closed = [], []
    session = LiveSession(
        7,
        ChangeFeed(),
        lambda: [],
        poll_interval=0,
        heartbeat=lambda: beats.append(1),
        heartbeat_interval=60,
        on_close=lambda: closed.append(1),
    ).start()
    # One beat on start, the next after the interval
    assert beats == [1]
    session.close()
    session.close()
    assert closed == [1]


def test_cleanup_failure_is_logged_not_raised():
    def boom():
        raise RuntimeError("db gone")

    session = LiveSession(7, ChangeFeed(), lambda: [], poll_interval=0, on_close=boom).start()
    session.close()
    assert session.closed


def test_registry_applies_pending_like_to_users_sessions():
    registry = LiveSessionRegistry()
    mine = LiveSession(7, ChangeFeed(), lambda: [rec(1)], poll_interval=0).start()
    theirs = LiveSession(7, ChangeFeed(), lambda: [rec(1)], poll_interval=0).start()
    unregister = registry.register(mine, "me")
    registry.register(theirs, "you")
    try:
        pending = registry.begin_like(7, "1", "me", +1)
        assert mine.engine.photos()[0].likes_count == 1
        assert theirs.engine.photos()[0].likes_count == 0
        pending.rollback()
        assert mine.engine.photos()[0].likes_count == 0
        assert mine.engine.pending_overlays() == []

        registry.begin_like(7, "1", "me", +1).confirm(likes_count=1)
        assert mine.engine.photos()[0].likes_count == 1
        assert mine.engine.pending_overlays() == []
    finally:
        mine.close()
        theirs.close()
    # Closed sessions are skipped even before they unregister
    assert registry.for_user(7, "you") == []
    unregister()
    unregister()
    assert registry.for_user(7, "me") == []
    assert registry.begin_like(7, "1", "me", +1).engines == []
