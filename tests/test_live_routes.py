import json
from datetime import datetime

import app.api.live as live_api
from app.core.errors import TransientNetworkError
from app.models import EventViewer, PhotoLike
from app.services.catalog import load_visible_photos
from app.services.change_feed import ChangeFeed
from app.services.live_session import LiveSession
from app.services.photo_record import FeedKind

GUEST = "guest-1"
HOST = "host-1"


def _listen(feed, event):
    got = []
    feed.subscribe(event.EventID, got.append, lambda s: None)
    return got


def test_live_data_lists_visible_newest_first(client, make_photo):
    old = make_photo(created_at=datetime(2024, 1, 1, 8, 0, 0))
    new = make_photo(created_at=datetime(2024, 1, 1, 9, 0, 0))
    make_photo(visible=False)
    r = client.get("/live/party/data")
    assert r.status_code == 200
    body = r.json()
    assert body["event"]["name"] == "Summer Party"
    assert [p["id"] for p in body["photos"]] == [new.PhotoID, old.PhotoID]
    assert body["photos"][0]["created_at"] == "2024-01-01T09:00:00Z"
    assert body["liked"] == []


def test_live_data_unknown_event(client, event):
    r = client.get("/live/missing/data")
    assert r.status_code == 404


def test_like_toggle_publishes_actor(client, make_photo, feed, event, db_session):
    photo = make_photo()
    got = _listen(feed, event)

    r = client.post(f"/live/party/photos/{photo.PhotoID}/like", headers={"X-User-ID": GUEST})
    assert r.json() == {"ok": True, "liked": True, "likes_count": 1}
    assert got[-1].kind == FeedKind.UPDATED
    assert got[-1].actor_id == GUEST and got[-1].liked is True
    assert got[-1].photo.likes_count == 1

    r = client.get("/live/party/data?sort=popular", headers={"X-User-ID": GUEST})
    assert r.json()["liked"] == [photo.PhotoID]
    assert r.json()["photos"][0]["likes_count"] == 1

    r = client.post(f"/live/party/photos/{photo.PhotoID}/like", headers={"X-User-ID": GUEST})
    assert r.json() == {"ok": True, "liked": False, "likes_count": 0}
    assert got[-1].liked is False
    assert db_session.query(PhotoLike).count() == 0


def _open_session(db_session, event, live_sessions, user_id):
    # Its own feed, so only the like request itself can touch the engine
    session = LiveSession(
        event.EventID, ChangeFeed(), lambda: load_visible_photos(db_session, event.EventID), poll_interval=0
    ).start()
    unregister = live_sessions.register(session, user_id)
    return session, unregister


def test_like_shows_on_own_stream_before_write(client, make_photo, event, db_session, live_sessions):
    photo = make_photo()
    session, unregister = _open_session(db_session, event, live_sessions, GUEST)
    other, _ = _open_session(db_session, event, live_sessions, "guest-2")
    seen = []
    session.engine.add_listener(lambda _v: seen.append(session.engine.photos()[0].likes_count))
    try:
        r = client.post(f"/live/party/photos/{photo.PhotoID}/like", headers={"X-User-ID": GUEST})
        assert r.json()["likes_count"] == 1
        assert seen[0] == 1
        assert session.engine.photos()[0].likes_count == 1
        assert session.engine.pending_overlays() == []
        # Another viewer's stream is left to the feed
        assert other.engine.photos()[0].likes_count == 0
    finally:
        unregister()
        session.close()
        other.close()
    assert live_sessions.for_user(event.EventID, GUEST) == []


def test_failed_like_write_reverts_own_stream(client, make_photo, event, db_session, live_sessions, monkeypatch):
    photo = make_photo()
    session, unregister = _open_session(db_session, event, live_sessions, GUEST)

    def broken(*_a, **_kw):
        raise TransientNetworkError("database unavailable")

    monkeypatch.setattr(live_api, "toggle_photo_like", broken)
    try:
        r = client.post(f"/live/party/photos/{photo.PhotoID}/like", headers={"X-User-ID": GUEST})
        assert r.status_code == 503
        assert session.engine.photos()[0].likes_count == 0
        assert session.engine.pending_overlays() == []
    finally:
        unregister()
        session.close()


def test_like_requires_user(client, make_photo):
    photo = make_photo()
    r = client.post(f"/live/party/photos/{photo.PhotoID}/like")
    assert r.status_code == 401


def test_like_on_photo_of_other_event_is_404(client, make_photo):
    r = client.post("/live/party/photos/not-a-photo/like", headers={"X-User-ID": GUEST})
    assert r.status_code == 404


def test_comment_lifecycle(client, make_photo, feed, event):
    photo = make_photo()
    got = _listen(feed, event)
    url = f"/live/party/photos/{photo.PhotoID}/comments"

    r = client.post(url, data={"content": "  great shot  "}, headers={"X-User-ID": GUEST})
    assert r.status_code == 201
    comment = r.json()["comment"]
    assert comment["content"] == "great shot"
    assert got[-1].photo.comments_count == 1

    assert [c["id"] for c in client.get(url).json()["comments"]] == [comment["id"]]

    r = client.delete(f"/live/party/comments/{comment['id']}", headers={"X-User-ID": "someone-else"})
    assert r.status_code == 403
    r = client.delete(f"/live/party/comments/{comment['id']}", headers={"X-User-ID": GUEST})
    assert r.status_code == 200
    assert got[-1].photo.comments_count == 0
    assert client.get(url).json()["comments"] == []


def test_comment_validation(client, make_photo):
    photo = make_photo()
    url = f"/live/party/photos/{photo.PhotoID}/comments"
    assert client.post(url, data={"content": "   "}, headers={"X-User-ID": GUEST}).status_code == 400
    assert client.post(url, data={"content": "x" * 501}, headers={"X-User-ID": GUEST}).status_code == 400
    assert client.post(url, data={"content": "x" * 500}, headers={"X-User-ID": GUEST}).status_code == 201


def test_presence_heartbeat_and_leave(client, event, db_session):
    assert client.post("/live/party/presence", headers={"X-User-ID": GUEST}).status_code == 200
    assert client.post("/live/party/presence", headers={"X-User-ID": GUEST}).status_code == 200
    assert db_session.query(EventViewer).count() == 1
    assert client.delete("/live/party/presence", headers={"X-User-ID": GUEST}).status_code == 200
    assert db_session.query(EventViewer).count() == 0


def test_stream_sends_initial_frame_and_cleans_up(client, make_photo, feed, event, db_session):
    photo = make_photo()
    with client.stream("GET", "/live/party/stream?limit=1", headers={"X-User-ID": HOST}) as r:
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        body = "".join(r.iter_text())

    lines = [line for line in body.splitlines() if line.startswith("data: ")]
    frame = json.loads(lines[0][len("data: "):])
    assert frame["connected"] is True
    assert [p["id"] for p in frame["photos"]] == [photo.PhotoID]
    assert "event: gallery" in body
    # Session closed: feed unsubscribed and presence removed
    assert feed.subscriber_count(event.EventID) == 0
    assert db_session.query(EventViewer).count() == 0
