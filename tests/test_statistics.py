from datetime import datetime, timedelta, timezone

from app.models import EventViewer, Photo
from app.services import statistics
from app.services.statistics import (
    get_event_statistics,
    increment_download_count,
    remove_viewer_presence,
    track_downloads_in_background,
    track_viewer_presence,
    upload_distribution,
)


def test_upload_distribution_has_24_buckets():
    hours = [datetime(2024, 1, 1, 9, 5), datetime(2024, 1, 1, 9, 55), datetime(2024, 1, 1, 23, 0)]
    dist = upload_distribution(hours)
    assert [b["hour"] for b in dist] == list(range(24))
    assert dist[9]["count"] == 2
    assert dist[23]["count"] == 1
    assert sum(b["count"] for b in dist) == 3


def test_viewer_presence_upsert_and_online_window(db_session, event):
    track_viewer_presence(db_session, event.EventID, "a")
    track_viewer_presence(db_session, event.EventID, "a")
    track_viewer_presence(db_session, event.EventID, "b")
    stale = db_session.query(EventViewer).filter(EventViewer.UserID == "b").one()
    stale.LastSeenAt = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=10)
    db_session.commit()

    stats = get_event_statistics(db_session, event.EventID, online_window_seconds=300)
    assert stats["online_viewers"] == 1

    remove_viewer_presence(db_session, event.EventID, "a")
    assert get_event_statistics(db_session, event.EventID)["online_viewers"] == 0


def test_statistics_for_empty_event(db_session, event):
    stats = get_event_statistics(db_session, event.EventID)
    assert stats["total_photos"] == 0
    assert stats["today_photos"] == 0
    assert stats["total_downloads"] == 0
    assert len(stats["upload_distribution"]) == 24


def test_background_tracking_increments(db_session, make_photo):
    photo = make_photo()
    t = track_downloads_in_background([photo.PhotoID])
    t.join(5)
    db_session.expire_all()
    assert db_session.query(Photo).one().DownloadCount == 1
    increment_download_count(db_session, photo.PhotoID)
    db_session.expire_all()
    assert db_session.query(Photo).one().DownloadCount == 2


def test_background_tracking_failure_is_swallowed(monkeypatch):
    def boom(db, ids):
        raise RuntimeError("db down")

    monkeypatch.setattr(statistics, "increment_download_counts", boom)
    t = track_downloads_in_background(["x"])
    t.join(5)
    assert not t.is_alive()
