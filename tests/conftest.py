import os
import tempfile
from datetime import datetime, timedelta

# Must be set before `db`/`main` are imported: in-memory SQLite, no log file,
# and a throwaway directory for the default local object store.
os.environ.setdefault("TEST_SQLITE", "1")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOCAL_STORAGE_ROOT", tempfile.mkdtemp(prefix="livedrop_storage_"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session as _Session  # noqa: E402

import app.models  # noqa: E402,F401
from app.models.base import Base  # noqa: E402
from app.models.event import Event, Photo  # noqa: E402
from app.services.archive_service import ArchiveBuilder  # noqa: E402
from app.services.change_feed import ChangeFeed  # noqa: E402
from app.services.download_service import DownloadOrchestrator  # noqa: E402
from app.services.live_session import LiveSessionRegistry  # noqa: E402
from app.services.s3_storage import LocalStorageService  # noqa: E402
from db import engine  # noqa: E402

HOST = "host-1"
GUEST = "guest-1"
BASE_TS = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def db_session():
    """A session on a freshly created schema, shared with request handlers via db._TEST_SESSION."""
    import db as dbmod

    Base.metadata.create_all(bind=engine)
    session = _Session(bind=engine)
    dbmod._TEST_SESSION = session
    try:
        yield session
    finally:
        dbmod._TEST_SESSION = None
        try:
            session.rollback()
        finally:
            session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(tmp_path):
    return LocalStorageService(root=str(tmp_path / "blobs"))


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def tracked_downloads():
    return []


@pytest.fixture
def live_sessions():
    return LiveSessionRegistry()


@pytest.fixture
def client(db_session, store, feed, tracked_downloads, live_sessions):
    # Import the app here so the environment above is in place first.
    from main import app

    saved = (
        app.state.object_store,
        app.state.change_feed,
        app.state.download_orchestrator,
        app.state.live_sessions,
    )
    app.state.object_store = store
    app.state.change_feed = feed
    app.state.live_sessions = live_sessions
    app.state.download_orchestrator = DownloadOrchestrator(
        ArchiveBuilder(store, max_workers=4, fetch_timeout=5.0),
        tracker=lambda ids: tracked_downloads.append(list(ids)),
    )
    try:
        yield TestClient(app)
    finally:
        (
            app.state.object_store,
            app.state.change_feed,
            app.state.download_orchestrator,
            app.state.live_sessions,
        ) = saved


@pytest.fixture
def event(db_session):
    e = Event(Slug="party", Name="Summer Party", HostID=HOST)
    db_session.add(e)
    db_session.commit()
    return e


@pytest.fixture
def make_photo(db_session, store, event):
    """Create a photo row (and its blob unless `blob=False`)."""
    counter = {"n": 0}

    def _make(created_at=None, visible=True, blob=True, ext="jpg", user_id=GUEST, payload=None):
        counter["n"] += 1
        n = counter["n"]
        key = f"{event.Slug}/{user_id}-{1700000000000 + n}.{ext}" if ext else f"{event.Slug}/{user_id}-{n}"
        if blob:
            store.put(key, payload or f"photo-{n}".encode(), "image/jpeg")
        p = Photo(
            EventID=event.EventID,
            UserID=user_id,
            StoragePath=key,
            IsVisible=visible,
            CreatedAt=created_at or (BASE_TS + timedelta(minutes=n)),
            DownloadCount=0,
        )
        db_session.add(p)
        db_session.commit()
        return p

    return _make
