import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.settings import settings

# Tests opt into an in-memory SQLite DB by setting TEST_SQLITE=1 before import.
if os.getenv("TEST_SQLITE") == "1":
    # Use StaticPool so the same in-memory DB is reused across connections.
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    _connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        # Background telemetry and live-session polls open sessions off the request thread
        _connect_args["check_same_thread"] = False
    engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Tests set a shared transactional session here so in-process handlers use it.
_TEST_SESSION = None


def get_db():
    if _TEST_SESSION is not None:
        yield _TEST_SESSION
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for work done outside a request (background threads, live sessions)."""
    if _TEST_SESSION is not None:
        yield _TEST_SESSION
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
