import io
import threading
import time
import zipfile
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.errors import NoContentError, ObjectNotFound
from app.services.archive_service import (
    ArchiveBuilder,
    ArchiveRecord,
    EntryOutcome,
    archive_filename,
    entry_name,
    extension_for,
    normalize_timestamp,
    safe_label,
)

T0 = datetime(2024, 1, 5, 13, 45, 9, 123456)


class FakeStore:
    def __init__(self, blobs, delays=None, gate=None):
        self.blobs = blobs
        self.delays = delays or {}
        self.gate = gate or {}
        self.calls = []

    def get(self, key):
        self.calls.append(key)
        if key in self.gate:
            self.gate[key].wait(5)
        time.sleep(self.delays.get(key, 0))
        if key not in self.blobs:
            raise ObjectNotFound(key)
        return self.blobs[key]


def records(n, ext="jpg"):
    return [ArchiveRecord(id=f"p{i}", storage_path=f"ev/p{i}.{ext}", created_at=T0 + timedelta(seconds=i)) for i in range(1, n + 1)]


def zip_names(content):
    with zipfile.ZipFile(io.BytesIO(content)) as zf:
        return zf.namelist()


def test_timestamp_normalization():
    assert normalize_timestamp(T0) == "2024-01-05T13-45-09"
    aware = datetime(2024, 1, 5, 14, 45, 9, tzinfo=timezone(timedelta(hours=1)))
    assert normalize_timestamp(aware) == "2024-01-05T13-45-09"


@pytest.mark.parametrize(
    "path,expected",
    [
        ("ev/a.JPG", "jpg"),
        ("ev/a.png", "png"),
        ("ev/noext", "jpg"),
        ("ev/.hidden", "jpg"),
        ("ev.d/a", "jpg"),
        ("ev/a.", "jpg"),
    ],
)
def test_extension_defaults_to_jpg(path, expected):
    assert extension_for(path) == expected


def test_entry_name_uses_three_digit_sequence():
    rec = ArchiveRecord("x", "ev/x.webp", T0)
    assert entry_name(rec, 7) == "2024-01-05T13-45-09_007.webp"
    assert entry_name(rec, 1234) == "2024-01-05T13-45-09_1234.webp"


def test_labels_and_filename():
    assert safe_label('Bob\'s "Party" / 2024') == "Bob's _Party_ _ 2024"
    assert safe_label("", "photos") == "photos"
    assert safe_label(None, "photos") == "photos"
    assert archive_filename("Party", 3, date(2024, 1, 6)) == "Party_2024-01-06_3-photos.zip"


def test_names_follow_input_order_not_completion_order():
    recs = records(4)
    blobs = {r.storage_path: r.id.encode() for r in recs}
    # First record finishes last
    store = FakeStore(blobs, delays={"ev/p1.jpg": 0.2})
    result = ArchiveBuilder(store, max_workers=4).build(recs, label="Party", today=date(2024, 1, 6))
    with zipfile.ZipFile(io.BytesIO(result.content)) as zf:
        assert zf.namelist() == [
            "Party/2024-01-05T13-45-10_001.jpg",
            "Party/2024-01-05T13-45-11_002.jpg",
            "Party/2024-01-05T13-45-12_003.jpg",
            "Party/2024-01-05T13-45-13_004.jpg",
        ]
        assert zf.read("Party/2024-01-05T13-45-10_001.jpg") == b"p1"
    assert result.filename == "Party_2024-01-06_4-photos.zip"
    assert result.folder == "Party"


def test_repeated_builds_are_identical_in_names():
    recs = records(3)
    store = FakeStore({r.storage_path: b"x" for r in recs})
    builder = ArchiveBuilder(store, max_workers=2)
    first = zip_names(builder.build(recs, label="E").content)
    second = zip_names(builder.build(recs, label="E").content)
    assert first == second


def test_partial_failure_keeps_gaps_in_sequence():
    recs = records(5)
    blobs = {r.storage_path: b"data" for r in recs}
    del blobs["ev/p2.jpg"]
    blobs["ev/p4.jpg"] = b""  # empty object counts as failed
    result = ArchiveBuilder(FakeStore(blobs), max_workers=3).build(recs, label="E", today=date(2024, 1, 6))

    assert result.requested_count == 5
    assert result.included_count == 3
    assert [e.sequence for e in result.included] == [1, 3, 5]
    assert [e.photo_id for e in result.failed] == ["p2", "p4"]
    assert all(e.outcome == EntryOutcome.FETCH_FAILED for e in result.failed)
    assert [n.rsplit("_", 1)[-1] for n in zip_names(result.content)] == ["001.jpg", "003.jpg", "005.jpg"]
    assert result.filename == "E_2024-01-06_3-photos.zip"

    partial = result.partial_failure()
    assert partial.failed_ids == ["p2", "p4"]
    assert partial.included == 3
    assert partial.requested == 5


def test_no_partial_failure_when_everything_arrives():
    recs = records(2)
    result = ArchiveBuilder(FakeStore({r.storage_path: b"x" for r in recs})).build(recs)
    assert result.partial_failure() is None
    assert result.folder == "photos"


def test_all_failures_raise_no_content():
    with pytest.raises(NoContentError):
        ArchiveBuilder(FakeStore({})).build(records(3))


def test_empty_input_raises_no_content():
    store = FakeStore({})
    with pytest.raises(NoContentError):
        ArchiveBuilder(store).build([])
    assert store.calls == []


def test_slow_fetch_is_dropped_after_budget():
    recs = records(2)
    gate = threading.Event()
    store = FakeStore({r.storage_path: b"x" for r in recs}, gate={"ev/p2.jpg": gate})
    builder = ArchiveBuilder(store, max_workers=2, fetch_timeout=0.2)
    try:
        started = time.monotonic()
        result = builder.build(recs, label="E")
        assert time.monotonic() - started < 2.0
    finally:
        gate.set()
    assert [e.photo_id for e in result.included] == ["p1"]
    assert result.failed[0].error == "timed out"


def test_fetches_are_bounded_by_worker_count():
    active = {"now": 0, "peak": 0}
    lock = threading.Lock()

    class CountingStore:
        def get(self, key):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            time.sleep(0.02)
            with lock:
                active["now"] -= 1
            return b"x"

    result = ArchiveBuilder(CountingStore(), max_workers=3).build(records(9))
    assert result.included_count == 9
    assert active["peak"] <= 3
