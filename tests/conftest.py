"""Shared fixtures for vidcatalog tests."""

from datetime import datetime, timezone

import pytest

from vidcatalog import db
from vidcatalog.normalize import normalize_title

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def conn():
    """Fresh in-memory database with schema applied."""
    c = db.get_connection(db_path=":memory:")
    yield c
    c.close()


@pytest.fixture
def clock():
    return lambda: NOW


def make_group(conn, title, *, external_id=None, release_year=None):
    """Insert a work group and return its row."""
    row, _ = db.insert_or_fetch_group(
        conn,
        canonical_title=title,
        normalized_title=normalize_title(title),
        external_id=external_id,
        release_year=release_year,
    )
    conn.commit()
    return row


def make_copy(conn, *, group_id, video_id, score=50, is_primary=False,
              is_available=True, backup_priority=0, title="Test Movie",
              original_title=None, source_id="chan-1"):
    """Insert a copy and return its id."""
    copy_id = db.insert_copy(
        conn,
        source_video_id=video_id,
        title=title,
        group_id=group_id,
        source_id=source_id,
        original_title=original_title,
        is_available=is_available,
        quality_score=score,
        backup_priority=backup_priority,
    )
    if is_primary:
        db.set_primary(conn, copy_id, True)
    conn.commit()
    return copy_id
