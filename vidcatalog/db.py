"""SQLite schema, connection, and all DB operations."""

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone

from vidcatalog.config import DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS work_groups (
    id                INTEGER PRIMARY KEY,
    canonical_title   TEXT NOT NULL,
    normalized_title  TEXT NOT NULL,
    external_id       TEXT UNIQUE,
    release_year      INTEGER,
    merged_into       INTEGER REFERENCES work_groups(id),
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_groups_normalized ON work_groups(normalized_title);
CREATE INDEX IF NOT EXISTS idx_groups_year ON work_groups(release_year);

CREATE TABLE IF NOT EXISTS channels (
    id                TEXT PRIMARY KEY,
    name              TEXT,
    title_pattern     TEXT,
    pattern_analyzed  INTEGER DEFAULT 0,
    updated_at        TEXT
);

CREATE TABLE IF NOT EXISTS copies (
    id                INTEGER PRIMARY KEY,
    source_video_id   TEXT NOT NULL UNIQUE,
    group_id          INTEGER REFERENCES work_groups(id),
    source_id         TEXT,
    original_title    TEXT,
    title             TEXT NOT NULL,
    view_count        INTEGER,
    like_count        INTEGER,
    published_at      TEXT,
    is_embeddable     INTEGER DEFAULT 0,
    is_available      INTEGER DEFAULT 1,
    quality_score     INTEGER DEFAULT 0,
    is_primary        INTEGER DEFAULT 0,
    backup_priority   INTEGER DEFAULT 0,
    added_at          TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_copies_group_primary ON copies(group_id, is_primary);
CREATE INDEX IF NOT EXISTS idx_copies_source ON copies(source_id);

CREATE TABLE IF NOT EXISTS failover_events (
    id              INTEGER PRIMARY KEY,
    group_id        INTEGER NOT NULL REFERENCES work_groups(id),
    old_primary_id  INTEGER REFERENCES copies(id),
    new_primary_id  INTEGER REFERENCES copies(id),
    triggered_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS admin_alerts (
    id          INTEGER PRIMARY KEY,
    alert_type  TEXT NOT NULL,
    group_id    INTEGER REFERENCES work_groups(id),
    message     TEXT NOT NULL,
    severity    TEXT DEFAULT 'warning',
    resolved    INTEGER DEFAULT 0,
    created_at  TEXT NOT NULL
);
"""

# Columns update_copy() may touch; everything else goes through a
# dedicated function (is_primary only via set_primary).
_COPY_UPDATABLE = frozenset({
    "title", "original_title", "view_count", "like_count", "published_at",
    "is_embeddable", "is_available", "quality_score", "backup_priority",
    "group_id",
})


class RecordNotFound(LookupError):
    """A maintenance entry point was given an id with no matching row."""


def _now():
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path=None):
    """Get a SQLite connection, creating the DB and schema if needed."""
    path = db_path or DB_PATH
    if path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    return conn


@contextmanager
def transaction(conn):
    """Run a block inside a write transaction, taking the write lock up front.

    ``BEGIN IMMEDIATE`` acquires SQLite's reserved lock before the first read,
    so a read-compare-write inside the block cannot interleave with another
    writer.  Nested use joins the outer transaction.
    """
    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


# ── Work groups ────────────────────────────────────────────────────────

def get_group(conn, group_id):
    return conn.execute("SELECT * FROM work_groups WHERE id = ?", (group_id,)).fetchone()


def group_by_external_id(conn, external_id):
    """Group holding ``external_id``, following merges to the surviving group."""
    row = conn.execute(
        "SELECT * FROM work_groups WHERE external_id = ?", (str(external_id),)
    ).fetchone()
    return surviving_group(conn, row)


def surviving_group(conn, group):
    """Follow ``merged_into`` links until an unmerged group is reached."""
    seen = set()
    while group is not None and group["merged_into"] is not None:
        if group["id"] in seen:
            raise ValueError(f"Merge cycle at group {group['id']}")
        seen.add(group["id"])
        group = get_group(conn, group["merged_into"])
    return group


def insert_or_fetch_group(conn, *, canonical_title, normalized_title,
                          external_id=None, release_year=None):
    """Insert a work group, or fetch the existing one holding ``external_id``.

    Returns ``(row, created)``.  Without an external id there is nothing to
    conflict on and a new row is always inserted.
    """
    now = _now()
    external_id = str(external_id) if external_id is not None else None
    cur = conn.execute(
        """INSERT INTO work_groups
           (canonical_title, normalized_title, external_id, release_year,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(external_id) DO NOTHING""",
        (canonical_title, normalized_title, external_id, release_year, now, now),
    )
    if cur.rowcount == 1:
        return get_group(conn, cur.lastrowid), True
    return group_by_external_id(conn, external_id), False


def set_group_external_id(conn, group_id, external_id):
    """Attach an external id to a group that has none yet.

    Returns True when the group was updated.
    """
    cur = conn.execute(
        """UPDATE work_groups SET external_id = ?, updated_at = ?
           WHERE id = ? AND external_id IS NULL""",
        (str(external_id), _now(), group_id),
    )
    return cur.rowcount == 1


def clear_group_external_id(conn, group_id):
    conn.execute(
        "UPDATE work_groups SET external_id = NULL, updated_at = ? WHERE id = ?",
        (_now(), group_id),
    )


def groups_in_year_window(conn, year=None, tolerance=1):
    """Active (unmerged) groups whose release year is within ±tolerance.

    Groups without a year, or a search without a year, always qualify.
    """
    return conn.execute(
        """SELECT * FROM work_groups
           WHERE merged_into IS NULL
             AND (? IS NULL OR release_year IS NULL
                  OR ABS(release_year - ?) <= ?)
           ORDER BY id""",
        (year, year, tolerance),
    ).fetchall()


def duplicate_normalized_titles(conn):
    rows = conn.execute(
        """SELECT normalized_title FROM work_groups
           WHERE merged_into IS NULL AND normalized_title != ''
           GROUP BY normalized_title
           HAVING COUNT(*) > 1
           ORDER BY normalized_title"""
    ).fetchall()
    return [row["normalized_title"] for row in rows]


def groups_by_normalized_title(conn, normalized_title):
    return conn.execute(
        """SELECT * FROM work_groups
           WHERE normalized_title = ? AND merged_into IS NULL
           ORDER BY id""",
        (normalized_title,),
    ).fetchall()


def mark_group_merged(conn, group_id, into_group_id):
    conn.execute(
        "UPDATE work_groups SET merged_into = ?, updated_at = ? WHERE id = ?",
        (into_group_id, _now(), group_id),
    )


# ── Copies ─────────────────────────────────────────────────────────────

def insert_copy(conn, *, source_video_id, title, group_id=None, source_id=None,
                original_title=None, view_count=None, like_count=None,
                published_at=None, is_embeddable=False, is_available=True,
                quality_score=0, backup_priority=0):
    now = _now()
    cur = conn.execute(
        """INSERT INTO copies
           (source_video_id, group_id, source_id, original_title, title,
            view_count, like_count, published_at, is_embeddable, is_available,
            quality_score, is_primary, backup_priority, added_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
        (source_video_id, group_id, source_id, original_title, title,
         view_count, like_count, published_at, int(bool(is_embeddable)),
         int(bool(is_available)), quality_score, backup_priority, now, now),
    )
    return cur.lastrowid


def get_copy(conn, copy_id):
    return conn.execute("SELECT * FROM copies WHERE id = ?", (copy_id,)).fetchone()


def copy_by_video_id(conn, source_video_id):
    return conn.execute(
        "SELECT * FROM copies WHERE source_video_id = ?", (source_video_id,)
    ).fetchone()


def update_copy(conn, copy_id, **fields):
    if not fields:
        return
    unknown = set(fields) - _COPY_UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update copy column(s): {', '.join(sorted(unknown))}")
    fields["updated_at"] = _now()
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    conn.execute(
        f"UPDATE copies SET {set_clause} WHERE id = ?",
        (*fields.values(), copy_id),
    )


def set_primary(conn, copy_id, is_primary):
    """Set a copy's primary flag.  Returns the number of rows changed."""
    cur = conn.execute(
        """UPDATE copies SET is_primary = ?, updated_at = ?
           WHERE id = ? AND is_primary != ?""",
        (int(is_primary), _now(), copy_id, int(is_primary)),
    )
    return cur.rowcount


def get_primary_copy(conn, group_id):
    return conn.execute(
        """SELECT * FROM copies
           WHERE group_id = ? AND is_primary = 1
           ORDER BY quality_score DESC, id
           LIMIT 1""",
        (group_id,),
    ).fetchone()


def group_copies(conn, group_id):
    """All copies of a group: primary first, then by quality score."""
    return conn.execute(
        """SELECT * FROM copies WHERE group_id = ?
           ORDER BY is_primary DESC, quality_score DESC, id""",
        (group_id,),
    ).fetchall()


def available_backups(conn, group_id):
    return conn.execute(
        """SELECT * FROM copies
           WHERE group_id = ? AND is_available = 1 AND is_primary = 0
           ORDER BY quality_score DESC, backup_priority DESC, id""",
        (group_id,),
    ).fetchall()


def move_copies(conn, from_group_id, to_group_id):
    cur = conn.execute(
        "UPDATE copies SET group_id = ?, updated_at = ? WHERE group_id = ?",
        (to_group_id, _now(), from_group_id),
    )
    return cur.rowcount


def copies_for_title_fix(conn, limit=None, source_id=None):
    sql = "SELECT id, title, original_title, source_id FROM copies"
    params = []
    if source_id is not None:
        sql += " WHERE source_id = ?"
        params.append(source_id)
    sql += " ORDER BY id"
    if limit:
        sql += " LIMIT ?"
        params.append(int(limit))
    return conn.execute(sql, params).fetchall()


# ── Channels ───────────────────────────────────────────────────────────

def upsert_channel(conn, channel_id, name=None):
    conn.execute(
        """INSERT INTO channels (id, name, updated_at) VALUES (?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               name = COALESCE(excluded.name, channels.name),
               updated_at = excluded.updated_at""",
        (channel_id, name, _now()),
    )


def set_channel_pattern(conn, channel_id, pattern):
    """Store a detected title pattern (a JSON-serializable dict)."""
    upsert_channel(conn, channel_id)
    conn.execute(
        """UPDATE channels SET title_pattern = ?, pattern_analyzed = 1, updated_at = ?
           WHERE id = ?""",
        (json.dumps(pattern), _now(), channel_id),
    )


def get_channel_pattern(conn, channel_id):
    """Return the stored pattern dict, or None if never analyzed."""
    row = conn.execute(
        "SELECT title_pattern, pattern_analyzed FROM channels WHERE id = ?",
        (channel_id,),
    ).fetchone()
    if not row or not row["pattern_analyzed"] or not row["title_pattern"]:
        return None
    return json.loads(row["title_pattern"])


# ── Audit ──────────────────────────────────────────────────────────────

def insert_failover_event(conn, *, group_id, old_primary_id, new_primary_id):
    cur = conn.execute(
        """INSERT INTO failover_events
           (group_id, old_primary_id, new_primary_id, triggered_at)
           VALUES (?, ?, ?, ?)""",
        (group_id, old_primary_id, new_primary_id, _now()),
    )
    return cur.lastrowid


def insert_admin_alert(conn, *, alert_type, message, group_id=None, severity="warning"):
    cur = conn.execute(
        """INSERT INTO admin_alerts (alert_type, group_id, message, severity, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (alert_type, group_id, message, severity, _now()),
    )
    return cur.lastrowid


def unresolved_alerts(conn):
    return conn.execute(
        "SELECT * FROM admin_alerts WHERE resolved = 0 ORDER BY created_at DESC, id DESC"
    ).fetchall()


# ── Stats ──────────────────────────────────────────────────────────────

def db_stats(conn):
    stats = {}
    for table in ("work_groups", "copies", "channels", "failover_events", "admin_alerts"):
        row = conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
        stats[table] = row["n"]
    stats["primary_copies"] = conn.execute(
        "SELECT COUNT(*) AS n FROM copies WHERE is_primary = 1"
    ).fetchone()["n"]
    stats["ungrouped_copies"] = conn.execute(
        "SELECT COUNT(*) AS n FROM copies WHERE group_id IS NULL"
    ).fetchone()["n"]
    stats["groups_without_primary"] = conn.execute(
        """SELECT COUNT(*) AS n FROM work_groups g
           WHERE g.merged_into IS NULL
             AND EXISTS (SELECT 1 FROM copies c WHERE c.group_id = g.id)
             AND NOT EXISTS (SELECT 1 FROM copies c
                             WHERE c.group_id = g.id AND c.is_primary = 1)"""
    ).fetchone()["n"]
    return stats
