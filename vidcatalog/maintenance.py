"""Batch maintenance over the existing catalog.

- fix_all_titles / fix_copy_title: re-clean titles imported before
  channel patterns existed, or cleaned with a wrong pattern
- refresh_engagement: new view/like counts → new quality score
- resweep_group: re-pick the primary among all available copies
- failover_primary: replace an unavailable primary with its best backup
- merge_duplicate_groups: collapse groups created twice for one work
"""

import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

from vidcatalog import db
from vidcatalog.config import FIX_TITLES_WORKERS, MatchConfig
from vidcatalog.normalize import clean_title
from vidcatalog.patterns import StoredPatternSupplier
from vidcatalog.promotion import demote, group_lock, promote
from vidcatalog.resolver import years_compatible
from vidcatalog.scoring import QualityScorer

logger = logging.getLogger(__name__)


# ── Title re-cleaning ─────────────────────────────────────────────────

def progress_line(done, total, elapsed):
    """Batch progress like ``[500/2000 25% 12s, ~36s left]``."""
    pct = done * 100 // total if total else 0
    left = elapsed * (total - done) / done if done else 0
    return f"[{done}/{total} {pct}% {elapsed:.0f}s, ~{left:.0f}s left]"


def _source_title(row):
    return row["original_title"] or row["title"]


def _load_patterns(rows, supplier):
    patterns = {}
    for source_id in {row["source_id"] for row in rows}:
        try:
            patterns[source_id] = supplier(source_id)
        except Exception as e:
            # Cleaning without a pattern still works (tries both ends)
            logger.warning("No pattern for channel %s: %s", source_id, e)
            patterns[source_id] = None
    return patterns


def fix_all_titles(conn, dry_run=False, limit=None, source_id=None, patterns=None,
                   workers=FIX_TITLES_WORKERS, verbose=False):
    """Re-clean every copy's title from its original upload title.

    Cleaning runs on a thread pool; DB writes stay on the calling thread.
    One copy failing never stops the rest.  Returns a report dict with
    ``total``, ``updated``, ``unchanged``, ``failed``, ``changes`` (id, old,
    new for every change) and ``failures`` (id, reason).
    """
    rows = db.copies_for_title_fix(conn, limit=limit, source_id=source_id)
    report = {"total": len(rows), "updated": 0, "unchanged": 0, "failed": 0,
              "changes": [], "failures": [], "dry_run": dry_run}
    if verbose:
        print(f"  Found {len(rows)} copies to process"
              f"{' (dry run)' if dry_run else ''}")
    if not rows:
        return report

    channel_patterns = _load_patterns(rows, patterns or StoredPatternSupplier(conn))

    # ── Phase 1: parallel cleaning (pure) ──
    cleaned = {}
    with ThreadPoolExecutor(max_workers=workers or 1) as pool:
        futures = {
            pool.submit(clean_title, _source_title(row), channel_patterns[row["source_id"]]): row
            for row in rows
        }
        for future in as_completed(futures):
            row = futures[future]
            try:
                cleaned[row["id"]] = future.result()
            except Exception as e:
                logger.error("Failed to clean copy %s: %s", row["id"], e)
                report["failed"] += 1
                report["failures"].append({"id": row["id"], "reason": str(e)})

    # ── Phase 2: serial writes ──
    t_start = time.monotonic()
    for i, row in enumerate(rows, 1):
        if row["id"] not in cleaned:
            continue
        new_title = cleaned[row["id"]]
        if not new_title:
            report["failed"] += 1
            report["failures"].append({"id": row["id"], "reason": "cleaned title is empty"})
            continue
        if new_title == row["title"]:
            report["unchanged"] += 1
            continue

        if not dry_run:
            try:
                with db.transaction(conn):
                    db.update_copy(conn, row["id"], title=new_title)
            except sqlite3.Error as e:
                logger.error("Failed to update copy %s: %s", row["id"], e)
                report["failed"] += 1
                report["failures"].append({"id": row["id"], "reason": str(e)})
                continue

        logger.info("Title change for copy %s: %r → %r", row["id"], row["title"], new_title)
        report["changes"].append({"id": row["id"], "old_title": row["title"],
                                  "new_title": new_title})
        report["updated"] += 1
        if verbose and i % 500 == 0:
            elapsed = time.monotonic() - t_start
            print(f"    {progress_line(i, len(rows), elapsed)} {report['updated']} updated")

    if verbose:
        print(f"  Done: {report['updated']} updated, {report['unchanged']} unchanged, "
              f"{report['failed']} failed")
    return report


def fix_copy_title(conn, copy_id, patterns=None):
    """Re-clean one copy's title.  Raises RecordNotFound for an unknown id."""
    row = db.get_copy(conn, copy_id)
    if row is None:
        raise db.RecordNotFound(f"Copy {copy_id} not found")

    supplier = patterns or StoredPatternSupplier(conn)
    new_title = clean_title(_source_title(row), supplier(row["source_id"]))
    if not new_title:
        logger.warning("Copy %s: cleaned title is empty, left unchanged", copy_id)
        return {"success": False, "message": "cleaned title is empty"}
    if new_title == row["title"]:
        return {"success": True, "message": "Title already clean"}

    with db.transaction(conn):
        db.update_copy(conn, copy_id, title=new_title)
    logger.info("Updated copy %s: %r → %r", copy_id, row["title"], new_title)
    return {"success": True, "old_title": row["title"], "new_title": new_title}


# ── Scores and primaries ──────────────────────────────────────────────

def refresh_engagement(conn, copy_id, *, view_count=None, like_count=None,
                       is_embeddable=None, is_available=None, scorer=None):
    """Store fresh engagement signals and recompute the copy's quality score.

    Primary status is not re-evaluated here; that happens on the next
    candidate for the group or an explicit resweep_group().
    Returns the new score.
    """
    row = db.get_copy(conn, copy_id)
    if row is None:
        raise db.RecordNotFound(f"Copy {copy_id} not found")

    fields = {}
    if view_count is not None:
        fields["view_count"] = int(view_count)
    if like_count is not None:
        fields["like_count"] = int(like_count)
    if is_embeddable is not None:
        fields["is_embeddable"] = int(bool(is_embeddable))
    if is_available is not None:
        fields["is_available"] = int(bool(is_available))

    merged = dict(row)
    merged.update(fields)
    score = (scorer or QualityScorer()).score(merged)
    fields["quality_score"] = score

    with db.transaction(conn):
        db.update_copy(conn, copy_id, **fields)
    logger.debug("Rescored copy %s: %s → %s", copy_id, row["quality_score"], score)
    return score


def _best_copy_key(row):
    return (row["quality_score"], row["backup_priority"], row["is_primary"], -row["id"])


def resweep_group(conn, group_id):
    """Make the best available copy the group's only primary.

    Best = highest quality score, then backup priority, then the current
    primary, then the oldest copy.  Returns the primary's id, or None when
    the group has no available copy (nothing is changed then).
    """
    with group_lock(group_id), db.transaction(conn):
        copies = db.group_copies(conn, group_id)
        available = [c for c in copies if c["is_available"]]
        if not available:
            return None
        best = max(available, key=_best_copy_key)
        for c in copies:
            if c["is_primary"] and c["id"] != best["id"]:
                demote(conn, c["id"])
        promote(conn, best["id"])
    return best["id"]


def failover_primary(conn, group_id, failed_copy_id=None, check_available=None):
    """Replace an unavailable primary with the best available backup.

    The failed copy (default: current primary) is marked unavailable and
    demoted.  ``check_available(copy_row)`` can vet backups before
    promotion; rejected backups are marked unavailable too.  Logs a
    failover event, or raises an admin alert when no backup is left.
    Returns the new primary's id or None.
    """
    with group_lock(group_id), db.transaction(conn):
        if failed_copy_id is None:
            current = db.get_primary_copy(conn, group_id)
            failed_copy_id = current["id"] if current is not None else None
        if failed_copy_id is not None:
            db.update_copy(conn, failed_copy_id, is_available=0)
            demote(conn, failed_copy_id)

        for backup in db.available_backups(conn, group_id):
            if check_available is not None and not check_available(backup):
                logger.warning("Backup copy %s also unavailable", backup["id"])
                db.update_copy(conn, backup["id"], is_available=0)
                continue
            promote(conn, backup["id"])
            db.insert_failover_event(conn, group_id=group_id,
                                     old_primary_id=failed_copy_id,
                                     new_primary_id=backup["id"])
            logger.info("Failover for group %s: copy %s → %s (score %s)",
                        group_id, failed_copy_id, backup["id"], backup["quality_score"])
            return backup["id"]

        logger.error("No backups available for group %s", group_id)
        group = db.get_group(conn, group_id)
        name = group["canonical_title"] if group is not None else group_id
        db.insert_admin_alert(
            conn,
            alert_type="all_backups_failed",
            group_id=group_id,
            message=f"All copies of {name!r} are unavailable",
            severity="critical",
        )
        return None


def group_versions(conn, group_id):
    """All copies of a work: primary first, then by quality score."""
    return db.group_copies(conn, group_id)


def backup_count(conn, group_id):
    return len(db.available_backups(conn, group_id))


# ── Duplicate groups ──────────────────────────────────────────────────

def _mergeable(keeper, group, tolerance):
    if not years_compatible(keeper["release_year"], group["release_year"], tolerance):
        return False
    # Two different catalog ids are two different works
    return not (keeper["external_id"] and group["external_id"]
                and keeper["external_id"] != group["external_id"])


def merge_duplicate_groups(conn, config=None, verbose=False):
    """Fold groups sharing a normalized title into the oldest compatible group.

    Copies move to the surviving group, which is then re-swept so it keeps
    exactly one primary.  An external id held only by the absorbed group
    moves to the survivor.  Absorbed groups stay in place with
    ``merged_into`` set.  Returns a list of (absorbed_id, survivor_id).
    """
    tolerance = (config or MatchConfig()).year_tolerance
    merges = []
    for normalized in db.duplicate_normalized_titles(conn):
        keepers = []
        for group in db.groups_by_normalized_title(conn, normalized):
            idx = next((i for i, k in enumerate(keepers)
                        if _mergeable(k, group, tolerance)), None)
            if idx is None:
                keepers.append(group)
                continue
            keeper = keepers[idx]
            with db.transaction(conn):
                moved = db.move_copies(conn, group["id"], keeper["id"])
                db.mark_group_merged(conn, group["id"], keeper["id"])
                if group["external_id"] and not keeper["external_id"]:
                    # external_id is UNIQUE: clear it before the survivor takes it
                    db.clear_group_external_id(conn, group["id"])
                    db.set_group_external_id(conn, keeper["id"], group["external_id"])
                    keepers[idx] = db.get_group(conn, keeper["id"])
            resweep_group(conn, keeper["id"])
            merges.append((group["id"], keeper["id"]))
            logger.info("Merged group %s into %s (%r, %d copies moved)",
                        group["id"], keeper["id"], normalized, moved)
            if verbose:
                print(f"    {normalized!r}: group {group['id']} → {keeper['id']} "
                      f"({moved} copies)")
    return merges
