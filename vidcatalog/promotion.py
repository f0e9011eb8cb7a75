"""Primary/backup selection within a work group.

Each copy moves through: candidate → primary | backup, and primary →
backup when a newer copy strictly outscores it.  Ties keep the incumbent.
Backups are never promoted automatically during ingestion; see
maintenance.resweep_group() and maintenance.failover_primary().
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass

from vidcatalog import db

logger = logging.getLogger(__name__)

STATE_CANDIDATE = "candidate"
STATE_PRIMARY = "primary"
STATE_BACKUP = "backup"

# A group's entry lives only while some thread holds or waits on its lock
_group_locks = weakref.WeakValueDictionary()
_group_locks_guard = threading.Lock()


@contextmanager
def group_lock(group_id):
    """In-process mutual exclusion for one group's primary state."""
    with _group_locks_guard:
        lock = _group_locks.get(group_id)
        if lock is None:
            lock = _group_locks[group_id] = threading.Lock()
    with lock:
        yield


@dataclass(frozen=True)
class PromotionDecision:
    should_promote: bool
    incumbent_id: int = None
    already_primary: bool = False


def evaluate_primary(conn, group_id, candidate_copy_id, candidate_score):
    """Decide whether a candidate copy should become the group's primary.

    Returns the current primary's id as ``incumbent_id`` (None when the
    group has no primary) so the caller can demote it.
    """
    incumbent = db.get_primary_copy(conn, group_id)
    if incumbent is None:
        return PromotionDecision(should_promote=True, incumbent_id=None)

    if incumbent["id"] == candidate_copy_id:
        return PromotionDecision(should_promote=False, incumbent_id=None,
                                 already_primary=True)

    should_promote = candidate_score > incumbent["quality_score"]
    logger.debug("Group %s: candidate %s (%s) vs incumbent %s (%s) → promote=%s",
                 group_id, candidate_copy_id, candidate_score,
                 incumbent["id"], incumbent["quality_score"], should_promote)
    return PromotionDecision(should_promote=should_promote, incumbent_id=incumbent["id"])


def demote(conn, copy_id):
    """Clear a copy's primary flag.  Demoting a non-primary copy is a no-op."""
    if db.set_primary(conn, copy_id, False):
        logger.info("Demoted copy %s from primary to backup", copy_id)


def promote(conn, copy_id):
    if db.set_primary(conn, copy_id, True):
        logger.info("Promoted copy %s to primary", copy_id)


def apply_primary(conn, group_id, copy_id, candidate_score=None):
    """Evaluate a candidate and apply the outcome atomically.

    Read incumbent, compare, demote, promote all run under the group lock
    inside one write transaction.  Returns STATE_PRIMARY or STATE_BACKUP.
    """
    with group_lock(group_id), db.transaction(conn):
        if candidate_score is None:
            row = db.get_copy(conn, copy_id)
            if row is None:
                raise db.RecordNotFound(f"Copy {copy_id} not found")
            candidate_score = row["quality_score"]

        decision = evaluate_primary(conn, group_id, copy_id, candidate_score)
        if decision.already_primary:
            return STATE_PRIMARY
        if not decision.should_promote:
            return STATE_BACKUP

        if decision.incumbent_id is not None:
            demote(conn, decision.incumbent_id)
        promote(conn, copy_id)
        return STATE_PRIMARY


def copy_state(copy):
    """State of a copy row: primary, backup (grouped), or candidate."""
    if copy["is_primary"]:
        return STATE_PRIMARY
    if copy["group_id"] is not None:
        return STATE_BACKUP
    return STATE_CANDIDATE
