"""Tests for primary/backup selection."""

import gc
import threading

import pytest

from vidcatalog import db, promotion
from vidcatalog.promotion import (
    STATE_BACKUP,
    STATE_CANDIDATE,
    STATE_PRIMARY,
    apply_primary,
    copy_state,
    demote,
    evaluate_primary,
    group_lock,
)
from tests.conftest import make_copy, make_group


def primaries(conn, group_id):
    return [row["id"] for row in db.group_copies(conn, group_id) if row["is_primary"]]


class TestEvaluatePrimary:
    def test_empty_group_promotes(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1", score=10)
        decision = evaluate_primary(conn, g["id"], c, 10)
        assert decision.should_promote is True
        assert decision.incumbent_id is None

    def test_tie_keeps_incumbent(self, conn):
        g = make_group(conn, "Heat")
        inc = make_copy(conn, group_id=g["id"], video_id="v1", score=70, is_primary=True)
        cand = make_copy(conn, group_id=g["id"], video_id="v2", score=70)
        decision = evaluate_primary(conn, g["id"], cand, 70)
        assert decision.should_promote is False
        assert decision.incumbent_id == inc

    def test_higher_score_promotes(self, conn):
        g = make_group(conn, "Heat")
        inc = make_copy(conn, group_id=g["id"], video_id="v1", score=70, is_primary=True)
        cand = make_copy(conn, group_id=g["id"], video_id="v2", score=71)
        decision = evaluate_primary(conn, g["id"], cand, 71)
        assert decision.should_promote is True
        assert decision.incumbent_id == inc

    def test_lower_score_stays_backup(self, conn):
        g = make_group(conn, "Heat")
        make_copy(conn, group_id=g["id"], video_id="v1", score=70, is_primary=True)
        cand = make_copy(conn, group_id=g["id"], video_id="v2", score=30)
        assert evaluate_primary(conn, g["id"], cand, 30).should_promote is False

    def test_candidate_already_primary(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1", score=70, is_primary=True)
        decision = evaluate_primary(conn, g["id"], c, 70)
        assert decision.should_promote is False
        assert decision.already_primary is True

    def test_read_only(self, conn):
        g = make_group(conn, "Heat")
        inc = make_copy(conn, group_id=g["id"], video_id="v1", score=70, is_primary=True)
        cand = make_copy(conn, group_id=g["id"], video_id="v2", score=90)
        evaluate_primary(conn, g["id"], cand, 90)
        assert primaries(conn, g["id"]) == [inc]


class TestDemote:
    def test_demote_primary(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1", is_primary=True)
        demote(conn, c)
        assert db.get_copy(conn, c)["is_primary"] == 0

    def test_idempotent(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1")
        demote(conn, c)
        demote(conn, c)
        assert db.get_copy(conn, c)["is_primary"] == 0

    def test_unknown_copy_is_noop(self, conn):
        demote(conn, 12345)


class TestApplyPrimary:
    def test_first_copy_becomes_primary(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1", score=40)
        assert apply_primary(conn, g["id"], c, 40) == STATE_PRIMARY
        assert primaries(conn, g["id"]) == [c]

    def test_better_copy_takes_over(self, conn):
        g = make_group(conn, "Heat")
        old = make_copy(conn, group_id=g["id"], video_id="v1", score=40)
        apply_primary(conn, g["id"], old, 40)
        new = make_copy(conn, group_id=g["id"], video_id="v2", score=80)
        assert apply_primary(conn, g["id"], new, 80) == STATE_PRIMARY
        assert primaries(conn, g["id"]) == [new]
        assert copy_state(db.get_copy(conn, old)) == STATE_BACKUP

    def test_equal_copy_becomes_backup(self, conn):
        g = make_group(conn, "Heat")
        old = make_copy(conn, group_id=g["id"], video_id="v1", score=70)
        apply_primary(conn, g["id"], old, 70)
        new = make_copy(conn, group_id=g["id"], video_id="v2", score=70)
        assert apply_primary(conn, g["id"], new, 70) == STATE_BACKUP
        assert primaries(conn, g["id"]) == [old]

    def test_reads_stored_score(self, conn):
        g = make_group(conn, "Heat")
        old = make_copy(conn, group_id=g["id"], video_id="v1", score=40, is_primary=True)
        new = make_copy(conn, group_id=g["id"], video_id="v2", score=60)
        assert apply_primary(conn, g["id"], new) == STATE_PRIMARY
        assert primaries(conn, g["id"]) == [new]
        assert db.get_copy(conn, old)["is_primary"] == 0

    def test_unknown_copy(self, conn):
        g = make_group(conn, "Heat")
        with pytest.raises(db.RecordNotFound):
            apply_primary(conn, g["id"], 999)

    def test_reapply_is_stable(self, conn):
        g = make_group(conn, "Heat")
        c = make_copy(conn, group_id=g["id"], video_id="v1", score=50)
        apply_primary(conn, g["id"], c, 50)
        assert apply_primary(conn, g["id"], c, 50) == STATE_PRIMARY
        assert primaries(conn, g["id"]) == [c]

    def test_at_most_one_primary_in_any_order(self, conn):
        g = make_group(conn, "Heat")
        scores = [35, 80, 12, 80, 64, 79]
        ids = [make_copy(conn, group_id=g["id"], video_id=f"v{i}", score=s)
               for i, s in enumerate(scores)]
        for copy_id, score in zip(ids, scores):
            apply_primary(conn, g["id"], copy_id, score)
            assert len(primaries(conn, g["id"])) == 1
        # First 80 wins; the later 80 only ties
        assert primaries(conn, g["id"]) == [ids[1]]


class TestConcurrentApply:
    def test_threads_leave_one_primary(self, tmp_path):
        path = str(tmp_path / "catalog.db")
        setup = db.get_connection(path)
        g = make_group(setup, "Heat")
        scores = [10, 55, 90, 40, 90, 70, 20, 85]
        ids = [make_copy(setup, group_id=g["id"], video_id=f"v{i}", score=s)
               for i, s in enumerate(scores)]
        setup.close()

        errors = []

        def worker(copy_id, score):
            c = db.get_connection(path)
            try:
                apply_primary(c, g["id"], copy_id, score)
            except Exception as e:  # surfaced via the errors list
                errors.append(e)
            finally:
                c.close()

        threads = [threading.Thread(target=worker, args=(cid, s))
                   for cid, s in zip(ids, scores)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        check = db.get_connection(path)
        winners = primaries(check, g["id"])
        check.close()
        assert errors == []
        assert len(winners) == 1
        assert scores[ids.index(winners[0])] == 90


class TestCopyState:
    def test_states(self):
        assert copy_state({"is_primary": 1, "group_id": 1}) == STATE_PRIMARY
        assert copy_state({"is_primary": 0, "group_id": 1}) == STATE_BACKUP
        assert copy_state({"is_primary": 0, "group_id": None}) == STATE_CANDIDATE


class TestGroupLock:
    def test_distinct_groups_do_not_block(self):
        with group_lock(1):
            with group_lock(2):
                pass

    def test_entries_dropped_after_use(self):
        for group_id in range(1000, 1100):
            with group_lock(group_id):
                assert group_id in promotion._group_locks
        gc.collect()
        assert [k for k in list(promotion._group_locks.keys()) if 1000 <= k < 1100] == []

    def test_waiters_share_the_held_lock(self):
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with group_lock(7):
                entered.set()
                release.wait(5)
                order.append("holder")

        def waiter():
            with group_lock(7):
                order.append("waiter")

        t = threading.Thread(target=holder)
        t.start()
        assert entered.wait(5)
        w = threading.Thread(target=waiter)
        w.start()
        w.join(0.2)
        assert w.is_alive()
        release.set()
        t.join(5)
        w.join(5)
        assert order == ["holder", "waiter"]
        gc.collect()
        assert 7 not in promotion._group_locks
