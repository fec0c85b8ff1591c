"""Tests for analytics/mastery_ledger.py"""

import json
import threading
from datetime import timedelta

import pytest

from analytics.mastery_ledger import (
    MAX_TIME_SPENT_MS,
    Attempt,
    MasteryLedger,
    clamp_hint_level,
    clamp_time_spent,
    compute_score,
    get_mastery_level,
)
from analytics.storage import KeyValueStore, StorageUnavailable


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_attempts(specs):
    """specs is a list of (hint_level, time_spent_ms, success) tuples."""
    return [Attempt.create("p", h, t, s) for h, t, s in specs]


class DownStore(KeyValueStore):
    def get(self, key):
        raise StorageUnavailable("down")

    def set(self, key, value):
        raise StorageUnavailable("down")

    def delete(self, key):
        raise StorageUnavailable("down")

    def keys(self, prefix):
        raise StorageUnavailable("down")


@pytest.fixture
def ledger(store, clock):
    return MasteryLedger(store, clock=clock)


# ---------------------------------------------------------------------------
# compute_score
# ---------------------------------------------------------------------------

class TestComputeScore:
    def test_no_attempts(self):
        assert compute_score([]) == 0.0

    def test_perfect_attempts(self):
        assert compute_score(make_attempts([(0, 0, True)] * 3)) == pytest.approx(1.0)

    def test_worst_attempts_floor_at_zero(self):
        assert compute_score(make_attempts([(5, 500000, False)] * 5)) == 0.0

    def test_worked_example(self):
        """hintScore 0.6, successRate 0.6, timeScore 0.2 -> 0.3 + 0.18 + 0.04."""
        attempts = make_attempts([(0, 60000, True)] * 3 + [(5, 150000, False)] * 2)
        score = compute_score(attempts)
        assert score == pytest.approx(0.52)
        assert get_mastery_level(score) == "medium"

    def test_low_example(self):
        attempts = make_attempts([(4, 120000, True)] + [(4, 120000, False)] * 4)
        score = compute_score(attempts)
        assert score == pytest.approx(0.16)
        assert get_mastery_level(score) == "low"

    def test_only_last_five_count(self):
        recent = make_attempts([(0, 0, True)] * 5)
        older = make_attempts([(5, 500000, False)] * 5)
        assert compute_score(older + recent) == pytest.approx(compute_score(recent))

    def test_time_capped_at_target(self):
        slow = make_attempts([(0, 120000, True)])
        slower = make_attempts([(0, 900000, True)])
        assert compute_score(slow) == pytest.approx(compute_score(slower)) == pytest.approx(0.8)


class TestMasteryLevel:
    @pytest.mark.parametrize("score,level", [
        (1.0, "high"),
        (0.75, "high"),
        (0.7499, "medium"),
        (0.4, "medium"),
        (0.3999, "low"),
        (0.01, "low"),
        (0.0, "none"),
    ])
    def test_thresholds(self, score, level):
        assert get_mastery_level(score) == level


class TestClamping:
    @pytest.mark.parametrize("raw,expected", [
        (7, 5), (-2, 0), (3.9, 3), (float("nan"), 0), ("4", 4), (None, 0), ("lots", 0),
        (float("inf"), 5), (float("-inf"), 0),
    ])
    def test_hint_level(self, raw, expected):
        assert clamp_hint_level(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        (-100, 0.0), (1500, 1500.0), (float("nan"), 0.0), (None, 0.0),
        (float("inf"), MAX_TIME_SPENT_MS), (float("-inf"), 0.0), (1e300, MAX_TIME_SPENT_MS),
    ])
    def test_time_spent(self, raw, expected):
        assert clamp_time_spent(raw) == expected


# ---------------------------------------------------------------------------
# MasteryLedger
# ---------------------------------------------------------------------------

class TestRecordAttempt:
    def test_first_attempt_creates_record(self, ledger):
        record = ledger.record_attempt("s1", "newtons-laws", "Newton's Laws", "p1", 0, 30000, True)
        assert record.concept_id == "newtons-laws"
        assert len(record.attempts) == 1
        assert record.attempts[0].attempt_id.startswith("att_")
        assert 0.0 <= record.mastery_score <= 1.0
        assert ledger.get_concept_mastery("s1", "newtons-laws").mastery_score == record.mastery_score

    def test_out_of_range_input_is_clamped(self, ledger):
        record = ledger.record_attempt("s1", "vectors", "Vectors", "p1", 9, -50, True)
        stored = record.attempts[0]
        assert stored.hint_level == 5
        assert stored.time_spent == 0.0

    def test_retains_ten_attempts(self, ledger):
        for i in range(12):
            ledger.record_attempt("s1", "friction", "Friction", f"p{i}", 0, 1000, True)
        record = ledger.get_concept_mastery("s1", "friction")
        assert len(record.attempts) == 10
        assert record.attempts[0].problem_id == "p2"
        assert record.attempts[-1].problem_id == "p11"

    def test_end_to_end_example(self, ledger):
        for _ in range(3):
            ledger.record_attempt("s1", "newtons-laws", "Newton's Laws", "p", 0, 60000, True)
        for _ in range(2):
            record = ledger.record_attempt("s1", "newtons-laws", "Newton's Laws", "p", 5, 150000, False)
        assert record.mastery_score == pytest.approx(0.52)
        assert record.mastery_level == "medium"

    def test_students_are_isolated(self, ledger):
        ledger.record_attempt("s1", "vectors", "Vectors", "p", 0, 0, True)
        assert ledger.get_all_mastery("s2") == {}

    def test_persisted_layout(self, ledger, store):
        ledger.record_attempt("s1", "vectors", "Vectors", "p1", 2, 1000, True)
        doc = json.loads(store.get("mastery:s1"))
        assert doc["version"] == 1
        assert doc["studentId"] == "s1"
        assert "lastCleanup" in doc
        attempt = doc["masteryData"]["vectors"]["attempts"][0]
        assert attempt["hintLevel"] == 2
        assert attempt["problemId"] == "p1"

    def test_concurrent_writes_same_student(self, ledger):
        def worker(i):
            ledger.record_attempt("s1", f"c{i}", f"C{i}", "p", 0, 0, True)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(ledger.get_all_mastery("s1")) == 10


class TestQueries:
    def test_weak_concepts_ascending(self, ledger):
        ledger.record_attempt("s1", "a", "A", "p", 5, 120000, False)   # 0.0
        ledger.record_attempt("s1", "b", "B", "p", 0, 120000, False)   # 0.5
        ledger.record_attempt("s1", "c", "C", "p", 3, 120000, False)   # 0.2
        weak = ledger.get_weak_concepts("s1")
        assert [r.concept_id for r in weak] == ["a", "c"]

    def test_strong_concepts_descending(self, ledger):
        ledger.record_attempt("s1", "a", "A", "p", 0, 0, True)         # 1.0
        ledger.record_attempt("s1", "b", "B", "p", 2, 0, True)         # 0.8
        ledger.record_attempt("s1", "c", "C", "p", 3, 60000, True)     # 0.6
        strong = ledger.get_strong_concepts("s1")
        assert [r.concept_id for r in strong] == ["a", "b"]

    def test_statistics(self, ledger):
        ledger.record_attempt("s1", "a", "A", "p", 0, 0, True)
        ledger.record_attempt("s1", "b", "B", "p", 5, 120000, False)
        stats = ledger.get_statistics("s1")
        assert stats["total_concepts"] == 2
        assert stats["strong_concepts"] == 1
        assert stats["weak_concepts"] == 1
        assert stats["mastery_percentage"] == 50

    def test_statistics_empty(self, ledger):
        assert ledger.get_statistics("nobody")["avg_mastery"] == 0.0


class TestCleanup:
    def test_removes_stale_attempts_and_empty_records(self, ledger, clock):
        old = clock.now - timedelta(days=100)
        recent = clock.now - timedelta(days=10)
        ledger.record_attempt("s1", "momentum", "Momentum & Impulse", "p", 0, 0, True, timestamp=old)
        ledger.record_attempt("s1", "friction", "Friction", "p", 1, 1000, True, timestamp=recent)
        ledger.record_attempt("s1", "vectors", "Vectors", "old", 5, 120000, False, timestamp=old)
        ledger.record_attempt("s1", "vectors", "Vectors", "new", 0, 0, True, timestamp=recent)
        friction_before = ledger.get_concept_mastery("s1", "friction")

        removed = ledger.cleanup("s1", cutoff_days=90)

        assert removed == 1
        records = ledger.get_all_mastery("s1")
        assert "momentum" not in records
        assert records["friction"].to_dict() == friction_before.to_dict()
        assert [a.problem_id for a in records["vectors"].attempts] == ["new"]
        assert records["vectors"].mastery_score == pytest.approx(1.0)

    def test_nothing_stale(self, ledger):
        ledger.record_attempt("s1", "vectors", "Vectors", "p", 0, 0, True)
        assert ledger.cleanup("s1") == 0
        assert "vectors" in ledger.get_all_mastery("s1")

    def test_clear_data(self, ledger, store):
        ledger.record_attempt("s1", "vectors", "Vectors", "p", 0, 0, True)
        ledger.clear_data("s1")
        assert store.get("mastery:s1") is None
        assert ledger.student_ids() == []


class TestDegradedStorage:
    def test_unavailable_store_reads_empty(self, clock):
        ledger = MasteryLedger(DownStore(), clock=clock)
        assert ledger.get_all_mastery("s1") == {}
        assert ledger.get_weak_concepts("s1") == []
        assert ledger.student_ids() == []

    def test_unavailable_store_write_still_scores(self, clock):
        ledger = MasteryLedger(DownStore(), clock=clock)
        record = ledger.record_attempt("s1", "vectors", "Vectors", "p", 0, 0, True)
        assert record.mastery_score == pytest.approx(1.0)

    def test_corrupted_document_reinitializes(self, ledger, store):
        store.set("mastery:s1", "{not json")
        assert ledger.get_all_mastery("s1") == {}
        ledger.record_attempt("s1", "vectors", "Vectors", "p", 0, 0, True)
        assert list(ledger.get_all_mastery("s1")) == ["vectors"]

    def test_version_mismatch_resets(self, ledger, store):
        store.set("mastery:s1", json.dumps({
            "version": 99, "studentId": "s1", "masteryData": {"x": {}}, "lastCleanup": "2025-01-01",
        }))
        assert ledger.get_all_mastery("s1") == {}
