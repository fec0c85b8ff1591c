"""
Mastery Ledger - Rolling-window mastery score per student per concept.

Features:
    - Weighted score from hint usage, success rate and time spent
    - Fixed 5-attempt scoring window, up to 10 attempts retained for history
    - Clamping (never rejection) of malformed attempt metrics
    - 90-day cleanup that drops stale attempts and empty records

Formula (last 5 attempts):
    hint_score   = 1 - avg(hint_level) / 5
    success_rate = successes / attempts
    time_score   = 1 - min(avg(time_spent) / 120000, 1)
    score        = clamp(0.5 * hint_score + 0.3 * success_rate + 0.2 * time_score, 0, 1)
"""

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .storage import DocumentStore, KeyLocks, KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "mastery"
STORAGE_VERSION = 1

SCORING_WINDOW = 5
MAX_RETAINED_ATTEMPTS = 10
TARGET_TIME_MS = 120000
MAX_TIME_SPENT_MS = 24 * 60 * 60 * 1000  # 24 hours
MAX_HINT_LEVEL = 5

HINT_WEIGHT = 0.5
SUCCESS_WEIGHT = 0.3
TIME_WEIGHT = 0.2

HIGH_THRESHOLD = 0.75
MEDIUM_THRESHOLD = 0.4

DEFAULT_CLEANUP_DAYS = 90


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """Accept datetimes or ISO strings; naive values are taken as UTC."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def clamp_hint_level(value) -> int:
    """Clamp to an integer in [0, 5]; unusable input counts as no hints."""
    try:
        level = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(level):
        return 0
    return int(max(0, min(MAX_HINT_LEVEL, level)))


def clamp_time_spent(value) -> float:
    """Clamp to [0, MAX_TIME_SPENT_MS] milliseconds; NaN counts as no time."""
    try:
        ms = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(ms):
        return 0.0
    return max(0.0, min(float(MAX_TIME_SPENT_MS), ms))


@dataclass
class Attempt:
    """One concept-tagged problem attempt."""
    attempt_id: str
    problem_id: str
    timestamp: datetime
    hint_level: int  # 0-5, max hint level used for this concept
    time_spent: float  # Milliseconds
    success: bool

    @classmethod
    def create(cls, problem_id: str, hint_level, time_spent, success,
               timestamp: Optional[datetime] = None) -> "Attempt":
        ts = parse_timestamp(timestamp) if timestamp is not None else utcnow()
        return cls(
            attempt_id=f"att_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            problem_id=str(problem_id or ""),
            timestamp=ts,
            hint_level=clamp_hint_level(hint_level),
            time_spent=clamp_time_spent(time_spent),
            success=bool(success),
        )

    def to_dict(self) -> dict:
        return {
            "attemptId": self.attempt_id,
            "problemId": self.problem_id,
            "timestamp": self.timestamp.isoformat(),
            "hintLevel": self.hint_level,
            "timeSpent": self.time_spent,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(
            attempt_id=data["attemptId"],
            problem_id=data.get("problemId", ""),
            timestamp=parse_timestamp(data["timestamp"]),
            hint_level=clamp_hint_level(data.get("hintLevel", 0)),
            time_spent=clamp_time_spent(data.get("timeSpent", 0)),
            success=bool(data.get("success", False)),
        )


@dataclass
class MasteryRecord:
    """Attempt history and derived score for one concept."""
    concept_id: str
    concept_name: str
    attempts: List[Attempt] = field(default_factory=list)
    mastery_score: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def mastery_level(self) -> str:
        if not self.attempts:
            return "none"
        return get_mastery_level(self.mastery_score)

    @property
    def last_attempt(self) -> Optional[datetime]:
        return self.attempts[-1].timestamp if self.attempts else None

    def to_dict(self) -> dict:
        return {
            "conceptId": self.concept_id,
            "conceptName": self.concept_name,
            "attempts": [a.to_dict() for a in self.attempts],
            "masteryScore": self.mastery_score,
            "lastUpdated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MasteryRecord":
        return cls(
            concept_id=data["conceptId"],
            concept_name=data.get("conceptName", data["conceptId"]),
            attempts=[Attempt.from_dict(a) for a in data.get("attempts", [])],
            mastery_score=float(data.get("masteryScore", 0.0)),
            last_updated=parse_timestamp(data["lastUpdated"]),
        )


@dataclass
class MasteryState:
    """Everything stored for one student."""
    student_id: str
    records: Dict[str, MasteryRecord] = field(default_factory=dict)
    last_cleanup: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "studentId": self.student_id,
            "masteryData": {cid: r.to_dict() for cid, r in self.records.items()},
            "lastCleanup": self.last_cleanup.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MasteryState":
        return cls(
            student_id=data["studentId"],
            records={cid: MasteryRecord.from_dict(r) for cid, r in data["masteryData"].items()},
            last_cleanup=parse_timestamp(data["lastCleanup"]),
        )


# ==================== Scoring ====================

def compute_score(attempts: Sequence[Attempt]) -> float:
    """
    Mastery score from the most recent SCORING_WINDOW attempts.

    Pure: depends only on the content of the final window, so older
    retained attempts never influence the result.
    """
    recent = list(attempts)[-SCORING_WINDOW:]
    if not recent:
        return 0.0

    n = len(recent)
    avg_hint = sum(a.hint_level for a in recent) / n
    hint_score = 1 - avg_hint / MAX_HINT_LEVEL

    success_rate = sum(1 for a in recent if a.success) / n

    avg_time = sum(a.time_spent for a in recent) / n
    time_score = 1 - min(avg_time / TARGET_TIME_MS, 1)

    score = HINT_WEIGHT * hint_score + SUCCESS_WEIGHT * success_rate + TIME_WEIGHT * time_score
    return max(0.0, min(1.0, score))


def get_mastery_level(score: float) -> str:
    """Map a score to high / medium / low / none."""
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    if score > 0:
        return "low"
    return "none"


# ==================== Ledger ====================

class MasteryLedger:
    """
    Per-student mastery records backed by a key/value store.

    Each student is one versioned document; writes for the same student are
    serialized by a per-student lock around load -> append -> recompute -> save.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self.documents = DocumentStore(
            store,
            prefix=STORAGE_PREFIX,
            version=STORAGE_VERSION,
            empty=lambda student_id: MasteryState(student_id=student_id, last_cleanup=clock()),
            parse=MasteryState.from_dict,
            dump=MasteryState.to_dict,
        )
        self.clock = clock
        self._locks = KeyLocks()

    # ==================== Recording ====================

    def record_attempt(self, student_id: str, concept_id: str, concept_name: str,
                       problem_id: str, hint_level, time_spent, success: bool,
                       timestamp: Optional[datetime] = None) -> MasteryRecord:
        """
        Record an attempt and recompute that concept's score.

        Out-of-range metrics are clamped before storage. Returns the updated record.
        """
        attempt = Attempt.create(
            problem_id, hint_level, time_spent, success,
            timestamp=timestamp if timestamp is not None else self.clock(),
        )

        with self._locks(student_id):
            state = self.documents.load(student_id)
            record = state.records.get(concept_id)
            if record is None:
                record = MasteryRecord(concept_id=concept_id, concept_name=concept_name)
                state.records[concept_id] = record

            record.attempts.append(attempt)
            if len(record.attempts) > MAX_RETAINED_ATTEMPTS:
                record.attempts = record.attempts[-MAX_RETAINED_ATTEMPTS:]

            record.mastery_score = compute_score(record.attempts)
            record.last_updated = self.clock()
            self.documents.save(student_id, state)

        logger.info("Recorded attempt for %s (%s) - student %s, mastery: %.2f",
                    concept_id, concept_name, student_id, record.mastery_score)
        return record

    # ==================== Queries ====================

    def get_concept_mastery(self, student_id: str, concept_id: str) -> Optional[MasteryRecord]:
        return self.documents.load(student_id).records.get(concept_id)

    def get_all_mastery(self, student_id: str) -> Dict[str, MasteryRecord]:
        return self.documents.load(student_id).records

    def get_weak_concepts(self, student_id: str) -> List[MasteryRecord]:
        """Concepts below the medium threshold, weakest first."""
        records = self.get_all_mastery(student_id).values()
        weak = [r for r in records if r.attempts and r.mastery_score < MEDIUM_THRESHOLD]
        return sorted(weak, key=lambda r: r.mastery_score)

    def get_strong_concepts(self, student_id: str) -> List[MasteryRecord]:
        """Concepts at or above the high threshold, strongest first."""
        records = self.get_all_mastery(student_id).values()
        strong = [r for r in records if r.attempts and r.mastery_score >= HIGH_THRESHOLD]
        return sorted(strong, key=lambda r: r.mastery_score, reverse=True)

    def get_statistics(self, student_id: str) -> dict:
        concepts = list(self.get_all_mastery(student_id).values())
        total = len(concepts)
        strong = sum(1 for c in concepts if c.mastery_score >= HIGH_THRESHOLD)
        weak = sum(1 for c in concepts if c.mastery_score < MEDIUM_THRESHOLD)
        avg_mastery = sum(c.mastery_score for c in concepts) / total if total else 0.0

        return {
            "total_concepts": total,
            "weak_concepts": weak,
            "medium_concepts": total - weak - strong,
            "strong_concepts": strong,
            "total_attempts": sum(len(c.attempts) for c in concepts),
            "avg_mastery": round(avg_mastery, 2),
            "mastery_percentage": round(strong / total * 100) if total else 0,
        }

    # ==================== Maintenance ====================

    def cleanup(self, student_id: str, cutoff_days: int = DEFAULT_CLEANUP_DAYS) -> int:
        """
        Drop attempts older than the cutoff.

        Records that still have attempts are rescored; records left empty are
        deleted. Returns the number of deleted records.
        """
        now = self.clock()
        cutoff = now - timedelta(days=cutoff_days)
        removed = 0

        with self._locks(student_id):
            state = self.documents.load(student_id)
            for concept_id in list(state.records):
                record = state.records[concept_id]
                kept = [a for a in record.attempts if a.timestamp > cutoff]

                if not kept:
                    del state.records[concept_id]
                    removed += 1
                elif len(kept) != len(record.attempts):
                    record.attempts = kept
                    record.mastery_score = compute_score(kept)
                    record.last_updated = now

            state.last_cleanup = now
            self.documents.save(student_id, state)

        if removed:
            logger.info("Cleaned up %d stale concepts for student %s", removed, student_id)
        return removed

    def clear_data(self, student_id: str):
        """Delete everything stored for a student."""
        with self._locks(student_id):
            self.documents.delete(student_id)
        logger.info("Cleared mastery data for student %s", student_id)

    def student_ids(self) -> List[str]:
        return self.documents.student_ids()
