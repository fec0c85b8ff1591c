"""
Mistake Tracker - Recurring struggle patterns per concept, and warnings.

Every problem attempt leaves a trace: which steps went wrong, how deep the
hints had to go, what the student said they got wrong. One bad attempt is
noise; the same concept needing level 4-5 hints again and again is a pattern
worth warning about before the next problem starts.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .mastery_ledger import (
    DEFAULT_CLEANUP_DAYS,
    clamp_hint_level,
    clamp_time_spent,
    parse_timestamp,
    utcnow,
)
from .storage import DocumentStore, KeyLocks, KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "mistakes"
STORAGE_VERSION = 1

MAX_PATTERNS_PER_CONCEPT = 10
STRUGGLE_HINT_LEVEL = 4
MIN_ATTEMPTS_FOR_WARNING = 2
PATTERN_KEY_LENGTH = 50
MAX_COMMON_PATTERNS = 3
RECENT_DAYS = 7


@dataclass
class MistakeEvent:
    """One concept's outcome in one problem attempt."""
    concept_id: str
    concept_name: str
    problem_type: str  # e.g. "Rotating Reference Frames"
    struggled_steps: List[int] = field(default_factory=list)
    max_hint_level_used: int = 0
    time_spent: float = 0.0  # Milliseconds
    timestamp: datetime = field(default_factory=utcnow)
    common_mistake: Optional[str] = None  # Extracted from reflection

    def __post_init__(self):
        self.max_hint_level_used = clamp_hint_level(self.max_hint_level_used)
        self.time_spent = clamp_time_spent(self.time_spent)
        self.timestamp = parse_timestamp(self.timestamp)
        self.struggled_steps = list(self.struggled_steps or [])
        self.problem_type = self.problem_type or ""

    def to_dict(self) -> dict:
        data = {
            "conceptId": self.concept_id,
            "conceptName": self.concept_name,
            "problemType": self.problem_type,
            "struggledSteps": self.struggled_steps,
            "maxHintLevelUsed": self.max_hint_level_used,
            "timeSpent": self.time_spent,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.common_mistake is not None:
            data["commonMistake"] = self.common_mistake
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MistakeEvent":
        return cls(
            concept_id=data["conceptId"],
            concept_name=data.get("conceptName", data["conceptId"]),
            problem_type=data.get("problemType", ""),
            struggled_steps=data.get("struggledSteps", []),
            max_hint_level_used=data.get("maxHintLevelUsed", 0),
            time_spent=data.get("timeSpent", 0),
            timestamp=data["timestamp"],
            common_mistake=data.get("commonMistake"),
        )


@dataclass
class ConceptMistakeStats:
    concept_id: str
    concept_name: str
    total_attempts: int
    struggled_attempts: int  # Used level 4-5 hints
    average_hint_level: float
    common_patterns: List[str]
    last_seen: datetime
    trend: str = "persistent"

    @property
    def struggle_rate(self) -> float:
        return self.struggled_attempts / self.total_attempts if self.total_attempts else 0.0

    def to_dict(self) -> dict:
        return {
            "conceptId": self.concept_id,
            "conceptName": self.concept_name,
            "totalAttempts": self.total_attempts,
            "struggledAttempts": self.struggled_attempts,
            "averageHintLevel": self.average_hint_level,
            "commonPatterns": self.common_patterns,
            "lastSeen": self.last_seen.isoformat(),
            "trend": self.trend,
        }


@dataclass
class MistakeWarning:
    message: str
    severity: str  # "low", "medium", "high"
    related_concepts: List[str]
    suggestions: List[str]

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "severity": self.severity,
            "relatedConcepts": self.related_concepts,
            "suggestions": self.suggestions,
        }


@dataclass
class MistakeState:
    student_id: str
    patterns: Dict[str, List[MistakeEvent]] = field(default_factory=dict)
    last_cleanup: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "studentId": self.student_id,
            "mistakePatterns": {
                cid: [e.to_dict() for e in events] for cid, events in self.patterns.items()
            },
            "lastCleanup": self.last_cleanup.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MistakeState":
        return cls(
            student_id=data["studentId"],
            patterns={
                cid: [MistakeEvent.from_dict(e) for e in events]
                for cid, events in data["mistakePatterns"].items()
            },
            last_cleanup=parse_timestamp(data["lastCleanup"]),
        )


# ==================== Pure Analysis ====================

def classify_trend(events: Sequence[MistakeEvent]) -> str:
    """
    Compare how many events fall in the first and second half of the
    observed time span.

    Fewer events in the second half -> "improving", more -> "worsening",
    otherwise (including fewer than 2 events) -> "persistent".
    """
    if len(events) < 2:
        return "persistent"

    stamps = sorted(e.timestamp for e in events)
    start, end = stamps[0], stamps[-1]
    if start == end:
        return "persistent"

    midpoint = start + (end - start) / 2
    first_half = sum(1 for ts in stamps if ts < midpoint)
    second_half = len(stamps) - first_half

    if second_half < first_half:
        return "improving"
    if second_half > first_half:
        return "worsening"
    return "persistent"


def find_common_patterns(events: Sequence[MistakeEvent]) -> List[str]:
    """Free-text mistakes seen at least twice, grouped by their first 50 chars."""
    keys = [
        e.common_mistake.strip().lower()[:PATTERN_KEY_LENGTH]
        for e in events
        if e.common_mistake and e.common_mistake.strip()
    ]
    counts = Counter(keys)
    # Counter.most_common is stable for equal counts (first seen first)
    return [k for k, n in counts.most_common() if n >= 2][:MAX_COMMON_PATTERNS]


def build_stats(concept_id: str, concept_name: str,
                events: Sequence[MistakeEvent]) -> Optional[ConceptMistakeStats]:
    if not events:
        return None

    total = len(events)
    return ConceptMistakeStats(
        concept_id=concept_id,
        concept_name=concept_name,
        total_attempts=total,
        struggled_attempts=sum(1 for e in events if e.max_hint_level_used >= STRUGGLE_HINT_LEVEL),
        average_hint_level=sum(e.max_hint_level_used for e in events) / total,
        common_patterns=find_common_patterns(events),
        last_seen=max(e.timestamp for e in events),
        trend=classify_trend(events),
    )


def warning_severity(struggle_rate: float) -> str:
    """3 of 4 struggled attempts (exactly 0.75) already counts as high."""
    if struggle_rate >= 0.75:
        return "high"
    if struggle_rate > 0.6:
        return "medium"
    return "low"


# ==================== Tracker ====================

class MistakeTracker:
    """
    Per-student mistake history, at most 10 events per concept.

    Usage:
        tracker = MistakeTracker(store)
        tracker.record_pattern("s1", MistakeEvent("momentum", "Momentum & Impulse", "Collisions",
                                                  max_hint_level_used=5))
        tracker.generate_warnings("s1", [("momentum", "Momentum & Impulse")], "Collisions")
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self.documents = DocumentStore(
            store,
            prefix=STORAGE_PREFIX,
            version=STORAGE_VERSION,
            empty=lambda student_id: MistakeState(student_id=student_id, last_cleanup=clock()),
            parse=MistakeState.from_dict,
            dump=MistakeState.to_dict,
        )
        self.clock = clock
        self._locks = KeyLocks()

    # ==================== Recording ====================

    def record_pattern(self, student_id: str, event: MistakeEvent):
        """Append an event, keeping only the most recent per concept."""
        with self._locks(student_id):
            state = self.documents.load(student_id)
            events = state.patterns.setdefault(event.concept_id, [])
            events.append(event)
            events.sort(key=lambda e: e.timestamp)
            if len(events) > MAX_PATTERNS_PER_CONCEPT:
                state.patterns[event.concept_id] = events[-MAX_PATTERNS_PER_CONCEPT:]
            self.documents.save(student_id, state)

        logger.info("Recorded mistake pattern for %s (student %s, hint level %d)",
                    event.concept_id, student_id, event.max_hint_level_used)

    # ==================== Queries ====================

    def get_all_patterns(self, student_id: str) -> Dict[str, List[MistakeEvent]]:
        return self.documents.load(student_id).patterns

    def get_concept_patterns(self, student_id: str, concept_id: str) -> List[MistakeEvent]:
        return self.get_all_patterns(student_id).get(concept_id, [])

    def get_concept_stats(self, student_id: str, concept_id: str,
                          concept_name: str) -> Optional[ConceptMistakeStats]:
        """Aggregate a concept's history; None when nothing is recorded."""
        return build_stats(concept_id, concept_name, self.get_concept_patterns(student_id, concept_id))

    def get_trend(self, student_id: str, concept_id: str) -> str:
        return classify_trend(self.get_concept_patterns(student_id, concept_id))

    # ==================== Warnings ====================

    def generate_warnings(self, student_id: str, current_concepts: Sequence[Tuple[str, str]],
                          problem_type: str = "") -> List[MistakeWarning]:
        """
        Warn about concepts in the upcoming problem that keep needing deep hints.

        A concept qualifies when more than half of at least two recorded
        events needed hint level 4 or above.
        """
        patterns = self.get_all_patterns(student_id)
        now = self.clock()
        warnings = []

        for concept_id, concept_name in current_concepts:
            events = patterns.get(concept_id, [])
            stats = build_stats(concept_id, concept_name, events)
            if stats is None:
                continue

            rate = stats.struggle_rate
            if rate <= 0.5 or stats.total_attempts < MIN_ATTEMPTS_FOR_WARNING:
                continue

            warnings.append(MistakeWarning(
                message=(
                    f"Caution: You've needed advanced hints "
                    f"(Level {int(stats.average_hint_level + 0.5)}) on {concept_name} problems "
                    f"{stats.struggled_attempts}/{stats.total_attempts} times."
                ),
                severity=warning_severity(rate),
                related_concepts=[concept_name],
                suggestions=self._suggestions(stats, events, problem_type, now),
            ))

        return warnings

    def _suggestions(self, stats: ConceptMistakeStats, events: Sequence[MistakeEvent],
                     problem_type: str, now: datetime) -> List[str]:
        suggestions = []

        if stats.average_hint_level >= STRUGGLE_HINT_LEVEL:
            suggestions.append("Review the concept definition before diving into the problem")
            suggestions.append("Try sketching the problem setup before writing equations")

        if stats.common_patterns:
            suggestions.append(f"Common mistake: Pay attention to {stats.common_patterns[0]}")

        if problem_type and any(
            e.problem_type.lower() == problem_type.lower()
            and e.max_hint_level_used >= STRUGGLE_HINT_LEVEL
            for e in events
        ):
            suggestions.append(f"You've struggled with {problem_type} problems on this concept before")

        if now - stats.last_seen < timedelta(days=RECENT_DAYS):
            suggestions.append("You struggled with this concept recently - take it slow")

        return suggestions

    # ==================== Maintenance ====================

    def cleanup(self, student_id: str, cutoff_days: int = DEFAULT_CLEANUP_DAYS) -> int:
        """Drop events older than the cutoff; returns the number of concepts emptied."""
        now = self.clock()
        cutoff = now - timedelta(days=cutoff_days)
        removed = 0

        with self._locks(student_id):
            state = self.documents.load(student_id)
            for concept_id in list(state.patterns):
                kept = [e for e in state.patterns[concept_id] if e.timestamp > cutoff]
                if kept:
                    state.patterns[concept_id] = kept
                else:
                    del state.patterns[concept_id]
                    removed += 1
            state.last_cleanup = now
            self.documents.save(student_id, state)

        if removed:
            logger.info("Cleaned up mistake history for %d concepts (student %s)", removed, student_id)
        return removed

    def clear_all_patterns(self, student_id: str):
        with self._locks(student_id):
            self.documents.delete(student_id)

    def student_ids(self) -> List[str]:
        return self.documents.student_ids()
