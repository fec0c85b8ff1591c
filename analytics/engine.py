"""
Analytics Engine - Attempt processing across graph, ledger, resolver and tracker.

Flow for one problem attempt:
    free-text concept name -> resolver -> canonical ID
    canonical ID + metrics  -> mastery ledger (score recomputed)
    mistake details         -> mistake tracker (warnings on the next problem)

Read side: concept network snapshot for the mastery map, weak concepts with
their root-cause prerequisite for repair mode.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .concept_resolver import MappingStats, map_concepts, resolve_concept_name
from .knowledge_graph import KnowledgeGraph
from .mastery_ledger import DEFAULT_CLEANUP_DAYS, MEDIUM_THRESHOLD, MasteryLedger, MasteryRecord, utcnow
from .mistake_tracker import MistakeEvent, MistakeTracker, MistakeWarning
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    def __init__(self, graph: KnowledgeGraph, store: KeyValueStore,
                 clock: Callable[[], datetime] = utcnow):
        self.graph = graph
        self.nodes = graph.get_nodes()
        self.ledger = MasteryLedger(store, clock=clock)
        self.tracker = MistakeTracker(store, clock=clock)

    # ==================== Resolution ====================

    def resolve(self, concept_name: str) -> Optional[str]:
        return resolve_concept_name(concept_name, self.nodes)

    def map_concepts(self, concepts: Sequence[Tuple[str, str]]
                     ) -> Tuple[Dict[str, Optional[str]], MappingStats]:
        """(external_id, name) pairs -> (mapping, MappingStats)."""
        return map_concepts(concepts, self.nodes)

    # ==================== Recording ====================

    def process_attempt(self, student_id: str, concept_name: str, problem_id: str,
                        hint_level, time_spent, success: bool,
                        timestamp: Optional[datetime] = None) -> Optional[MasteryRecord]:
        """
        Resolve a concept name and record the attempt against it.

        Unresolved names record nothing and return None.
        """
        concept_id = self.resolve(concept_name)
        if concept_id is None:
            logger.info("Skipping attempt on unresolved concept %r (student %s)", concept_name, student_id)
            return None

        node = self.graph.get_node(concept_id)
        return self.ledger.record_attempt(
            student_id, concept_id, node.name, problem_id,
            hint_level, time_spent, success, timestamp=timestamp,
        )

    def record_mistake(self, student_id: str, event: MistakeEvent):
        self.tracker.record_pattern(student_id, event)

    # ==================== Warnings ====================

    def get_warnings(self, student_id: str, concept_names: Sequence[str],
                     problem_type: str = "") -> List[MistakeWarning]:
        """Warnings for the concepts named in an upcoming problem."""
        current = []
        seen = set()
        for name in concept_names:
            concept_id = self.resolve(name)
            if concept_id is None or concept_id in seen:
                continue
            seen.add(concept_id)
            current.append((concept_id, self.graph.get_node(concept_id).name))
        return self.tracker.generate_warnings(student_id, current, problem_type)

    # ==================== Read Models ====================

    def get_concept_network(self, student_id: Optional[str] = None) -> dict:
        """
        Nodes and edges for the mastery map, each node carrying the student's
        current score and level. Without a student every node is "none".
        """
        records: Dict[str, MasteryRecord] = (
            self.ledger.get_all_mastery(student_id) if student_id else {}
        )

        nodes = []
        for node in self.nodes:
            record = records.get(node.id)
            data = node.to_dict()
            if record is None:
                data.update({"masteryScore": 0.0, "masteryLevel": "none", "attemptCount": 0,
                             "lastAttempt": None})
            else:
                data.update({
                    "masteryScore": record.mastery_score,
                    "masteryLevel": record.mastery_level,
                    "attemptCount": len(record.attempts),
                    "lastAttempt": record.last_attempt.isoformat() if record.last_attempt else None,
                })
            nodes.append(data)

        network = self.graph.to_dict()
        return {"nodes": nodes, "edges": network["edges"], "categories": network["categories"]}

    def get_repair_candidates(self, student_id: str) -> List[dict]:
        """Weak concepts, weakest first, each with the earliest weak prerequisite."""
        records = self.ledger.get_all_mastery(student_id)
        scores = {cid: r.mastery_score for cid, r in records.items() if r.attempts}

        candidates = []
        for record in self.ledger.get_weak_concepts(student_id):
            root = record.concept_id
            if self.graph.get_node(record.concept_id) is not None:
                root = self.graph.trace_root_cause(record.concept_id, scores, MEDIUM_THRESHOLD)
            candidates.append({
                "conceptId": record.concept_id,
                "conceptName": record.concept_name,
                "masteryScore": record.mastery_score,
                "rootCause": root,
            })
        return candidates

    # ==================== Maintenance ====================

    def cleanup(self, student_id: str, cutoff_days: int = DEFAULT_CLEANUP_DAYS) -> dict:
        return {
            "mastery_records_removed": self.ledger.cleanup(student_id, cutoff_days),
            "mistake_concepts_removed": self.tracker.cleanup(student_id, cutoff_days),
        }

