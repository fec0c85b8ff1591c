"""
Analytics module - Concept graph, mastery scoring, concept resolution, mistake tracking.

Components:
    - knowledge_graph: Static physics concept DAG with typed edges
    - mastery_ledger: Rolling-window mastery score per student per concept
    - concept_resolver: Free-text concept name -> canonical concept ID
    - mistake_tracker: Struggle patterns per concept and warnings
    - engine: Attempt processing across all four
"""

from .knowledge_graph import KnowledgeGraph, GraphIntegrityError, ConceptNode, ConceptEdge, get_default_graph
from .mastery_ledger import MasteryLedger, MasteryRecord, Attempt, compute_score, get_mastery_level
from .concept_resolver import resolve_concept_name, map_concepts, MappingStats
from .mistake_tracker import MistakeTracker, MistakeEvent, MistakeWarning, ConceptMistakeStats
from .storage import MemoryStore, StorageUnavailable, DataCorruption
from .engine import AnalyticsEngine

__all__ = [
    "KnowledgeGraph",
    "GraphIntegrityError",
    "ConceptNode",
    "ConceptEdge",
    "get_default_graph",
    "MasteryLedger",
    "MasteryRecord",
    "Attempt",
    "compute_score",
    "get_mastery_level",
    "resolve_concept_name",
    "map_concepts",
    "MappingStats",
    "MistakeTracker",
    "MistakeEvent",
    "MistakeWarning",
    "ConceptMistakeStats",
    "MemoryStore",
    "StorageUnavailable",
    "DataCorruption",
    "AnalyticsEngine",
]
