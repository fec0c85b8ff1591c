"""
Knowledge Graph - Static physics concept network with prerequisite DAG.

Features:
    - Concept nodes grouped by physics category and difficulty
    - Typed relationship edges (prerequisite, related, builds-on, applies-to)
    - Load-time integrity validation (fail fast on bad data)
    - Transitive prerequisite queries and root cause tracing
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import networkx as nx

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_PATH = Path(__file__).parent / "data" / "concept_network.json"


class GraphIntegrityError(Exception):
    """Raised when the concept network violates a structural invariant."""


class Category(str, Enum):
    MECHANICS = "mechanics"
    THERMODYNAMICS = "thermodynamics"
    ELECTROMAGNETISM = "electromagnetism"
    WAVES = "waves"
    OPTICS = "optics"
    MODERN_PHYSICS = "modern-physics"


class Difficulty(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Relationship(str, Enum):
    PREREQUISITE = "prerequisite"
    RELATED = "related"
    BUILDS_ON = "builds-on"
    APPLIES_TO = "applies-to"


# Edge types that order concepts and therefore must stay acyclic
ORDERING_RELATIONSHIPS = (Relationship.PREREQUISITE, Relationship.BUILDS_ON)


@dataclass(frozen=True)
class ConceptNode:
    id: str
    name: str
    category: Category
    difficulty: Difficulty
    prerequisites: Tuple[str, ...] = ()
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "difficulty": self.difficulty.value,
            "prerequisites": list(self.prerequisites),
            "description": self.description,
        }


@dataclass(frozen=True)
class ConceptEdge:
    source: str
    target: str
    relationship: Relationship
    strength: float
    description: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["relationship"] = self.relationship.value
        if self.description is None:
            del data["description"]
        return data


@dataclass(frozen=True)
class CategoryInfo:
    id: str
    name: str
    color: str = "#9CA3AF"
    concept_count: int = field(default=0, compare=False)


def _parse_node(raw: dict) -> ConceptNode:
    try:
        return ConceptNode(
            id=raw["id"],
            name=raw["name"],
            category=Category(raw["category"]),
            difficulty=Difficulty(raw["difficulty"]),
            prerequisites=tuple(raw.get("prerequisites", [])),
            description=raw.get("description", ""),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise GraphIntegrityError(f"Invalid concept node {raw!r}: {e}") from e


def _parse_edge(raw: dict) -> ConceptEdge:
    try:
        edge = ConceptEdge(
            source=raw["source"],
            target=raw["target"],
            relationship=Relationship(raw["relationship"]),
            strength=float(raw["strength"]),
            description=raw.get("description"),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise GraphIntegrityError(f"Invalid concept edge {raw!r}: {e}") from e

    if not 0.0 <= edge.strength <= 1.0:
        raise GraphIntegrityError(
            f"Edge {edge.source} -> {edge.target} has strength {edge.strength} outside [0, 1]"
        )
    return edge


class KnowledgeGraph:
    """
    Immutable concept network.

    Nodes and edges are validated once at construction; every query after
    that is read-only. The prerequisite DAG is held in a networkx DiGraph
    (prerequisite -> dependent), built from each node's prerequisite list
    plus every prerequisite/builds-on edge.
    """

    def __init__(self, nodes: Iterable[ConceptNode], edges: Iterable[ConceptEdge] = (),
                 categories: Iterable[CategoryInfo] = ()):
        self._nodes: Dict[str, ConceptNode] = {}
        self._edges: Tuple[ConceptEdge, ...] = tuple(edges)
        self._by_category: Dict[Category, List[str]] = {}

        for node in nodes:
            if node.id in self._nodes:
                raise GraphIntegrityError(f"Duplicate concept id: {node.id}")
            self._nodes[node.id] = node
            self._by_category.setdefault(node.category, []).append(node.id)

        self._validate_references()
        self.graph = self._build_prerequisite_graph()
        self._topo_order = self._check_acyclic()
        self._categories = self._count_categories(categories)

    # ==================== Loading ====================

    @classmethod
    def from_dict(cls, data: dict) -> "KnowledgeGraph":
        """Build a graph from the JSON document layout (nodes/edges/categories)."""
        nodes = [_parse_node(n) for n in data.get("nodes", [])]
        edges = [_parse_edge(e) for e in data.get("edges", [])]
        categories = [
            CategoryInfo(id=c["id"], name=c.get("name", c["id"]), color=c.get("color", "#9CA3AF"))
            for c in data.get("categories", [])
        ]
        return cls(nodes, edges, categories)

    @classmethod
    def from_file(cls, path: Union[str, Path] = DEFAULT_NETWORK_PATH) -> "KnowledgeGraph":
        """Load the concept network from a JSON file."""
        with open(path, 'r', encoding="utf-8") as f:
            data = json.load(f)
        graph = cls.from_dict(data)
        logger.info("Loaded concept network from %s (%d nodes, %d edges)",
                    path, len(graph._nodes), len(graph._edges))
        return graph

    # ==================== Validation ====================

    def _validate_references(self):
        for node in self._nodes.values():
            for prereq in node.prerequisites:
                if prereq not in self._nodes:
                    raise GraphIntegrityError(
                        f"Concept {node.id} lists unknown prerequisite {prereq}"
                    )
        for edge in self._edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._nodes:
                    raise GraphIntegrityError(
                        f"Edge {edge.source} -> {edge.target} references unknown concept {endpoint}"
                    )

    def _build_prerequisite_graph(self) -> nx.DiGraph:
        graph = nx.DiGraph()
        for cid, node in self._nodes.items():
            graph.add_node(cid, category=node.category.value)
        for cid, node in self._nodes.items():
            for prereq in node.prerequisites:
                graph.add_edge(prereq, cid)
        for edge in self._edges:
            if edge.relationship in ORDERING_RELATIONSHIPS:
                graph.add_edge(edge.source, edge.target)
        return graph

    def _check_acyclic(self) -> List[str]:
        try:
            return list(nx.topological_sort(self.graph))
        except nx.NetworkXUnfeasible as e:
            cycle = nx.find_cycle(self.graph)
            path = " -> ".join([u for u, _ in cycle] + [cycle[0][0]])
            raise GraphIntegrityError(f"Prerequisite cycle detected: {path}") from e

    def _count_categories(self, categories: Iterable[CategoryInfo]) -> List[CategoryInfo]:
        declared = {c.id: c for c in categories}
        result = []
        for category in Category:
            info = declared.get(category.value, CategoryInfo(id=category.value, name=category.value))
            result.append(CategoryInfo(
                id=info.id,
                name=info.name,
                color=info.color,
                concept_count=len(self._by_category.get(category, [])),
            ))
        return result

    # ==================== Query Methods ====================

    def get_node(self, concept_id: str) -> Optional[ConceptNode]:
        """Get a concept node by ID."""
        return self._nodes.get(concept_id)

    def get_nodes(self) -> List[ConceptNode]:
        """All nodes in declaration order."""
        return list(self._nodes.values())

    def get_edges(self) -> List[ConceptEdge]:
        return list(self._edges)

    def get_categories(self) -> List[CategoryInfo]:
        return list(self._categories)

    def get_all_concepts(self) -> List[str]:
        """Get all concept IDs in topological order."""
        return list(self._topo_order)

    def get_direct_prerequisites(self, concept_id: str) -> List[str]:
        """Get immediate prerequisites (one level up)."""
        if concept_id not in self._nodes:
            return []
        return list(self.graph.predecessors(concept_id))

    def get_transitive_prerequisites(self, concept_id: str) -> Set[str]:
        """Get ALL prerequisites recursively."""
        if concept_id not in self._nodes:
            return set()
        return nx.ancestors(self.graph, concept_id)

    def get_dependents(self, concept_id: str) -> List[str]:
        """Get concepts that depend on this one (one level down)."""
        if concept_id not in self._nodes:
            return []
        return list(self.graph.successors(concept_id))

    def list_by_category(self, category: Union[Category, str]) -> List[ConceptNode]:
        try:
            category = Category(category)
        except ValueError:
            return []
        return [self._nodes[cid] for cid in self._by_category.get(category, [])]

    def get_edges_between(self, a: str, b: str) -> List[ConceptEdge]:
        """Edges joining two concepts, in either direction."""
        return [
            e for e in self._edges
            if (e.source == a and e.target == b) or (e.source == b and e.target == a)
        ]

    # ==================== Root Cause Analysis ====================

    def trace_root_cause(self, failed_concept: str, mastery: Dict[str, float],
                         threshold: float = 0.4) -> str:
        """
        Find the root cause of failure by tracing back through prerequisites.

        Returns the EARLIEST weak concept in the prerequisite chain, or the
        failed concept itself when every prerequisite is strong. Concepts
        without a score are treated as unknown, not weak.
        """
        ancestors = self.get_transitive_prerequisites(failed_concept)

        for concept_id in self._topo_order:
            if concept_id in ancestors and concept_id in mastery and mastery[concept_id] < threshold:
                return concept_id

        return failed_concept

    def get_learning_path(self, target_concept: str, mastery: Dict[str, float],
                          threshold: float = 0.75) -> List[str]:
        """
        Get ordered list of concepts to learn before reaching target.

        Only includes concepts with mastery below threshold.
        """
        if target_concept not in self._nodes:
            return []
        needed = self.get_transitive_prerequisites(target_concept)
        needed.add(target_concept)

        return [
            c for c in self._topo_order
            if c in needed and mastery.get(c, 0.0) < threshold
        ]

    # ==================== Statistics ====================

    def get_stats(self) -> dict:
        """Get graph statistics."""
        return {
            "total_concepts": len(self._nodes),
            "total_edges": len(self._edges),
            "categories": [c.id for c in self._categories],
            "concepts_per_category": {c.id: c.concept_count for c in self._categories},
            "max_depth": nx.dag_longest_path_length(self.graph) if self._nodes else 0,
        }

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self._nodes.values()],
            "edges": [e.to_dict() for e in self._edges],
            "categories": [
                {"id": c.id, "name": c.name, "color": c.color, "conceptCount": c.concept_count}
                for c in self._categories
            ],
        }


@lru_cache(maxsize=None)
def get_default_graph(path: Optional[str] = None) -> KnowledgeGraph:
    """Process-wide concept network, loaded once."""
    return KnowledgeGraph.from_file(path or DEFAULT_NETWORK_PATH)
