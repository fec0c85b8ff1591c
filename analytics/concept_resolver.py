"""
Concept Resolver - Maps free-text concept names onto canonical concept IDs.

The reasoning service names concepts however it likes ("Newton's 2nd law",
"conservation of momentum in collisions"). Resolution tries three strategies
in order and the first hit wins:

    1. Exact:     normalized input == normalized node name
    2. Substring: one normalized name contains the other
    3. Keyword:   most curated keywords found in the input

Anything else is unresolved (None). Nothing here raises on bad input.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .knowledge_graph import ConceptNode

logger = logging.getLogger(__name__)

# Ordered: on equal keyword counts the concept declared first wins.
PHYSICS_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("kinematics-1d", ("kinematics", "1d", "one dimension", "linear motion", "displacement", "velocity", "acceleration")),
    ("vectors", ("vector", "magnitude", "direction", "component", "dot product", "cross product")),
    ("newtons-laws", ("newton", "force", "mass", "inertia", "action reaction", "f=ma")),
    ("kinematics-2d", ("2d", "projectile", "two dimension", "trajectory")),
    ("work-energy", ("work", "energy", "kinetic energy", "potential energy", "conservation of energy")),
    ("momentum", ("momentum", "impulse", "collision", "conservation of momentum")),
    ("friction", ("friction", "static friction", "kinetic friction", "coefficient")),
    ("circular-motion", ("circular", "centripetal", "angular", "radius", "tangential")),
    ("rotation", ("rotation", "torque", "angular momentum", "moment of inertia", "rotational")),
    ("gravitation", ("gravity", "gravitation", "orbital", "kepler", "universal gravitation")),
    ("shm", ("simple harmonic", "oscillation", "spring", "pendulum", "shm")),
    ("temperature", ("temperature", "heat", "thermal", "celsius", "kelvin")),
    ("kinetic-theory", ("kinetic theory", "molecular", "ideal gas", "gas law")),
    ("first-law", ("first law", "thermodynamics", "internal energy", "heat transfer")),
    ("second-law", ("second law", "entropy", "carnot", "heat engine", "efficiency")),
    ("electrostatics", ("electrostatic", "coulomb", "electric charge", "electric field", "gauss")),
    ("electric-potential", ("potential", "voltage", "electric potential", "equipotential")),
    ("capacitance", ("capacitor", "capacitance", "dielectric", "charge storage")),
    ("current", ("current", "resistance", "ohm", "resistor", "circuit", "kirchhoff")),
    ("magnetism", ("magnetic", "magnet", "magnetic field", "lorentz", "ampere")),
    ("induction", ("induction", "faraday", "lenz", "induced", "flux")),
    ("ac-circuits", ("ac", "alternating", "impedance", "reactance", "inductor")),
    ("wave-motion", ("wave", "wavelength", "frequency", "amplitude", "superposition")),
    ("sound", ("sound", "acoustic", "doppler", "ultrasonic", "decibel")),
    ("em-waves", ("electromagnetic", "em wave", "light", "spectrum", "photon")),
    ("reflection-refraction", ("reflection", "refraction", "snell", "mirror", "lens")),
    ("interference", ("interference", "young", "double slit", "constructive", "destructive")),
    ("diffraction", ("diffraction", "single slit", "resolution", "fraunhofer")),
    ("photoelectric", ("photoelectric", "photon", "work function", "einstein")),
    ("atomic-structure", ("atom", "bohr", "electron", "nucleus", "quantum number", "energy level")),
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MappingStats:
    total: int
    mapped: int
    unmapped: int
    mapping_rate: float  # Percent

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "mapped": self.mapped,
            "unmapped": self.unmapped,
            "mappingRate": self.mapping_rate,
        }


def normalize(name: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _PUNCTUATION.sub("", name.lower())
    return _WHITESPACE.sub(" ", text).strip()


# ==================== Strategies ====================

def _exact_match(query: str, nodes: Sequence[ConceptNode]) -> Optional[str]:
    for node in nodes:
        if normalize(node.name) == query:
            return node.id
    return None


def _substring_match(query: str, nodes: Sequence[ConceptNode]) -> Optional[str]:
    for node in nodes:
        candidate = normalize(node.name)
        if candidate and (candidate in query or query in candidate):
            return node.id
    return None


def _keyword_match(query: str, nodes: Sequence[ConceptNode],
                   keywords: Iterable[Tuple[str, Iterable[str]]]) -> Optional[str]:
    known = {node.id for node in nodes}
    best_id, best_score = None, 0

    for concept_id, words in keywords:
        if concept_id not in known:
            continue
        score = sum(1 for w in map(normalize, words) if w and w in query)
        # Strict '>' keeps the earlier concept on ties
        if score > best_score:
            best_id, best_score = concept_id, score

    return best_id


# ==================== Public API ====================

def resolve_concept_name(name, nodes: Sequence[ConceptNode],
                         keywords: Iterable[Tuple[str, Iterable[str]]] = PHYSICS_KEYWORDS) -> Optional[str]:
    """
    Map a free-text concept name to a node ID.

    Returns None when no strategy produces a match.
    """
    if not isinstance(name, str):
        return None
    query = normalize(name)
    if not query:
        return None

    for strategy in (_exact_match, _substring_match):
        concept_id = strategy(query, nodes)
        if concept_id:
            return concept_id

    concept_id = _keyword_match(query, nodes, keywords)
    if concept_id:
        return concept_id

    logger.warning("Could not map concept name: %r", name)
    return None


def map_concepts(concepts: Iterable[Tuple[str, str]], nodes: Sequence[ConceptNode],
                 keywords: Iterable[Tuple[str, Iterable[str]]] = PHYSICS_KEYWORDS
                 ) -> Tuple[Dict[str, Optional[str]], MappingStats]:
    """
    Resolve (external_id, name) pairs.

    Returns external_id -> node ID (or None) plus summary statistics.
    """
    keywords = tuple(keywords)
    mapping: Dict[str, Optional[str]] = {}
    total = mapped = 0
    for external_id, name in concepts:
        concept_id = resolve_concept_name(name, nodes, keywords)
        mapping[external_id] = concept_id
        total += 1
        if concept_id is not None:
            mapped += 1
            logger.debug("Mapped %r (%s) -> %s", name, external_id, concept_id)

    stats = MappingStats(
        total=total,
        mapped=mapped,
        unmapped=total - mapped,
        mapping_rate=(mapped / total * 100) if total else 0.0,
    )
    return mapping, stats


def get_unmapped_concepts(concepts: Iterable[Tuple[str, str]],
                          nodes: Sequence[ConceptNode]) -> List[Tuple[str, str]]:
    """Pairs whose name does not resolve, for diagnostics."""
    return [(eid, name) for eid, name in concepts if resolve_concept_name(name, nodes) is None]


def get_mapping_stats(concepts: Iterable[Tuple[str, str]], nodes: Sequence[ConceptNode]) -> MappingStats:
    return map_concepts(concepts, nodes)[1]
