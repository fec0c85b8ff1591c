"""
FastAPI Backend for the physics analytics core.

Endpoints:
    GET  /                                 - Health check
    GET  /concept-network                  - Static concept network
    GET  /concept-network/{student_id}     - Network with the student's mastery
    POST /attempts                         - Record an attempt (free-text concept name)
    GET  /students/{id}/mastery            - All mastery records + statistics
    GET  /students/{id}/weak-concepts      - Score < 0.4, weakest first
    GET  /students/{id}/strong-concepts    - Score >= 0.75, strongest first
    GET  /students/{id}/repair             - Weak concepts with root-cause prerequisite
    POST /mistakes                         - Record a mistake event
    POST /warnings                         - Warnings for an upcoming problem
    POST /concepts/map                     - Batch concept-name resolution
    POST /students/{id}/cleanup            - Drop data older than the cutoff
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from analytics.config import get_settings
from analytics.engine import AnalyticsEngine
from analytics.knowledge_graph import get_default_graph
from analytics.maintenance import CleanupSweep
from analytics.mistake_tracker import MistakeEvent
from analytics.storage import KeyValueStore, MemoryStore
from redis_store import RedisStore

settings = get_settings()
logging.basicConfig(level=settings.log_level,
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Fail fast: an invalid concept network must stop the process here
kg = get_default_graph(settings.concept_network_path)


def build_store() -> KeyValueStore:
    if settings.storage_backend == "memory":
        return MemoryStore()
    return RedisStore(settings=settings)


@lru_cache(maxsize=None)
def get_engine() -> AnalyticsEngine:
    return AnalyticsEngine(kg, build_store())


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep = None
    if settings.cleanup_interval_seconds > 0:
        engine = get_engine()
        sweep = CleanupSweep(engine.ledger, engine.tracker, settings.cleanup_days)
        sweep.start(settings.cleanup_interval_seconds)
        logger.info("Cleanup sweep scheduled every %ss", settings.cleanup_interval_seconds)
    yield
    if sweep is not None:
        sweep.stop()


app = FastAPI(
    title="PhysiScaffold Analytics API",
    description="Concept graph, mastery scoring and mistake-pattern warnings",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Request Models ====================

class AttemptRequest(BaseModel):
    student_id: str
    concept_name: str
    problem_id: str = ""
    hint_level: float = 0
    time_spent: float = 0  # Milliseconds
    success: bool = False
    timestamp: Optional[datetime] = None


class MistakeRequest(BaseModel):
    student_id: str
    concept_id: str
    concept_name: str
    problem_type: str = ""
    struggled_steps: List[int] = Field(default_factory=list)
    max_hint_level_used: float = 0
    time_spent: float = 0
    timestamp: Optional[datetime] = None
    common_mistake: Optional[str] = None


class WarningsRequest(BaseModel):
    student_id: str
    concept_names: List[str]
    problem_type: str = ""


class ExternalConcept(BaseModel):
    id: str
    name: str


class MapConceptsRequest(BaseModel):
    concepts: List[ExternalConcept]


class CleanupRequest(BaseModel):
    cutoff_days: int = Field(default=settings.cleanup_days, ge=0)


# ==================== Core Endpoints ====================

@app.get("/")
def root():
    return {
        "status": "ok",
        "message": "PhysiScaffold analytics API is running",
        "version": "1.0.0",
        "graph": kg.get_stats(),
    }


@app.get("/concept-network")
def concept_network(engine: AnalyticsEngine = Depends(get_engine)):
    return engine.get_concept_network()


@app.get("/concept-network/{student_id}")
def student_concept_network(student_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    return engine.get_concept_network(student_id)


@app.post("/attempts")
def record_attempt(request: AttemptRequest, engine: AnalyticsEngine = Depends(get_engine)):
    record = engine.process_attempt(
        request.student_id,
        request.concept_name,
        request.problem_id,
        request.hint_level,
        request.time_spent,
        request.success,
        timestamp=request.timestamp,
    )
    if record is None:
        return {"resolved": False, "conceptId": None, "record": None}
    return {
        "resolved": True,
        "conceptId": record.concept_id,
        "masteryLevel": record.mastery_level,
        "record": record.to_dict(),
    }


# ==================== Mastery Endpoints ====================

@app.get("/students/{student_id}/mastery")
def student_mastery(student_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    records = engine.ledger.get_all_mastery(student_id)
    return {
        "studentId": student_id,
        "masteryData": {cid: r.to_dict() for cid, r in records.items()},
        "statistics": engine.ledger.get_statistics(student_id),
    }


@app.get("/students/{student_id}/weak-concepts")
def weak_concepts(student_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    return [r.to_dict() for r in engine.ledger.get_weak_concepts(student_id)]


@app.get("/students/{student_id}/strong-concepts")
def strong_concepts(student_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    return [r.to_dict() for r in engine.ledger.get_strong_concepts(student_id)]


@app.get("/students/{student_id}/repair")
def repair_candidates(student_id: str, engine: AnalyticsEngine = Depends(get_engine)):
    return engine.get_repair_candidates(student_id)


@app.post("/students/{student_id}/cleanup")
def cleanup(student_id: str, request: Optional[CleanupRequest] = None,
            engine: AnalyticsEngine = Depends(get_engine)):
    cutoff_days = request.cutoff_days if request else settings.cleanup_days
    return engine.cleanup(student_id, cutoff_days)


# ==================== Mistake Endpoints ====================

@app.post("/mistakes")
def record_mistake(request: MistakeRequest, engine: AnalyticsEngine = Depends(get_engine)):
    event = MistakeEvent(
        concept_id=request.concept_id,
        concept_name=request.concept_name,
        problem_type=request.problem_type,
        struggled_steps=request.struggled_steps,
        max_hint_level_used=request.max_hint_level_used,
        time_spent=request.time_spent,
        timestamp=request.timestamp or engine.tracker.clock(),
        common_mistake=request.common_mistake,
    )
    engine.record_mistake(request.student_id, event)
    stats = engine.tracker.get_concept_stats(request.student_id, event.concept_id, event.concept_name)
    return {"recorded": True, "stats": stats.to_dict() if stats else None}


@app.post("/warnings")
def warnings(request: WarningsRequest, engine: AnalyticsEngine = Depends(get_engine)):
    result = engine.get_warnings(request.student_id, request.concept_names, request.problem_type)
    return [w.to_dict() for w in result]


@app.post("/concepts/map")
def map_concepts(request: MapConceptsRequest, engine: AnalyticsEngine = Depends(get_engine)):
    mapping, stats = engine.map_concepts([(c.id, c.name) for c in request.concepts])
    return {"mapping": mapping, "stats": stats.to_dict()}


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
