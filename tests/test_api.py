"""Tests for api/main.py (in-memory storage, engine dependency overridden)"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from analytics.engine import AnalyticsEngine
from analytics.mastery_ledger import MAX_TIME_SPENT_MS
from analytics.storage import MemoryStore
from api.main import app, get_engine


@pytest.fixture
def engine(graph, clock):
    return AnalyticsEngine(graph, MemoryStore(), clock=clock)


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def post_attempt(client, concept_name, hint_level=0, time_spent=30000, success=True, **extra):
    payload = {
        "student_id": "s1",
        "concept_name": concept_name,
        "problem_id": "p1",
        "hint_level": hint_level,
        "time_spent": time_spent,
        "success": success,
    }
    payload.update(extra)
    return client.post("/attempts", json=payload)


class TestHealth:
    def test_root(self, client):
        data = client.get("/").json()
        assert data["status"] == "ok"
        assert data["graph"]["total_concepts"] == 30


class TestAttempts:
    def test_resolved_attempt(self, client):
        response = post_attempt(client, "Newton's Laws!!")
        assert response.status_code == 200
        data = response.json()
        assert data["resolved"] is True
        assert data["conceptId"] == "newtons-laws"
        assert data["record"]["attempts"][0]["problemId"] == "p1"

    def test_unresolved_attempt(self, client):
        data = post_attempt(client, "Quantum Entanglement Foo").json()
        assert data == {"resolved": False, "conceptId": None, "record": None}

    def test_out_of_range_metrics_are_clamped(self, client):
        data = post_attempt(client, "Vectors", hint_level=12, time_spent=-5).json()
        attempt = data["record"]["attempts"][0]
        assert attempt["hintLevel"] == 5
        assert attempt["timeSpent"] == 0.0

    def test_overflowing_time_is_capped_and_readable(self, client):
        body = ('{"student_id": "s1", "concept_name": "Friction", "problem_id": "p1",'
                ' "hint_level": 1, "time_spent": 1e400, "success": true}')
        response = client.post("/attempts", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json()["record"]["attempts"][0]["timeSpent"] == MAX_TIME_SPENT_MS

        mastery = client.get("/students/s1/mastery")
        assert mastery.status_code == 200
        assert "friction" in mastery.json()["masteryData"]

    def test_mastery_views(self, client):
        post_attempt(client, "Vectors")
        post_attempt(client, "Friction", hint_level=5, time_spent=200000, success=False)

        mastery = client.get("/students/s1/mastery").json()
        assert set(mastery["masteryData"]) == {"vectors", "friction"}
        assert mastery["statistics"]["total_concepts"] == 2

        weak = client.get("/students/s1/weak-concepts").json()
        strong = client.get("/students/s1/strong-concepts").json()
        assert [r["conceptId"] for r in weak] == ["friction"]
        assert [r["conceptId"] for r in strong] == ["vectors"]

        repair = client.get("/students/s1/repair").json()
        assert repair[0]["rootCause"] == "friction"

    def test_student_network(self, client):
        post_attempt(client, "Vectors")
        nodes = {n["id"]: n for n in client.get("/concept-network/s1").json()["nodes"]}
        assert nodes["vectors"]["masteryLevel"] == "high"
        static = client.get("/concept-network").json()
        assert len(static["edges"]) == 37


class TestCleanup:
    def test_cleanup_with_cutoff(self, client, clock):
        old = (clock.now - timedelta(days=40)).isoformat()
        post_attempt(client, "Vectors", timestamp=old)
        data = client.post("/students/s1/cleanup", json={"cutoff_days": 30}).json()
        assert data["mastery_records_removed"] == 1
        assert client.get("/students/s1/mastery").json()["masteryData"] == {}

    def test_cleanup_default_cutoff(self, client, clock):
        old = (clock.now - timedelta(days=40)).isoformat()
        post_attempt(client, "Vectors", timestamp=old)
        data = client.post("/students/s1/cleanup").json()
        assert data["mastery_records_removed"] == 0


class TestMistakesAndWarnings:
    def record_mistake(self, client, hint):
        return client.post("/mistakes", json={
            "student_id": "s1",
            "concept_id": "momentum",
            "concept_name": "Momentum & Impulse",
            "problem_type": "Collisions",
            "struggled_steps": [1, 3],
            "max_hint_level_used": hint,
            "time_spent": 95000,
        })

    def test_record_returns_stats(self, client):
        data = self.record_mistake(client, 5).json()
        assert data["recorded"] is True
        assert data["stats"]["totalAttempts"] == 1
        assert data["stats"]["struggledAttempts"] == 1

    def test_warnings(self, client):
        for hint in (5, 5, 1, 5):
            self.record_mistake(client, hint)
        warnings = client.post("/warnings", json={
            "student_id": "s1",
            "concept_names": ["Momentum & Impulse"],
            "problem_type": "Collisions",
        }).json()
        assert len(warnings) == 1
        assert warnings[0]["severity"] == "high"
        assert "3/4" in warnings[0]["message"]

    def test_no_warning_after_single_struggle(self, client):
        self.record_mistake(client, 5)
        warnings = client.post("/warnings", json={"student_id": "s1", "concept_names": ["momentum"]})
        assert warnings.json() == []


class TestMapConcepts:
    def test_batch_mapping(self, client):
        data = client.post("/concepts/map", json={"concepts": [
            {"id": "ext-1", "name": "Newton's Laws"},
            {"id": "ext-2", "name": "Quantum Entanglement Foo"},
        ]}).json()
        assert data["mapping"] == {"ext-1": "newtons-laws", "ext-2": None}
        assert data["stats"]["mappingRate"] == pytest.approx(50.0)
