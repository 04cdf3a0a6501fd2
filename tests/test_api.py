"""
Tests fuer die FastAPI-Endpoints - laufen gegen einen echten ForesightService
mit Fake-Uhr, Redis ist abgeschaltet.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from foresight.main import app
from foresight.service import ForesightService

from conftest import FakeClock
from factories import START

NOW = datetime(2026, 3, 17, 18, 0)


def _cooking_history(days: int = 15) -> list:
    return [
        {
            "timestamp": (START.replace(hour=19) + timedelta(days=i)).isoformat(),
            "kind": "activity",
            "payload": {"activity": "cooking"},
            "user_id": "anna",
            "room_id": "kitchen",
        }
        for i in range(days)
    ]


@pytest.fixture
def service(service_config):
    return ForesightService(service_config, clock=FakeClock(NOW))


@pytest.fixture
def client(service):
    with patch("foresight.main.service", service), \
         patch("foresight.main._connect_redis", AsyncMock(return_value=None)):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def trained(client):
    response = client.post("/api/foresight/observations/import",
                           json={"observations": _cooking_history()})
    assert response.status_code == 200
    return client


class TestHealth:

    def test_health(self, client):
        body = client.get("/api/foresight/health").json()
        assert body["status"] == "ok"
        assert body["redis"] is False
        assert body["patterns"] == 0

    def test_status(self, client):
        body = client.get("/api/foresight/status").json()
        assert body["persistence"]["redis"] is False
        assert body["scenario_engine"]["strategy"] == "balanced"


class TestObservations:

    def test_single_observation(self, client):
        response = client.post("/api/foresight/observations", json={
            "timestamp": "2026-03-17T17:30:00",
            "kind": "presence",
            "payload": {"entering": True},
            "user_id": "anna",
        })
        assert response.status_code == 200
        assert response.json() == {"recorded": True, "observations": 1}

    def test_unknown_kind_rejected(self, client):
        response = client.post("/api/foresight/observations", json={
            "timestamp": "2026-03-17T17:30:00",
            "kind": "telepathy",
        })
        assert response.status_code == 422

    def test_import(self, client):
        response = client.post("/api/foresight/observations/import",
                               json={"observations": _cooking_history()})
        body = response.json()
        assert body["imported"] == 15
        assert body["patterns"] >= 1


class TestPatterns:

    def test_filter_by_type(self, trained):
        body = trained.get("/api/foresight/patterns", params={"type": "daily_routine"}).json()
        ids = [p["id"] for p in body["patterns"]]
        assert "daily_slot_9" in ids
        assert all(p["type"] == "daily_routine" for p in body["patterns"])

    def test_invalid_type(self, client):
        response = client.get("/api/foresight/patterns", params={"type": "monthly"})
        assert response.status_code == 400

    def test_prediction(self, trained):
        body = trained.get("/api/foresight/prediction",
                           params={"at": "2026-03-17T19:00:00"}).json()
        assert body["moment"] == "2026-03-17T19:00:00"
        assert body["activities"][0]["activity"] == "cooking"
        assert "daily_slot_9" in body["pattern_ids"]

    def test_prediction_without_patterns(self, client):
        body = client.get("/api/foresight/prediction").json()
        assert body["activities"] == []
        assert body["confidence"] == 0.0


class TestContext:

    def test_calendar_creates_scenario(self, client):
        response = client.put("/api/foresight/calendar", json={"events": [{
            "id": "ev1",
            "title": "Spieleabend",
            "start": "2026-03-18T20:00:00",
            "end": "2026-03-18T22:00:00",
            "category": "social",
            "attendees": ["ben"],
        }]})
        assert response.json() == {"events": 1}

        body = client.get("/api/foresight/scenarios", params={"horizon": "weekly"}).json()
        assert "calendar_ev1" in [s["id"] for s in body["scenarios"]]

    def test_calendar_end_before_start(self, client):
        response = client.put("/api/foresight/calendar", json={"events": [{
            "id": "ev1",
            "title": "Kaputt",
            "start": "2026-03-18T20:00:00",
            "end": "2026-03-18T19:00:00",
        }]})
        assert response.status_code == 400

    def test_context(self, client):
        response = client.put("/api/foresight/context", json={
            "weather": {"temperature": 31.0, "humidity": 40.0, "condition": "clear"},
            "holidays": ["2026-04-03"],
        })
        assert response.json() == {"updated": True}

    def test_occupant(self, client):
        response = client.put("/api/foresight/occupants/anna", json={"is_home": False})
        assert response.json() == {"user_id": "anna", "is_home": False}
        status = client.get("/api/foresight/status").json()
        assert status["scenario_engine"]["occupants"] == {"anna": False}


class TestScenarios:

    def test_invalid_horizon(self, client):
        response = client.get("/api/foresight/scenarios", params={"horizon": "yearly"})
        assert response.status_code == 400

    def test_regenerate(self, client):
        body = client.post("/api/foresight/regenerate").json()
        assert body["scenarios"] >= 1

    def test_min_probability(self, client):
        client.post("/api/foresight/regenerate")
        body = client.get("/api/foresight/scenarios", params={"min_probability": 0.75}).json()
        assert all(s["probability"] >= 0.75 for s in body["scenarios"])

    def test_preparations(self, trained):
        body = trained.get("/api/foresight/preparations", params={"within": 45}).json()
        actions = [(p["action"], p["execute_at"]) for p in body["preparations"]]
        assert ("preheat_kitchen", "2026-03-17T18:30:00") in actions

    @pytest.mark.parametrize("method, url, params", [
        ("post", "/api/foresight/regenerate", None),
        ("get", "/api/foresight/scenarios", {"min_probability": 0.5, "horizon": "daily"}),
    ])
    def test_reads_under_service_lock(self, client, service, method, url, params):
        engine = service.scenario_engine
        read = engine.get_scenarios
        lock_held = []

        def recording(*args, **kwargs):
            lock_held.append(service._lock._is_owned())
            return read(*args, **kwargs)

        with patch.object(engine, "get_scenarios", side_effect=recording):
            response = getattr(client, method)(url, params=params)

        assert response.status_code == 200
        assert lock_held and all(lock_held)
