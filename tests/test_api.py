# tests/test_api.py
import datetime

import pytest
from fastapi.testclient import TestClient

from flightaudit.audit import AuditService
from flightaudit.main import app
from flightaudit.models import utcnow

from conftest import (
    RecordingDispatcher,
    aircraft_payload,
    pilot_payload,
    weather_payload,
)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(seeded_store, provider, dispatcher):
    app.state.audit_service = AuditService(
        seeded_store, provider, thresholds_source=lambda: app.state.thresholds, dispatcher=dispatcher,
    )
    with TestClient(app) as c:
        yield c
    app.state.audit_service = None


def test_root_reports_loaded_rules(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "Audit Engine Ready!"
    assert data["rules_loaded"] == 9
    assert data["rules_invalid"] == 0


def test_thresholds_and_reload(client):
    data = client.get("/thresholds").json()
    assert data["thresholds"]["flight_review"]["warning_days"] == 30
    assert [r["id"] for r in data["rules"]][:2] == ["annual_inspection", "flight_review"]

    resp = client.post("/thresholds/reload")
    assert resp.status_code == 200
    assert resp.json() == {"loaded": 9, "invalid": []}


def test_offline_check_lifr_vfr_pilot(client):
    resp = client.post("/check", json={
        "aircraft": aircraft_payload(),
        "pilot": pilot_payload(),
        "scheduled_at": "2025-06-15T14:00:00Z",
        "weather": weather_payload(flight_category="LIFR", visibility=0.5, ceiling=200, wind={"speed": 15}),
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["overall_status"] == "no-go"
    by_item = {c["item"]: c["status"] for c in data["checks"]}
    assert by_item["Weather vs. Ratings"] == "fail"
    assert by_item["Wind Conditions"] == "pass"
    assert data["summary"].startswith("FLIGHT GROUNDED")
    assert data["risk_scenarios"][0]["severity"] == "critical"


def test_offline_check_rejects_malformed_payload(client):
    payload = {"aircraft": aircraft_payload(), "pilot": pilot_payload(), "scheduled_at": "2025-06-15"}
    del payload["pilot"]["medical_expiration"]
    assert client.post("/check", json=payload).status_code == 422


def test_register_and_create_flight(client):
    assert client.post("/aircraft", json=aircraft_payload(id="ac-2", tail_number="n555ab")).json()["tail_number"] == "N555AB"
    assert client.post("/pilots", json=pilot_payload(id="p-2")).status_code == 200

    resp = client.post("/flights", json={
        "pilot_id": "p-2",
        "aircraft_id": "ac-2",
        "scheduled_at": "2025-06-15T14:00:00Z",
        "departure_airport": "sfo",
        "arrival_airport": "smf",
    })
    assert resp.status_code == 201
    data = resp.json()
    flight_id = data["flight"]["id"]
    assert data["flight"]["status"] == "go"
    assert data["audit"]["overall_status"] == "go"

    fetched = client.get(f"/flights/{flight_id}").json()
    assert fetched["departure_airport"] == "SFO"
    assert fetched["latest_snapshot"]["overallStatus"] == "go"


def test_unknown_entities_map_to_404(client):
    resp = client.get("/flights/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "ENTITY_NOT_FOUND"
    assert resp.json()["details"] == {"entity": "flight", "entity_id": "nope"}

    assert client.post("/audit/nope").status_code == 404
    assert client.post("/flights", json={
        "pilot_id": "ghost", "aircraft_id": "ac-1",
        "scheduled_at": "2025-06-15T14:00:00Z", "departure_airport": "SFO",
    }).status_code == 404


def test_create_flight_rejects_blank_departure(client, provider):
    resp = client.post("/flights", json={
        "pilot_id": "p-1", "aircraft_id": "ac-1",
        "scheduled_at": "2025-06-15T14:00:00Z", "departure_airport": "   ",
    })
    assert resp.status_code == 422
    assert provider.calls == []


def test_audit_with_notify_and_history(client, seeded_store, dispatcher):
    seeded_store.save_pilot(seeded_store.get_pilot("p-1").model_copy(update={
        "medical_expiration": datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc),
    }))

    first = client.post("/audit/f-1", params={"notify": True}).json()
    second = client.post("/audit/f-1", params={"notify": True}).json()

    assert first["overall_status"] == "no-go"
    assert first["alert_required"] is True
    assert first["notified"] is True
    assert second["notified"] is False
    assert len(dispatcher.sent) == 1

    history = client.get("/audit/f-1/history").json()
    assert len(history) == 2
    assert set(history[0]) == {"checks", "overallStatus", "weather", "riskScenarios", "generatedAt"}


def test_lifecycle_endpoints(client):
    assert client.post("/flights/f-1/complete").json()["status"] == "completed"
    resp = client.post("/flights/f-1/cancel")
    assert resp.status_code == 409
    assert resp.json()["error"] == "FLIGHT_STATE_ERROR"


def test_sweep_endpoint(client, seeded_store):
    future = utcnow() + datetime.timedelta(days=1)
    flight = seeded_store.get_flight("f-1").model_copy(update={"id": "f-next", "scheduled_at": future})
    seeded_store.save_flight(flight)

    resp = client.post("/audit/sweep")
    assert resp.status_code == 200
    data = resp.json()
    assert data["checked"] == 1
    assert data["results"][0]["flight_id"] == "f-next"


def test_weather_endpoint(client, provider):
    resp = client.get("/weather/sfo")
    assert resp.status_code == 200
    assert resp.json()["station"] == "KSFO"
    assert provider.calls == ["sfo"]

    provider.snapshot = None
    assert client.get("/weather/zzz").status_code == 404
