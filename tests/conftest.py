# tests/conftest.py
# Ensure project root is on sys.path so `import flightaudit` works reliably in pytest.
import asyncio
import datetime
import sys
from pathlib import Path

import pytest

# Resolve project root as the parent of the tests folder
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    # put project root at front so local packages take precedence
    sys.path.insert(0, str(ROOT))

from flightaudit.audit import AuditService  # noqa: E402
from flightaudit.load_rules import DEFAULT_THRESHOLDS, registry  # noqa: E402
from flightaudit.models import (  # noqa: E402
    AircraftSnapshot,
    Flight,
    PilotSnapshot,
    WeatherSnapshot,
)
from flightaudit.store import InMemoryFlightStore  # noqa: E402

UTC = datetime.timezone.utc
AS_OF = datetime.datetime(2025, 6, 15, 14, 0, tzinfo=UTC)


def aircraft_payload(**overrides):
    data = {
        "id": "ac-1",
        "tail_number": "n12345",
        "model": "C172S",
        "maintenance_dates": {
            "annual": "2025-01-10",
            "transponder": "2024-03-01",
            "static_system": "2024-05-01",
        },
        "current_hours": {"hobbs": 1000.0, "tach": 900.0},
        "for_hire": False,
        "owner_email": "owner@example.com",
    }
    data.update(overrides)
    return data


def pilot_payload(**overrides):
    data = {
        "id": "p-1",
        "name": "Sam Carter",
        "email": "sam@example.com",
        "certificates": {"type": "PPL", "instrument_rated": False},
        "experience": {
            "total_hours": 250,
            "pic_hours": 200,
            "night_hours": 30,
            "last_90_days_hours": 10,
        },
        "medical_expiration": "2026-06-01",
        "flight_review_expiration": "2026-06-01",
    }
    data.update(overrides)
    return data


def weather_payload(**overrides):
    data = {
        "station": "KSFO",
        "metar": "KSFO 151356Z 28008KT 10SM FEW200 18/10 A3001",
        "flight_category": "VFR",
        "visibility": 10,
        "ceiling": None,
        "wind": {"direction": 280, "speed": 8},
        "fetched_at": "2025-06-15T13:56:00Z",
    }
    data.update(overrides)
    return data


def make_aircraft(**overrides) -> AircraftSnapshot:
    return AircraftSnapshot.model_validate(aircraft_payload(**overrides))


def make_pilot(**overrides) -> PilotSnapshot:
    return PilotSnapshot.model_validate(pilot_payload(**overrides))


def make_weather(**overrides) -> WeatherSnapshot:
    return WeatherSnapshot.model_validate(weather_payload(**overrides))


class FakeWeatherProvider:
    """Scripted provider: returns `snapshot`, raises `error`, or sleeps past the deadline."""

    def __init__(self, snapshot=None, error=None, delay=0.0):
        self.snapshot = snapshot
        self.error = error
        self.delay = delay
        self.calls = []

    async def fetch(self, airport_code):
        self.calls.append(airport_code)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.snapshot


class RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def dispatch(self, recipient, flight, checks):
        self.sent.append((recipient, flight.id, [c.item for c in checks]))


@pytest.fixture(autouse=True)
def _reset_registry():
    registry.reset()
    yield
    registry.reset()


@pytest.fixture
def store():
    return InMemoryFlightStore()


@pytest.fixture
def seeded_store(store):
    store.save_aircraft(make_aircraft())
    store.save_pilot(make_pilot())
    store.save_flight(Flight(
        id="f-1",
        pilot_id="p-1",
        aircraft_id="ac-1",
        scheduled_at=AS_OF,
        departure_airport="sfo",
        arrival_airport="SMF",
    ))
    return store


@pytest.fixture
def provider():
    return FakeWeatherProvider(snapshot=make_weather())


@pytest.fixture
def service(seeded_store, provider):
    return AuditService(seeded_store, provider, thresholds_source=lambda: DEFAULT_THRESHOLDS)
