# tests/test_collaborators.py
import pytest

from flightaudit.collaborators import (
    ExtractedRecords,
    LoggingDispatcher,
    ingest_aircraft_records,
    ingest_pilot_records,
    refresh_safety_analysis,
)
from flightaudit.exceptions import EntityNotFound, MalformedInput
from flightaudit.legality import check_hundred_hour
from flightaudit.models import CheckStatus

from conftest import AS_OF


class StaticExtractor:
    def __init__(self, records):
        self.records = records

    def extract(self, document):
        return self.records


class StaticAdvisor:
    def __init__(self, score):
        self.value = score

    def score(self, pilot):
        return self.value


def test_ingested_log_entry_feeds_hundred_hour_check(seeded_store):
    aircraft = seeded_store.get_aircraft("ac-1")
    aircraft.for_hire = True
    seeded_store.save_aircraft(aircraft)

    extractor = StaticExtractor({
        "log_entries": [{"date": "2025-05-20", "description": "100hr inspection", "tach_time": 805}],
    })
    updated = ingest_aircraft_records(seeded_store, "ac-1", extractor, b"scan")

    assert check_hundred_hour(updated, AS_OF).status == CheckStatus.WARNING


def test_ingest_rejects_malformed_extraction(seeded_store):
    extractor = StaticExtractor({"log_entries": [{"description": "no date"}]})
    with pytest.raises(MalformedInput):
        ingest_aircraft_records(seeded_store, "ac-1", extractor, b"scan")
    with pytest.raises(EntityNotFound):
        ingest_aircraft_records(seeded_store, "ghost", extractor, b"scan")


def test_ingest_pilot_experience(seeded_store):
    extractor = StaticExtractor(ExtractedRecords(experience={"total_hours": 300, "last_90_days_hours": 2}))
    pilot = ingest_pilot_records(seeded_store, "p-1", extractor, "logbook.pdf")
    assert pilot.experience.total_hours == 300

    with pytest.raises(MalformedInput):
        ingest_pilot_records(seeded_store, "p-1", StaticExtractor(ExtractedRecords()), "empty.pdf")


def test_refresh_safety_analysis_clamps_and_stores(seeded_store):
    pilot = refresh_safety_analysis(seeded_store, "p-1", StaticAdvisor(12))
    assert pilot.safety_analysis.score == 10
    assert pilot.safety_analysis.last_analyzed is not None
    assert seeded_store.get_pilot("p-1").safety_analysis.score == 10

    assert refresh_safety_analysis(seeded_store, "p-1", StaticAdvisor(None)) is None


def test_logging_dispatcher_records(seeded_store, caplog):
    dispatcher = LoggingDispatcher()
    flight = seeded_store.get_flight("f-1")
    with caplog.at_level("WARNING", logger="flight_audit"):
        dispatcher.dispatch("sam@example.com", flight, [])
    assert dispatcher.sent == [("sam@example.com", "f-1")]
    assert "NO-GO alert for flight f-1" in caplog.text
