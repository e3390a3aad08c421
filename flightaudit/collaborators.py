# flightaudit/collaborators.py
"""
Collaborator contracts around the audit engine.

 - DocumentExtractor: turns scanned logbooks into log entries / experience totals
 - NarrativeRiskAdvisor: supplies an opaque 0..10 risk score for a pilot
 - NotificationDispatcher: delivers no-go alerts

The engine never calls the extractor or the advisor during an audit; the helpers
below apply their output to the store beforehand. Only LoggingDispatcher ships
here, real transports are plugged in by the deployment.
"""

from typing import Any, List, Optional, Protocol
import logging

from pydantic import BaseModel, Field, ValidationError

from .exceptions import EntityNotFound, MalformedInput
from .models import (
    AircraftSnapshot,
    CheckStatus,
    CurrentHours,
    Experience,
    Flight,
    LegalityCheck,
    LogEntry,
    PilotSnapshot,
    SafetyAnalysis,
    utcnow,
)
from .store import FlightStore

log = logging.getLogger("flight_audit")


class ExtractedRecords(BaseModel):
    log_entries: List[LogEntry] = Field(default_factory=list)
    current_hours: Optional[CurrentHours] = None
    experience: Optional[Experience] = None


class DocumentExtractor(Protocol):
    def extract(self, document: Any) -> ExtractedRecords:
        ...


class NarrativeRiskAdvisor(Protocol):
    def score(self, pilot: PilotSnapshot) -> Optional[float]:
        ...


class NotificationDispatcher(Protocol):
    def dispatch(self, recipient: str, flight: Flight, checks: List[LegalityCheck]) -> None:
        ...


class LoggingDispatcher:
    """Records alerts in the log instead of sending them."""

    def __init__(self):
        self.sent = []

    def dispatch(self, recipient: str, flight: Flight, checks: List[LegalityCheck]) -> None:
        failing = [c.item for c in checks if c.status == CheckStatus.FAIL]
        log.warning(
            "NO-GO alert for flight %s to %s: %s",
            flight.id, recipient, ", ".join(failing) or "no failing checks",
        )
        self.sent.append((recipient, flight.id))


# ---------- Ingestion ----------
def ingest_aircraft_records(
    store: FlightStore,
    aircraft_id: str,
    extractor: DocumentExtractor,
    document: Any,
) -> AircraftSnapshot:
    """Run the extractor over a document and append what it found to the aircraft."""
    if store.get_aircraft(aircraft_id) is None:
        raise EntityNotFound("aircraft", aircraft_id)

    try:
        records = extractor.extract(document)
        if not isinstance(records, ExtractedRecords):
            records = ExtractedRecords.model_validate(records)
    except ValidationError as e:
        raise MalformedInput("Extracted records failed validation", details={"errors": e.errors()}) from e

    aircraft = store.append_log_entries(aircraft_id, records.log_entries, records.current_hours)
    log.info("Ingested %d log entries for aircraft %s", len(records.log_entries), aircraft.tail_number)
    return aircraft


def ingest_pilot_records(
    store: FlightStore,
    pilot_id: str,
    extractor: DocumentExtractor,
    document: Any,
) -> PilotSnapshot:
    if store.get_pilot(pilot_id) is None:
        raise EntityNotFound("pilot", pilot_id)

    try:
        records = extractor.extract(document)
        if not isinstance(records, ExtractedRecords):
            records = ExtractedRecords.model_validate(records)
    except ValidationError as e:
        raise MalformedInput("Extracted records failed validation", details={"errors": e.errors()}) from e

    if records.experience is None:
        raise MalformedInput("No pilot experience found in document", field="experience")
    return store.update_experience(pilot_id, records.experience)


def refresh_safety_analysis(
    store: FlightStore,
    pilot_id: str,
    advisor: NarrativeRiskAdvisor,
) -> Optional[PilotSnapshot]:
    """
    Ask the advisor for a score and store it on the pilot.

    The score is clamped into 0..10 and kept as-is otherwise; the risk calculator
    reads it without interpretation. Returns None when the advisor has no opinion.
    """
    pilot = store.get_pilot(pilot_id)
    if pilot is None:
        raise EntityNotFound("pilot", pilot_id)

    score = advisor.score(pilot)
    if score is None:
        log.info("Risk advisor returned no score for pilot %s", pilot_id)
        return None

    score = min(max(float(score), 0.0), 10.0)
    findings = []
    if pilot.safety_analysis is not None:
        findings = list(pilot.safety_analysis.findings)
    analysis = SafetyAnalysis(score=score, last_analyzed=utcnow(), findings=findings)
    return store.update_safety_analysis(pilot_id, analysis)


__all__ = [
    "DocumentExtractor",
    "ExtractedRecords",
    "LoggingDispatcher",
    "NarrativeRiskAdvisor",
    "NotificationDispatcher",
    "ingest_aircraft_records",
    "ingest_pilot_records",
    "refresh_safety_analysis",
]
