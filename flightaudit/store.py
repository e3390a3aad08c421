# flightaudit/store.py
"""
Flight / aircraft / pilot persistence.

FlightStore is the contract the audit orchestrator writes through. The in-memory
implementation serialises single writes with a lock; there is no lock across a
whole audit, so two concurrent audits of one flight both land in history and
the last writer's snapshot becomes current.

Audit history is append-only, keyed by (flight_id, generated_at), and stored as
the JSON record shape so what is read back is exactly what was written.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
import datetime
import threading

from .exceptions import EntityNotFound
from .models import (
    AircraftSnapshot,
    AuditSnapshot,
    CurrentHours,
    Experience,
    Flight,
    FlightStatus,
    LogEntry,
    OverallStatus,
    PilotSnapshot,
    SafetyAnalysis,
    TERMINAL_FLIGHT_STATUSES,
    WeatherSnapshot,
    utcnow,
)


class FlightStore(ABC):
    @abstractmethod
    def get_flight(self, flight_id: str) -> Optional[Flight]:
        ...

    @abstractmethod
    def get_aircraft(self, aircraft_id: str) -> Optional[AircraftSnapshot]:
        ...

    @abstractmethod
    def get_pilot(self, pilot_id: str) -> Optional[PilotSnapshot]:
        ...

    @abstractmethod
    def save_flight(self, flight: Flight) -> Flight:
        ...

    @abstractmethod
    def save_aircraft(self, aircraft: AircraftSnapshot) -> AircraftSnapshot:
        ...

    @abstractmethod
    def save_pilot(self, pilot: PilotSnapshot) -> PilotSnapshot:
        ...

    @abstractmethod
    def record_audit(
        self,
        flight_id: str,
        snapshot: AuditSnapshot,
    ) -> Tuple[Flight, Optional[OverallStatus]]:
        """Append snapshot to history, point the flight at it. Returns (flight, previous overall status)."""

    @abstractmethod
    def history(self, flight_id: str) -> List[AuditSnapshot]:
        ...

    @abstractmethod
    def claim_alert(self, flight_id: str) -> bool:
        """Atomic check-and-set of email_sent. True only for the caller that flipped it."""

    @abstractmethod
    def release_alert(self, flight_id: str) -> None:
        """Undo a claim whose dispatch failed."""

    @abstractmethod
    def set_status(self, flight_id: str, status: FlightStatus) -> Flight:
        ...

    @abstractmethod
    def list_active(self, now: datetime.datetime) -> List[Flight]:
        ...

    @abstractmethod
    def append_log_entries(
        self,
        aircraft_id: str,
        entries: Iterable[LogEntry],
        current_hours: Optional[CurrentHours] = None,
    ) -> AircraftSnapshot:
        ...

    @abstractmethod
    def update_experience(self, pilot_id: str, experience: Experience) -> PilotSnapshot:
        ...

    @abstractmethod
    def update_safety_analysis(self, pilot_id: str, analysis: SafetyAnalysis) -> PilotSnapshot:
        ...


class InMemoryFlightStore(FlightStore):
    """Dict-backed store. Everything handed out is a copy; callers never share state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._flights: Dict[str, Flight] = {}
        self._aircraft: Dict[str, AircraftSnapshot] = {}
        self._pilots: Dict[str, PilotSnapshot] = {}
        # flight_id -> [(generated_at, record)]
        self._history: Dict[str, List[Tuple[datetime.datetime, Dict[str, Any]]]] = {}

    # ---------- Reads ----------
    def get_flight(self, flight_id: str) -> Optional[Flight]:
        with self._lock:
            flight = self._flights.get(flight_id)
            return flight.model_copy(deep=True) if flight is not None else None

    def get_aircraft(self, aircraft_id: str) -> Optional[AircraftSnapshot]:
        with self._lock:
            aircraft = self._aircraft.get(aircraft_id)
            return aircraft.model_copy(deep=True) if aircraft is not None else None

    def get_pilot(self, pilot_id: str) -> Optional[PilotSnapshot]:
        with self._lock:
            pilot = self._pilots.get(pilot_id)
            return pilot.model_copy(deep=True) if pilot is not None else None

    def history(self, flight_id: str) -> List[AuditSnapshot]:
        with self._lock:
            records = [record for _, record in self._history.get(flight_id, [])]
        return [AuditSnapshot.model_validate(r) for r in records]

    def list_active(self, now: datetime.datetime) -> List[Flight]:
        with self._lock:
            active = [
                f.model_copy(deep=True)
                for f in self._flights.values()
                if f.scheduled_at > now and f.status not in TERMINAL_FLIGHT_STATUSES
            ]
        return sorted(active, key=lambda f: f.scheduled_at)

    # ---------- Writes ----------
    def save_flight(self, flight: Flight) -> Flight:
        with self._lock:
            stored = flight.model_copy(deep=True)
            self._flights[stored.id] = stored
            return stored.model_copy(deep=True)

    def save_aircraft(self, aircraft: AircraftSnapshot) -> AircraftSnapshot:
        with self._lock:
            stored = aircraft.model_copy(deep=True)
            self._aircraft[stored.id] = stored
            return stored.model_copy(deep=True)

    def save_pilot(self, pilot: PilotSnapshot) -> PilotSnapshot:
        with self._lock:
            stored = pilot.model_copy(deep=True)
            self._pilots[stored.id] = stored
            return stored.model_copy(deep=True)

    def _require_flight(self, flight_id: str) -> Flight:
        flight = self._flights.get(flight_id)
        if flight is None:
            raise EntityNotFound("flight", flight_id)
        return flight

    def record_audit(
        self,
        flight_id: str,
        snapshot: AuditSnapshot,
    ) -> Tuple[Flight, Optional[OverallStatus]]:
        record = snapshot.to_record()
        current = AuditSnapshot.model_validate(record)
        weather: Optional[WeatherSnapshot] = current.weather

        with self._lock:
            flight = self._require_flight(flight_id)
            previous = flight.overall_status

            self._history.setdefault(flight_id, []).append((current.generated_at, record))

            flight.latest_snapshot = current
            flight.overall_status = current.overall_status
            flight.legality_checks = list(current.checks)
            if weather is not None:
                flight.weather = weather
            if flight.status not in TERMINAL_FLIGHT_STATUSES:
                flight.status = FlightStatus(current.overall_status.value)
            # new no-go episode: re-arm the alert
            if current.overall_status == OverallStatus.NO_GO and previous != OverallStatus.NO_GO:
                flight.email_sent = False
            flight.updated_at = utcnow()
            return flight.model_copy(deep=True), previous

    def claim_alert(self, flight_id: str) -> bool:
        with self._lock:
            flight = self._require_flight(flight_id)
            if flight.email_sent:
                return False
            flight.email_sent = True
            flight.updated_at = utcnow()
            return True

    def release_alert(self, flight_id: str) -> None:
        with self._lock:
            flight = self._require_flight(flight_id)
            flight.email_sent = False
            flight.updated_at = utcnow()

    def set_status(self, flight_id: str, status: FlightStatus) -> Flight:
        with self._lock:
            flight = self._require_flight(flight_id)
            flight.status = FlightStatus(status)
            flight.updated_at = utcnow()
            return flight.model_copy(deep=True)

    def append_log_entries(
        self,
        aircraft_id: str,
        entries: Iterable[LogEntry],
        current_hours: Optional[CurrentHours] = None,
    ) -> AircraftSnapshot:
        with self._lock:
            aircraft = self._aircraft.get(aircraft_id)
            if aircraft is None:
                raise EntityNotFound("aircraft", aircraft_id)
            aircraft.logs.extend(e.model_copy(deep=True) for e in entries)
            if current_hours is not None:
                aircraft.current_hours = current_hours.model_copy()
            return aircraft.model_copy(deep=True)

    def update_experience(self, pilot_id: str, experience: Experience) -> PilotSnapshot:
        with self._lock:
            pilot = self._pilots.get(pilot_id)
            if pilot is None:
                raise EntityNotFound("pilot", pilot_id)
            pilot.experience = experience.model_copy()
            return pilot.model_copy(deep=True)

    def update_safety_analysis(self, pilot_id: str, analysis: SafetyAnalysis) -> PilotSnapshot:
        with self._lock:
            pilot = self._pilots.get(pilot_id)
            if pilot is None:
                raise EntityNotFound("pilot", pilot_id)
            pilot.safety_analysis = analysis.model_copy(deep=True)
            return pilot.model_copy(deep=True)


__all__ = ["FlightStore", "InMemoryFlightStore"]
