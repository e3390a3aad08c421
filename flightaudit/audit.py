# flightaudit/audit.py
"""
Audit orchestrator.

run_audit(flight_id) is the only way a flight moves into go / caution / no-go:

    load flight, pilot, aircraft  -> EntityNotFound is fatal
    fetch weather (bounded)       -> failure or no data falls back to stored weather
    evaluate, aggregate, score
    persist snapshot              -> PersistenceError is fatal, nothing is returned
    return AuditResult

The engine never sends alerts on its own. AuditResult.alert_required marks the
edge into no-go; notify_if_required() is the caller-side helper that claims the
per-episode alert flag atomically before dispatching.

run_sweep() is the periodic re-check of every upcoming flight: audits run
concurrently (bounded), and each flight's error stays in its own outcome.
"""

from typing import Callable, List, Optional, Tuple
import asyncio
import datetime
import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from .collaborators import NotificationDispatcher
from .exceptions import AuditError, EntityNotFound, FlightStateError, PersistenceError, WeatherUnavailable
from .legality import aggregate_status, evaluate_checks, generate_summary, weather_data_warning
from .load_rules import AuditThresholds, registry
from .models import (
    AircraftSnapshot,
    AuditResult,
    AuditSnapshot,
    AwareDatetime,
    Flight,
    FlightStatus,
    OverallStatus,
    PilotSnapshot,
    TERMINAL_FLIGHT_STATUSES,
    WeatherSnapshot,
    airport_code,
    parse_iso,
    utcnow,
)
from .risk import calculate_risk_scenarios
from .store import FlightStore
from .weather import WeatherProvider

log = logging.getLogger("flight_audit")


class SweepOutcome(BaseModel):
    flight_id: str
    overall_status: Optional[OverallStatus] = None
    alert_required: bool = False
    notified: bool = False
    weather_degraded: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


class SweepReport(BaseModel):
    checked: int
    results: List[SweepOutcome] = Field(default_factory=list)
    started_at: AwareDatetime
    finished_at: AwareDatetime

    @property
    def failed(self) -> List[SweepOutcome]:
        return [r for r in self.results if r.error is not None]


class AuditService:
    def __init__(
        self,
        store: FlightStore,
        weather_provider: Optional[WeatherProvider] = None,
        thresholds_source: Optional[Callable[[], AuditThresholds]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.store = store
        self.weather_provider = weather_provider
        self.thresholds_source = thresholds_source or registry.get
        self.dispatcher = dispatcher

    @property
    def thresholds(self) -> AuditThresholds:
        return self.thresholds_source()

    # ---------- Loading ----------
    def _load(self, flight_id: str) -> Tuple[Flight, PilotSnapshot, AircraftSnapshot]:
        flight = self.store.get_flight(flight_id)
        if flight is None:
            raise EntityNotFound("flight", flight_id)
        pilot = self.store.get_pilot(flight.pilot_id)
        if pilot is None:
            raise EntityNotFound("pilot", flight.pilot_id)
        aircraft = self.store.get_aircraft(flight.aircraft_id)
        if aircraft is None:
            raise EntityNotFound("aircraft", flight.aircraft_id)
        return flight, pilot, aircraft

    # ---------- Weather ----------
    async def _fetch_weather(
        self,
        flight: Flight,
        timeout: float,
    ) -> Tuple[Optional[WeatherSnapshot], bool]:
        """(weather to use, degraded). Degraded means fresh data could not be obtained."""
        airport = flight.departure_airport
        if self.weather_provider is None:
            log.warning("No weather provider configured, using stored weather for %s", flight.id)
            return flight.weather, True

        try:
            fresh = await asyncio.wait_for(self.weather_provider.fetch(airport), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Weather fetch for %s timed out after %ss (flight %s)", airport, timeout, flight.id)
            return flight.weather, True
        except WeatherUnavailable as e:
            log.warning("Weather unavailable for flight %s: %s", flight.id, e.message)
            return flight.weather, True
        except Exception as e:
            # providers should raise WeatherUnavailable; anything else is treated the same way
            log.warning("Weather fetch for %s failed (flight %s): %r", airport, flight.id, e)
            return flight.weather, True

        if fresh is None:
            log.warning("No weather data for %s (flight %s)", airport, flight.id)
            return flight.weather, True
        return fresh, False

    # ---------- Audit ----------
    async def run_audit(self, flight_id: str, as_of: Optional[datetime.datetime] = None) -> AuditResult:
        flight, pilot, aircraft = self._load(flight_id)
        thresholds = self.thresholds

        weather, degraded = await self._fetch_weather(flight, thresholds.orchestration.weather_timeout_seconds)

        as_of = parse_iso(as_of) if as_of is not None else flight.scheduled_at
        checks = evaluate_checks(aircraft, pilot, as_of, weather, thresholds)
        if degraded:
            checks.append(weather_data_warning(weather))

        overall = aggregate_status(checks)
        scenarios = calculate_risk_scenarios(
            aircraft, pilot, weather, flight.scheduled_at, cross_country=flight.is_cross_country
        )
        snapshot = AuditSnapshot(
            checks=checks,
            overall_status=overall,
            weather=weather,
            risk_scenarios=scenarios,
            generated_at=utcnow(),
        )

        try:
            _, previous = self.store.record_audit(flight.id, snapshot)
        except AuditError:
            raise
        except Exception as e:
            log.exception("Failed to persist audit for flight %s", flight.id)
            raise PersistenceError("record_audit", str(e)) from e

        alert_required = overall == OverallStatus.NO_GO and previous != OverallStatus.NO_GO
        log.info(
            "Audit %s (%s): %s%s",
            flight.id, aircraft.tail_number, overall.value,
            " [weather degraded]" if degraded else "",
        )

        return AuditResult(
            flight_id=flight.id,
            overall_status=overall,
            previous_status=previous,
            checks=checks,
            risk_scenarios=scenarios,
            summary=generate_summary(checks, overall),
            weather=weather,
            generated_at=snapshot.generated_at,
            weather_degraded=degraded,
            alert_required=alert_required,
        )

    # ---------- Alerts ----------
    def _recipient_for(self, flight: Flight) -> Optional[str]:
        pilot = self.store.get_pilot(flight.pilot_id)
        if pilot is not None and pilot.email:
            return pilot.email
        aircraft = self.store.get_aircraft(flight.aircraft_id)
        if aircraft is not None and aircraft.owner_email:
            return aircraft.owner_email
        return None

    def notify_if_required(
        self,
        result: AuditResult,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> bool:
        """
        Send one alert per no-go episode. Returns True when this call dispatched.

        The store's alert flag is re-armed on every edge into no-go, so a no-go
        result whose edge was audited without a dispatcher still gets its alert here.
        A result the flight has since moved past (its current status is not no-go)
        sends nothing.
        """
        dispatcher = dispatcher or self.dispatcher
        if dispatcher is None or result.overall_status != OverallStatus.NO_GO:
            return False

        flight = self.store.get_flight(result.flight_id)
        if flight is None:
            raise EntityNotFound("flight", result.flight_id)
        if flight.overall_status != OverallStatus.NO_GO:
            # a later audit has already moved the flight out of no-go
            log.info("Flight %s is no longer no-go, alert skipped", flight.id)
            return False
        recipient = self._recipient_for(flight)
        if not recipient:
            log.warning("No-go flight %s has no alert recipient", flight.id)
            return False

        if not self.store.claim_alert(flight.id):
            return False
        try:
            dispatcher.dispatch(recipient, flight, result.checks)
        except Exception:
            self.store.release_alert(flight.id)
            raise
        log.info("No-go alert for flight %s dispatched to %s", flight.id, recipient)
        return True

    # ---------- Sweep ----------
    async def _sweep_one(
        self,
        flight: Flight,
        semaphore: asyncio.Semaphore,
        dispatcher: Optional[NotificationDispatcher],
    ) -> SweepOutcome:
        async with semaphore:
            try:
                result = await self.run_audit(flight.id)
            except AuditError as e:
                log.error("Sweep audit failed for flight %s: %s", flight.id, e.message)
                return SweepOutcome(flight_id=flight.id, error=e.message, error_code=e.code)
            except Exception as e:
                log.exception("Sweep audit crashed for flight %s", flight.id)
                return SweepOutcome(flight_id=flight.id, error=str(e) or repr(e), error_code="UNEXPECTED_ERROR")

        outcome = SweepOutcome(
            flight_id=flight.id,
            overall_status=result.overall_status,
            alert_required=result.alert_required,
            weather_degraded=result.weather_degraded,
        )
        if dispatcher is not None:
            try:
                outcome.notified = self.notify_if_required(result, dispatcher)
            except Exception as e:
                log.exception("Alert dispatch failed for flight %s", flight.id)
                outcome.error = f"alert dispatch failed: {e}"
                outcome.error_code = "ALERT_DISPATCH_ERROR"
        return outcome

    async def run_sweep(
        self,
        now: Optional[datetime.datetime] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> SweepReport:
        """Audit every upcoming, non-terminal flight. One flight's failure never aborts the batch."""
        started = utcnow()
        now = parse_iso(now) if now is not None else started
        flights = self.store.list_active(now)
        semaphore = asyncio.Semaphore(self.thresholds.orchestration.sweep_concurrency)

        results = await asyncio.gather(*(self._sweep_one(f, semaphore, dispatcher) for f in flights))

        report = SweepReport(checked=len(flights), results=list(results), started_at=started, finished_at=utcnow())
        log.info(
            "Sweep complete: %d checked, %d no-go, %d errors",
            report.checked,
            sum(1 for r in report.results if r.overall_status == OverallStatus.NO_GO),
            len(report.failed),
        )
        return report

    # ---------- Lifecycle ----------
    async def create_flight(self, flight: Flight) -> Tuple[Flight, AuditResult]:
        if self.store.get_pilot(flight.pilot_id) is None:
            raise EntityNotFound("pilot", flight.pilot_id)
        if self.store.get_aircraft(flight.aircraft_id) is None:
            raise EntityNotFound("aircraft", flight.aircraft_id)
        try:
            self.store.save_flight(flight)
        except AuditError:
            raise
        except Exception as e:
            raise PersistenceError("save_flight", str(e)) from e

        result = await self.run_audit(flight.id)
        return self.store.get_flight(flight.id), result

    def _transition(self, flight_id: str, target: FlightStatus) -> Flight:
        flight = self.store.get_flight(flight_id)
        if flight is None:
            raise EntityNotFound("flight", flight_id)
        if flight.status in TERMINAL_FLIGHT_STATUSES:
            raise FlightStateError(flight.status.value, target.value)
        updated = self.store.set_status(flight_id, target)
        log.info("Flight %s: %s -> %s", flight_id, flight.status.value, target.value)
        return updated

    def complete_flight(self, flight_id: str) -> Flight:
        return self._transition(flight_id, FlightStatus.COMPLETED)

    def cancel_flight(self, flight_id: str) -> Flight:
        return self._transition(flight_id, FlightStatus.CANCELLED)


# ---------- HTTP ----------
router = APIRouter()
http_log = logging.getLogger("uvicorn.error")


class FlightCreate(BaseModel):
    pilot_id: str
    aircraft_id: str
    scheduled_at: AwareDatetime
    departure_airport: str
    arrival_airport: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("departure_airport")
    @classmethod
    def _departure_required(cls, v: str) -> str:
        return airport_code(v)


class FlightCreated(BaseModel):
    flight: Flight
    audit: AuditResult


class AuditRunResponse(AuditResult):
    notified: bool = False


def _service(request: Request) -> AuditService:
    service = getattr(request.app.state, "audit_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Audit service not initialised")
    return service


@router.post("/aircraft", response_model=AircraftSnapshot)
def upsert_aircraft(payload: AircraftSnapshot, request: Request):
    return _service(request).store.save_aircraft(payload)


@router.post("/pilots", response_model=PilotSnapshot)
def upsert_pilot(payload: PilotSnapshot, request: Request):
    return _service(request).store.save_pilot(payload)


@router.post("/flights", response_model=FlightCreated, status_code=201)
async def create_flight(payload: FlightCreate, request: Request):
    flight = Flight(**payload.model_dump())
    stored, result = await _service(request).create_flight(flight)
    return FlightCreated(flight=stored, audit=result)


@router.get("/flights/{flight_id}", response_model=Flight)
def get_flight(flight_id: str, request: Request):
    flight = _service(request).store.get_flight(flight_id)
    if flight is None:
        raise EntityNotFound("flight", flight_id)
    return flight


@router.post("/flights/{flight_id}/complete", response_model=Flight)
def complete_flight(flight_id: str, request: Request):
    return _service(request).complete_flight(flight_id)


@router.post("/flights/{flight_id}/cancel", response_model=Flight)
def cancel_flight(flight_id: str, request: Request):
    return _service(request).cancel_flight(flight_id)


@router.post("/audit/sweep", response_model=SweepReport)
async def sweep(request: Request, notify: bool = True):
    service = _service(request)
    report = await service.run_sweep(dispatcher=service.dispatcher if notify else None)
    http_log.info("Sweep via API: %d flights checked", report.checked)
    return report


@router.post("/audit/{flight_id}", response_model=AuditRunResponse)
async def run_audit(flight_id: str, request: Request, notify: bool = False):
    service = _service(request)
    result = await service.run_audit(flight_id)
    notified = service.notify_if_required(result) if notify else False
    return AuditRunResponse(**result.model_dump(), notified=notified)


@router.get("/audit/{flight_id}/history")
def audit_history(flight_id: str, request: Request):
    service = _service(request)
    if service.store.get_flight(flight_id) is None:
        raise EntityNotFound("flight", flight_id)
    return [s.to_record() for s in service.store.history(flight_id)]


@router.get("/weather/{airport}", response_model=WeatherSnapshot)
async def current_weather(airport: str, request: Request):
    service = _service(request)
    if service.weather_provider is None:
        raise HTTPException(status_code=503, detail="No weather provider configured")
    snapshot = await service.weather_provider.fetch(airport)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No weather data for '{airport}'")
    return snapshot


__all__ = ["AuditService", "SweepOutcome", "SweepReport", "router"]
