# flightaudit/legality.py
"""
Legality checker for the flight audit engine.

Pure evaluators, one per regulatory requirement, each returning a LegalityCheck
for a given "as of" instant:
 - maintenance: annual, transponder, static system (IFR), 100-hour (for hire)
 - pilot: medical, flight review, 90-day currency
 - safety: weather vs. ratings, wind conditions

Date recurrences use calendar arithmetic (dateutil.relativedelta), so a 12-month
interval from 2024-02-29 lands on 2025-02-28, never on a day-count approximation.
Evaluators never raise on missing optional data; they degrade to "not applicable".

Also exposes POST /check: an offline audit of posted snapshots, with no flight
record and no persistence.
"""

from typing import Iterable, List, Optional
import datetime
import logging
import math

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from .load_rules import AuditThresholds, DEFAULT_THRESHOLDS, DateRecurrenceRule, ExpiryRule, registry
from .risk import calculate_risk_scenarios
from .models import (
    AircraftSnapshot,
    AwareDatetime,
    CheckCategory,
    CheckStatus,
    FlightCategory,
    LegalityCheck,
    LogEntry,
    OverallStatus,
    PilotSnapshot,
    RiskScenario,
    WeatherSnapshot,
    Wind,
    parse_iso,
)

log = logging.getLogger("uvicorn.error")
router = APIRouter()

ITEM_ANNUAL = "Annual Inspection"
ITEM_TRANSPONDER = "Transponder Certification"
ITEM_STATIC = "Static System (IFR)"
ITEM_HUNDRED_HOUR = "100-Hour Inspection"
ITEM_MEDICAL = "Medical Certificate"
ITEM_FLIGHT_REVIEW = "Flight Review (BFR)"
ITEM_CURRENCY = "90-Day Currency"
ITEM_WEATHER_RATINGS = "Weather vs. Ratings"
ITEM_WIND = "Wind Conditions"
ITEM_WEATHER_DATA = "Weather Data"

MVFR_LOW_TIME_HOURS = 100


# ---------- Utilities ----------
def fmt_date(dt: datetime.datetime) -> str:
    return dt.date().isoformat()


def days_until(due: datetime.datetime, as_of: datetime.datetime) -> int:
    """Whole days from as_of to due, floored (negative once overdue)."""
    return math.floor((due - as_of) / datetime.timedelta(days=1))


def _fmt_hours(h: float) -> str:
    return f"{h:.1f}"


def _days(n: int) -> str:
    return "1 day" if n == 1 else f"{n} days"


def _date_recurrence_check(
    category: CheckCategory,
    item: str,
    anchor: datetime.datetime,
    as_of: datetime.datetime,
    rule: DateRecurrenceRule,
) -> LegalityCheck:
    due = anchor + relativedelta(months=rule.interval_months)
    days_left = days_until(due, as_of)

    if as_of > due:
        return LegalityCheck(
            category=category,
            item=item,
            status=CheckStatus.FAIL,
            message=f"{item} overdue by {_days(abs(days_left))} (was due {fmt_date(due)})",
            details=f"Last completed: {fmt_date(anchor)}",
        )

    if rule.warning_days is not None and days_left <= rule.warning_days:
        return LegalityCheck(
            category=category,
            item=item,
            status=CheckStatus.WARNING,
            message=f"{item} due in {_days(days_left)}",
            details=f"Due by: {fmt_date(due)}",
        )

    return LegalityCheck(
        category=category,
        item=item,
        status=CheckStatus.PASS,
        message=f"{item} valid until {fmt_date(due)}",
    )


def _expiry_check(
    item: str,
    label: str,
    expiry: datetime.datetime,
    as_of: datetime.datetime,
    rule: ExpiryRule,
) -> LegalityCheck:
    days_left = days_until(expiry, as_of)

    if as_of > expiry:
        return LegalityCheck(
            category=CheckCategory.PILOT,
            item=item,
            status=CheckStatus.FAIL,
            message=f"{label} expired on {fmt_date(expiry)}",
            details=f"Expired {_days(abs(days_left))} before the flight",
        )

    if days_left <= rule.warning_days:
        return LegalityCheck(
            category=CheckCategory.PILOT,
            item=item,
            status=CheckStatus.WARNING,
            message=f"{label} expires in {_days(days_left)}",
            details=f"Expires: {fmt_date(expiry)}",
        )

    return LegalityCheck(
        category=CheckCategory.PILOT,
        item=item,
        status=CheckStatus.PASS,
        message=f"{label} valid until {fmt_date(expiry)}",
    )


# ---------- Maintenance checks ----------
def check_annual_inspection(
    aircraft: AircraftSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    return _date_recurrence_check(
        CheckCategory.MAINTENANCE,
        ITEM_ANNUAL,
        aircraft.maintenance_dates.annual,
        as_of,
        thresholds.annual_inspection,
    )


def check_transponder(
    aircraft: AircraftSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    return _date_recurrence_check(
        CheckCategory.MAINTENANCE,
        ITEM_TRANSPONDER,
        aircraft.maintenance_dates.transponder,
        as_of,
        thresholds.transponder,
    )


def check_static_system(
    aircraft: AircraftSnapshot,
    as_of: datetime.datetime,
    ifr_capable: bool,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    """Only enforced when the flight may go IFR (pilot instrument rating is the proxy)."""
    if not ifr_capable:
        return LegalityCheck(
            category=CheckCategory.MAINTENANCE,
            item=ITEM_STATIC,
            status=CheckStatus.PASS,
            message="N/A for VFR flight",
        )
    return _date_recurrence_check(
        CheckCategory.MAINTENANCE,
        ITEM_STATIC,
        aircraft.maintenance_dates.static_system,
        as_of,
        thresholds.static_system,
    )


def last_hundred_hour_entry(logs: Iterable[LogEntry]) -> Optional[LogEntry]:
    """Most recent log entry describing a 100-hour inspection, if any."""
    found = None
    for entry in logs:
        desc = (entry.description or "").lower()
        if "100" not in desc:
            continue
        if "hour" not in desc and "hr" not in desc:
            continue
        if found is None or entry.date >= found.date:
            found = entry
    return found


def check_hundred_hour(
    aircraft: AircraftSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    """
    100-hour inspection, tracked on tach time since the last 100-hour log entry.

    Not applicable (auto-pass) when the aircraft is not operated for hire or when
    nothing about a 100-hour inspection is on record. A completion date with no
    matching log entry can't be tracked on tach time and is a warning. as_of is
    accepted for a uniform signature; the requirement is hour based.
    """
    if not aircraft.for_hire:
        return LegalityCheck(
            category=CheckCategory.MAINTENANCE,
            item=ITEM_HUNDRED_HOUR,
            status=CheckStatus.PASS,
            message="N/A (not for hire)",
        )

    entry = last_hundred_hour_entry(aircraft.logs)
    if entry is None:
        completed = aircraft.maintenance_dates.hundred_hour
        if completed is not None:
            return LegalityCheck(
                category=CheckCategory.MAINTENANCE,
                item=ITEM_HUNDRED_HOUR,
                status=CheckStatus.WARNING,
                message=f"100-hour completed {fmt_date(completed)}, tach time not on record",
                details="Add a 100-hour log entry with tach time to enable tracking",
            )
        return LegalityCheck(
            category=CheckCategory.MAINTENANCE,
            item=ITEM_HUNDRED_HOUR,
            status=CheckStatus.PASS,
            message="N/A (no 100-hour inspection on record)",
            details="Record the last 100-hour inspection to enable tracking",
        )

    rule = thresholds.hundred_hour
    current_tach = aircraft.current_hours.tach
    hours_since = current_tach - entry.tach_time
    remaining = rule.interval_hours - hours_since
    details = f"Current tach: {_fmt_hours(current_tach)}, last 100-hour at: {_fmt_hours(entry.tach_time)}"

    if hours_since >= rule.interval_hours:
        return LegalityCheck(
            category=CheckCategory.MAINTENANCE,
            item=ITEM_HUNDRED_HOUR,
            status=CheckStatus.FAIL,
            message=f"100-hour overdue by {_fmt_hours(-remaining)} hours",
            details=details,
        )

    if remaining <= rule.warning_hours:
        return LegalityCheck(
            category=CheckCategory.MAINTENANCE,
            item=ITEM_HUNDRED_HOUR,
            status=CheckStatus.WARNING,
            message=f"100-hour due in {_fmt_hours(remaining)} hours",
            details=details,
        )

    return LegalityCheck(
        category=CheckCategory.MAINTENANCE,
        item=ITEM_HUNDRED_HOUR,
        status=CheckStatus.PASS,
        message=f"100-hour not due for {_fmt_hours(remaining)} more hours",
        details=details,
    )


# ---------- Pilot checks ----------
def check_medical(
    pilot: PilotSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    return _expiry_check(ITEM_MEDICAL, "Medical", pilot.medical_expiration, as_of, thresholds.medical)


def check_flight_review(
    pilot: PilotSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    return _expiry_check(
        ITEM_FLIGHT_REVIEW, "Flight review", pilot.flight_review_expiration, as_of, thresholds.flight_review
    )


def check_recent_currency(
    pilot: PilotSnapshot,
    as_of: datetime.datetime,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    """Low recent time is a warning only; it never grounds the flight."""
    hours = pilot.experience.last_90_days_hours
    if hours < thresholds.recent_currency.min_hours:
        return LegalityCheck(
            category=CheckCategory.PILOT,
            item=ITEM_CURRENCY,
            status=CheckStatus.WARNING,
            message=f"Low recent experience: {hours:g} hours in last 90 days",
            details="Consider a refresher flight with an instructor",
        )
    return LegalityCheck(
        category=CheckCategory.PILOT,
        item=ITEM_CURRENCY,
        status=CheckStatus.PASS,
        message=f"Recent experience: {hours:g} hours in last 90 days",
    )


# ---------- Weather / safety checks ----------
def check_weather_vs_ratings(category: FlightCategory, pilot: PilotSnapshot) -> LegalityCheck:
    category = FlightCategory(category)
    if category.severity_rank >= FlightCategory.IFR.severity_rank and not pilot.certificates.instrument_rated:
        return LegalityCheck(
            category=CheckCategory.SAFETY,
            item=ITEM_WEATHER_RATINGS,
            status=CheckStatus.FAIL,
            message=f"{category.value} conditions require instrument rating",
            details=f"Pilot {pilot.name} is VFR-only",
        )

    total = pilot.experience.total_hours
    if category == FlightCategory.MVFR and total < MVFR_LOW_TIME_HOURS:
        return LegalityCheck(
            category=CheckCategory.SAFETY,
            item=ITEM_WEATHER_RATINGS,
            status=CheckStatus.WARNING,
            message="MVFR conditions not recommended for low-time pilots",
            details=f"Pilot has {total:g} total hours",
        )

    return LegalityCheck(
        category=CheckCategory.SAFETY,
        item=ITEM_WEATHER_RATINGS,
        status=CheckStatus.PASS,
        message=f"{category.value} conditions OK for pilot qualifications",
    )


def wind_limits_for(aircraft: Optional[AircraftSnapshot], thresholds: AuditThresholds) -> tuple:
    """(warning_kts, fail_kts, source). Aircraft crosswind limits win over the fixed thresholds."""
    limits = aircraft.operating_limits if aircraft is not None else None
    if limits is not None and limits.max_crosswind_kts:
        fail = float(limits.max_crosswind_kts)
        return fail * thresholds.wind.crosswind_warning_ratio, fail, "aircraft"
    return thresholds.wind.warning_kts, thresholds.wind.fail_kts, "default"


def check_wind(
    wind: Wind,
    aircraft: Optional[AircraftSnapshot] = None,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> LegalityCheck:
    max_wind = max(wind.speed or 0, wind.gust or 0)
    warning_kts, fail_kts, source = wind_limits_for(aircraft, thresholds)
    reported = f"{wind.speed:g}kts" + (f" gusting {wind.gust:g}kts" if wind.gust else "")
    details = None
    if source == "aircraft":
        details = f"Aircraft crosswind limit: {fail_kts:g}kts"

    if max_wind >= fail_kts:
        return LegalityCheck(
            category=CheckCategory.SAFETY,
            item=ITEM_WIND,
            status=CheckStatus.FAIL,
            message=f"Excessive winds: {reported}",
            details=details,
        )
    if max_wind >= warning_kts:
        return LegalityCheck(
            category=CheckCategory.SAFETY,
            item=ITEM_WIND,
            status=CheckStatus.WARNING,
            message=f"High winds: {reported}",
            details=details,
        )
    return LegalityCheck(
        category=CheckCategory.SAFETY,
        item=ITEM_WIND,
        status=CheckStatus.PASS,
        message=f"Winds acceptable: {reported}",
        details=details,
    )


def check_weather(
    weather: WeatherSnapshot,
    pilot: PilotSnapshot,
    aircraft: Optional[AircraftSnapshot] = None,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> List[LegalityCheck]:
    return [
        check_weather_vs_ratings(weather.flight_category, pilot),
        check_wind(weather.wind, aircraft, thresholds),
    ]


def weather_data_warning(cached: Optional[WeatherSnapshot]) -> LegalityCheck:
    """Degraded-data marker appended when fresh weather could not be obtained."""
    if cached is not None:
        return LegalityCheck(
            category=CheckCategory.SAFETY,
            item=ITEM_WEATHER_DATA,
            status=CheckStatus.WARNING,
            message="Unable to fetch current weather - using last known report, manual check required",
            details=f"Last known report from {cached.station} fetched {cached.fetched_at.isoformat()}",
        )
    return LegalityCheck(
        category=CheckCategory.SAFETY,
        item=ITEM_WEATHER_DATA,
        status=CheckStatus.WARNING,
        message="Unable to fetch current weather - manual check required",
    )


# ---------- Full evaluation ----------
def evaluate_checks(
    aircraft: AircraftSnapshot,
    pilot: PilotSnapshot,
    as_of: datetime.datetime,
    weather: Optional[WeatherSnapshot] = None,
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS,
) -> List[LegalityCheck]:
    """Run every evaluator in a fixed order: maintenance, pilot, then weather."""
    as_of = parse_iso(as_of)
    checks = [
        check_annual_inspection(aircraft, as_of, thresholds),
        check_transponder(aircraft, as_of, thresholds),
        check_static_system(aircraft, as_of, pilot.certificates.instrument_rated, thresholds),
        check_hundred_hour(aircraft, as_of, thresholds),
        check_medical(pilot, as_of, thresholds),
        check_flight_review(pilot, as_of, thresholds),
        check_recent_currency(pilot, as_of, thresholds),
    ]
    if weather is not None:
        checks.extend(check_weather(weather, pilot, aircraft, thresholds))
    return checks


# ---------- Overall status ----------
def aggregate_status(checks: Iterable[LegalityCheck]) -> OverallStatus:
    """no-go if anything fails, caution if anything warns, otherwise go (empty list is go)."""
    statuses = {c.status for c in checks}
    if CheckStatus.FAIL in statuses:
        return OverallStatus.NO_GO
    if CheckStatus.WARNING in statuses:
        return OverallStatus.CAUTION
    return OverallStatus.GO


def generate_summary(checks: List[LegalityCheck], overall_status: OverallStatus) -> str:
    if overall_status == OverallStatus.GO:
        return "All systems GO. Flight is legal and safe to operate."

    failed = [c for c in checks if c.status == CheckStatus.FAIL]
    warnings = [c for c in checks if c.status == CheckStatus.WARNING]

    lines = ["FLIGHT GROUNDED" if overall_status == OverallStatus.NO_GO else "FLIGHT CAUTION", ""]
    if failed:
        lines.append("Critical Issues:")
        lines.extend(f"- {c.item}: {c.message}" for c in failed)
        lines.append("")
    if warnings:
        lines.append("Warnings:")
        lines.extend(f"- {c.item}: {c.message}" for c in warnings)
    return "\n".join(lines).rstrip()


# ---------- Request / Response Models ----------
class CheckRequest(BaseModel):
    aircraft: AircraftSnapshot
    pilot: PilotSnapshot
    scheduled_at: AwareDatetime
    arrival_airport: Optional[str] = None
    departure_airport: Optional[str] = None
    weather: Optional[WeatherSnapshot] = None


class CheckResult(BaseModel):
    overall_status: OverallStatus
    checks: List[LegalityCheck]
    summary: str
    risk_scenarios: List[RiskScenario] = Field(default_factory=list)


# ---------- /check endpoint ----------
@router.post("/check", response_model=CheckResult)
def check_legality(payload: CheckRequest, request: Request):

    thresholds = getattr(request.app.state, "thresholds", None) or registry.get()
    scheduled_at = parse_iso(payload.scheduled_at)
    checks = evaluate_checks(payload.aircraft, payload.pilot, scheduled_at, payload.weather, thresholds)
    overall = aggregate_status(checks)
    cross_country = bool(payload.arrival_airport) and payload.arrival_airport != payload.departure_airport
    scenarios = calculate_risk_scenarios(
        payload.aircraft, payload.pilot, payload.weather, scheduled_at, cross_country=cross_country
    )
    log.info("Offline check for %s: %s", payload.aircraft.tail_number, overall.value)
    return CheckResult(
        overall_status=overall,
        checks=checks,
        summary=generate_summary(checks, overall),
        risk_scenarios=scenarios,
    )


__all__ = [
    "aggregate_status",
    "check_annual_inspection",
    "check_flight_review",
    "check_hundred_hour",
    "check_medical",
    "check_recent_currency",
    "check_static_system",
    "check_transponder",
    "check_weather",
    "check_weather_vs_ratings",
    "check_wind",
    "evaluate_checks",
    "generate_summary",
    "router",
    "weather_data_warning",
]
