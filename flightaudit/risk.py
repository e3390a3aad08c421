# flightaudit/risk.py
"""
Risk scenario calculator.

A continuous, probability-weighted hazard list layered on top of the discrete
pass/warning/fail checks. Each scenario is computed independently; the list is
then stable-sorted by severity (critical first, ties keep computation order).

The probabilities are illustrative heuristics. What must hold is the formula,
the caps and the severity escalation rules for each scenario.
"""

from typing import List, Optional
import datetime
import math

from .models import (
    AircraftSnapshot,
    CertificateType,
    FlightCategory,
    PilotSnapshot,
    RiskScenario,
    Severity,
    WeatherSnapshot,
)

# ---------------- CONFIG ----------------
NIGHT_START_HOUR = 19  # inclusive
NIGHT_END_HOUR = 6     # inclusive
ELECTRICAL_OVERHAUL_HOURS = 500
ELECTRICAL_MAX_PROBABILITY = 15
ENGINE_TBO_HOURS = 2000
ENGINE_MAX_PROBABILITY = 10
NIGHT_HOURS_MINIMUM = 20
LOW_TIME_HOURS = 100
WEATHER_BASE_RISK = {
    FlightCategory.VFR: 5,
    FlightCategory.MVFR: 20,
    FlightCategory.IFR: 40,
    FlightCategory.LIFR: 60,
}
HISTORICAL_SCORE_THRESHOLD = 5
HISTORICAL_CRITICAL_SCORE = 8
# ----------------------------------------


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def is_night(scheduled_at: datetime.datetime) -> bool:
    hour = scheduled_at.hour
    return hour >= NIGHT_START_HOUR or hour <= NIGHT_END_HOUR


# ---------- Individual scenarios ----------
def electrical_failure(aircraft: AircraftSnapshot, pilot: PilotSnapshot, night: bool) -> RiskScenario:
    hours_since_overhaul = (aircraft.current_hours.hobbs or 0) % ELECTRICAL_OVERHAUL_HOURS
    probability = min(
        round_half_up(hours_since_overhaul / ELECTRICAL_OVERHAUL_HOURS * ELECTRICAL_MAX_PROBABILITY),
        ELECTRICAL_MAX_PROBABILITY,
    )
    night_hours = pilot.experience.night_hours or 0

    severity = Severity.LOW
    if night and probability > 5:
        severity = Severity.HIGH
    if night and night_hours < NIGHT_HOURS_MINIMUM:
        severity = Severity.CRITICAL

    if night:
        description = (
            f"{probability}% alternator failure risk. Night flight with {night_hours:g} night hours - "
            "loss of lights and radios would be catastrophic."
        )
    else:
        description = f"{probability}% alternator failure risk. Daylight operations reduce severity."

    return RiskScenario(
        title="Electrical Failure",
        probability=probability,
        severity=severity,
        description=description,
    )


def weather_below_minimums(weather: WeatherSnapshot, pilot: PilotSnapshot) -> RiskScenario:
    category = FlightCategory(weather.flight_category)
    risk = WEATHER_BASE_RISK[category]
    instrument_rated = pilot.certificates.instrument_rated

    severity = Severity.LOW
    if risk >= 20 and not instrument_rated:
        severity = Severity.HIGH
    if risk >= 40 and not instrument_rated:
        severity = Severity.CRITICAL

    if not instrument_rated and risk >= 20:
        description = (
            f"{category.value} conditions with VFR-only pilot. If weather worsens, "
            "pilot lacks instrument capability."
        )
    else:
        ceiling = weather.ceiling if weather.ceiling is not None else "CLR"
        description = f"Current: {category.value}. Ceiling {ceiling}, vis {weather.visibility:g}SM."

    return RiskScenario(
        title="Weather Below Minimums",
        probability=risk,
        severity=severity,
        description=description,
    )


def pilot_inexperience(pilot: PilotSnapshot, night: bool, cross_country: bool) -> Optional[RiskScenario]:
    student = pilot.certificates.type == CertificateType.STUDENT
    total = pilot.experience.total_hours or 0
    if not student and total >= LOW_TIME_HOURS:
        return None

    probability = 25 if student else round_half_up(max(15 - total / 10, 5))

    severity = Severity.MEDIUM
    if student and cross_country:
        severity = Severity.HIGH
    if student and night:
        severity = Severity.CRITICAL

    if student:
        description = f"Student pilot with {total:g} total hours."
        if night:
            description += " Night flight requires endorsement."
        if cross_country:
            description += " Cross-country flight requires solo cross-country endorsement."
    else:
        description = f"Low-time pilot ({total:g} hrs). Consider additional pre-flight briefing."

    return RiskScenario(
        title="Pilot Inexperience",
        probability=probability,
        severity=severity,
        description=description,
    )


def proficiency_gap(pilot: PilotSnapshot) -> Optional[RiskScenario]:
    recent = pilot.experience.last_90_days_hours or 0
    if recent < 3:
        return RiskScenario(
            title="Recent Proficiency Gap",
            probability=30,
            severity=Severity.HIGH,
            description=f"Pilot has only {recent:g} hours in last 90 days. High risk of skill degradation.",
        )
    if recent < 6:
        return RiskScenario(
            title="Recent Proficiency Gap",
            probability=15,
            severity=Severity.MEDIUM,
            description=f"Pilot has {recent:g} hours in last 90 days. Consider a practice flight.",
        )
    return None


def historical_safety_risk(pilot: PilotSnapshot) -> Optional[RiskScenario]:
    """Carries the narrative advisor's score through as an opaque signal."""
    analysis = pilot.safety_analysis
    if analysis is None or analysis.score <= HISTORICAL_SCORE_THRESHOLD:
        return None
    score = analysis.score
    return RiskScenario(
        title="Historical Safety Risk",
        probability=min(round_half_up(score * 5), 100),
        severity=Severity.CRITICAL if score > HISTORICAL_CRITICAL_SCORE else Severity.HIGH,
        description=f"Safety analysis historically scores this pilot at {score:g}/10 risk level.",
    )


def engine_failure(aircraft: AircraftSnapshot, cross_country: bool) -> RiskScenario:
    engine_hours = (aircraft.current_hours.hobbs or 0) % ENGINE_TBO_HOURS
    probability = min(round_half_up(engine_hours / ENGINE_TBO_HOURS * ENGINE_MAX_PROBABILITY), ENGINE_MAX_PROBABILITY)
    severity = Severity.MEDIUM if probability > 5 and cross_country else Severity.LOW
    return RiskScenario(
        title="Engine Failure",
        probability=probability,
        severity=severity,
        description=f"{probability}% risk based on TBO position. {engine_hours:.0f} hrs since major overhaul.",
    )


# ---------- Ranking ----------
def sort_by_severity(scenarios: List[RiskScenario]) -> List[RiskScenario]:
    """Stable sort, most severe first."""
    return sorted(scenarios, key=lambda s: -Severity(s.severity).rank)


def calculate_risk_scenarios(
    aircraft: AircraftSnapshot,
    pilot: PilotSnapshot,
    weather: Optional[WeatherSnapshot],
    scheduled_at: datetime.datetime,
    cross_country: bool = False,
) -> List[RiskScenario]:
    night = is_night(scheduled_at)

    candidates = [
        electrical_failure(aircraft, pilot, night),
        weather_below_minimums(weather, pilot) if weather is not None else None,
        pilot_inexperience(pilot, night, cross_country),
        proficiency_gap(pilot),
        historical_safety_risk(pilot),
        engine_failure(aircraft, cross_country),
    ]
    return sort_by_severity([s for s in candidates if s is not None])
