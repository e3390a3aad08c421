# tests/test_risk.py
import datetime

from flightaudit.models import RiskScenario, Severity
from flightaudit.risk import (
    calculate_risk_scenarios,
    electrical_failure,
    engine_failure,
    is_night,
    round_half_up,
    sort_by_severity,
)

from conftest import AS_OF, UTC, make_aircraft, make_pilot, make_weather

NIGHT = datetime.datetime(2025, 6, 15, 22, 0, tzinfo=UTC)


def _by_title(scenarios):
    return {s.title: s for s in scenarios}


def _scenario(title, severity):
    return RiskScenario(title=title, probability=1, severity=severity, description="")


def test_half_up_rounding():
    assert round_half_up(7.5) == 8
    assert round_half_up(6.5) == 7
    assert round_half_up(6.49) == 6


def test_night_window():
    at = lambda h: datetime.datetime(2025, 6, 15, h, 0, tzinfo=UTC)
    assert is_night(at(22))
    assert is_night(at(19))
    assert is_night(at(6))
    assert not is_night(at(7))
    assert not is_night(at(18))


def test_night_uses_scheduled_local_offset():
    local = datetime.datetime(2025, 6, 15, 20, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=-7)))
    assert is_night(local)


def test_electrical_failure_night_low_night_hours_is_critical():
    aircraft = make_aircraft(current_hours={"hobbs": 250, "tach": 200})
    pilot = make_pilot(experience={"total_hours": 250, "night_hours": 10, "last_90_days_hours": 10})
    s = electrical_failure(aircraft, pilot, night=True)
    assert s.probability == 8
    assert s.severity == Severity.CRITICAL


def test_electrical_failure_night_escalates_to_high():
    aircraft = make_aircraft(current_hours={"hobbs": 250, "tach": 200})
    s = electrical_failure(aircraft, make_pilot(), night=True)
    assert s.severity == Severity.HIGH
    assert electrical_failure(aircraft, make_pilot(), night=False).severity == Severity.LOW


def test_electrical_probability_is_capped():
    pilot = make_pilot()
    for hobbs in (0, 499, 500, 50000, 49999.9):
        s = electrical_failure(make_aircraft(current_hours={"hobbs": hobbs, "tach": 0}), pilot, night=False)
        assert 0 <= s.probability <= 15
    assert electrical_failure(make_aircraft(current_hours={"hobbs": 499, "tach": 0}), pilot, False).probability == 15
    assert electrical_failure(make_aircraft(current_hours={"hobbs": 500, "tach": 0}), pilot, False).probability == 0


def test_engine_failure_escalates_only_cross_country():
    aircraft = make_aircraft(current_hours={"hobbs": 1500, "tach": 1400})
    assert engine_failure(aircraft, cross_country=True).probability == 8
    assert engine_failure(aircraft, cross_country=True).severity == Severity.MEDIUM
    assert engine_failure(aircraft, cross_country=False).severity == Severity.LOW
    # probability 5 is not > 5
    assert engine_failure(make_aircraft(), cross_country=True).severity == Severity.LOW


def test_weather_below_minimums_by_category_and_rating():
    vfr_pilot = make_pilot()
    ifr_pilot = make_pilot(certificates={"type": "CPL", "instrument_rated": True})

    lifr = _by_title(calculate_risk_scenarios(make_aircraft(), vfr_pilot, make_weather(flight_category="LIFR"), AS_OF))
    assert lifr["Weather Below Minimums"].probability == 60
    assert lifr["Weather Below Minimums"].severity == Severity.CRITICAL

    mvfr = _by_title(calculate_risk_scenarios(make_aircraft(), vfr_pilot, make_weather(flight_category="MVFR"), AS_OF))
    assert mvfr["Weather Below Minimums"].severity == Severity.HIGH

    ifr = _by_title(calculate_risk_scenarios(make_aircraft(), ifr_pilot, make_weather(flight_category="IFR"), AS_OF))
    assert ifr["Weather Below Minimums"].probability == 40
    assert ifr["Weather Below Minimums"].severity == Severity.LOW


def test_no_weather_means_no_weather_scenario():
    titles = [s.title for s in calculate_risk_scenarios(make_aircraft(), make_pilot(), None, AS_OF)]
    assert "Weather Below Minimums" not in titles


def test_student_pilot_inexperience():
    student = make_pilot(certificates={"type": "Student"}, experience={"total_hours": 30, "last_90_days_hours": 10})

    day_local = _by_title(calculate_risk_scenarios(make_aircraft(), student, None, AS_OF))
    assert day_local["Pilot Inexperience"].probability == 25
    assert day_local["Pilot Inexperience"].severity == Severity.MEDIUM

    day_xc = _by_title(calculate_risk_scenarios(make_aircraft(), student, None, AS_OF, cross_country=True))
    assert day_xc["Pilot Inexperience"].severity == Severity.HIGH

    night = _by_title(calculate_risk_scenarios(make_aircraft(), student, None, NIGHT))
    assert night["Pilot Inexperience"].severity == Severity.CRITICAL


def test_low_time_pilot_probability():
    def prob(total):
        pilot = make_pilot(experience={"total_hours": total, "night_hours": 30, "last_90_days_hours": 10})
        return _by_title(calculate_risk_scenarios(make_aircraft(), pilot, None, AS_OF))["Pilot Inexperience"].probability

    assert prob(40) == 11
    assert prob(85) == 7
    assert prob(0) == 15
    assert prob(99) == 5
    assert "Pilot Inexperience" not in _by_title(calculate_risk_scenarios(make_aircraft(), make_pilot(), None, AS_OF))


def test_recent_proficiency_gap():
    def gap(hours):
        pilot = make_pilot(experience={"total_hours": 250, "night_hours": 30, "last_90_days_hours": hours})
        return _by_title(calculate_risk_scenarios(make_aircraft(), pilot, None, AS_OF)).get("Recent Proficiency Gap")

    assert (gap(2).probability, gap(2).severity) == (30, Severity.HIGH)
    assert (gap(4).probability, gap(4).severity) == (15, Severity.MEDIUM)
    assert gap(6) is None


def test_historical_safety_risk_uses_score_as_is():
    def hist(score):
        pilot = make_pilot(safety_analysis={"score": score})
        return _by_title(calculate_risk_scenarios(make_aircraft(), pilot, None, AS_OF)).get("Historical Safety Risk")

    assert hist(5) is None
    assert (hist(6).probability, hist(6).severity) == (30, Severity.HIGH)
    assert (hist(9).probability, hist(9).severity) == (45, Severity.CRITICAL)
    assert hist(8).severity == Severity.HIGH


def test_sort_by_severity_is_stable():
    ordered = sort_by_severity([
        _scenario("a", Severity.LOW),
        _scenario("b", Severity.CRITICAL),
        _scenario("c", Severity.MEDIUM),
        _scenario("d", Severity.HIGH),
        _scenario("e", Severity.HIGH),
    ])
    assert [s.title for s in ordered] == ["b", "d", "e", "c", "a"]


def test_clean_day_flight_has_only_low_scenarios():
    scenarios = calculate_risk_scenarios(make_aircraft(), make_pilot(), make_weather(), AS_OF, cross_country=True)
    assert [s.title for s in scenarios] == ["Electrical Failure", "Weather Below Minimums", "Engine Failure"]
    assert all(s.severity == Severity.LOW for s in scenarios)
