# flightaudit/models.py
"""
Data model for the flight legality & risk audit engine.

Snapshots (aircraft, pilot, weather) are read-only inputs to an audit; checks,
risk scenarios and audit snapshots are produced fresh on every run and never
mutated afterwards.

Time handling:
 - Every datetime field is timezone-aware once validated.
 - Naive inputs get UTC attached; date-only inputs become midnight UTC.
 - Values that already carry an offset keep it (night-flight detection uses the
   scheduled time in its own offset).
"""

from typing import Annotated, Any, Dict, List, Optional
from enum import Enum
import datetime
import uuid

from dateutil import parser as _du_parser
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


# ---------- Time helpers ----------
def ensure_dt_with_tz(dt: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Attach UTC to a naive datetime; leave aware datetimes untouched."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=datetime.timezone.utc)


def parse_iso(value: Any) -> Any:
    """
    Coerce ISO strings, dates and datetimes into tz-aware datetimes.

    Accepts:
      - ISO strings with or without offsets ('2025-03-01T10:00:00+02:00', '2025-03-01')
      - datetime.date / datetime.datetime objects
    Anything else is returned unchanged so pydantic can report the type error.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return ensure_dt_with_tz(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        return ensure_dt_with_tz(_du_parser.isoparse(s))
    return value


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


AwareDatetime = Annotated[datetime.datetime, BeforeValidator(parse_iso)]


def airport_code(v: str) -> str:
    v = (v or "").strip().upper()
    if not v:
        raise ValueError("departure_airport must be non-empty")
    return v


# ---------- Enums ----------
class CertificateType(str, Enum):
    STUDENT = "Student"
    PPL = "PPL"
    CPL = "CPL"
    ATP = "ATP"
    SPORT = "Sport"


class FlightCategory(str, Enum):
    """METAR flight category, ordered by severity (VFR best, LIFR worst)."""
    VFR = "VFR"
    MVFR = "MVFR"
    IFR = "IFR"
    LIFR = "LIFR"

    @property
    def severity_rank(self) -> int:
        return _FLIGHT_CATEGORY_RANK[self]


_FLIGHT_CATEGORY_RANK = {
    FlightCategory.VFR: 0,
    FlightCategory.MVFR: 1,
    FlightCategory.IFR: 2,
    FlightCategory.LIFR: 3,
}


class CheckCategory(str, Enum):
    MAINTENANCE = "maintenance"
    PILOT = "pilot"
    SAFETY = "safety"
    COMPLIANCE = "compliance"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class OverallStatus(str, Enum):
    GO = "go"
    CAUTION = "caution"
    NO_GO = "no-go"


class FlightStatus(str, Enum):
    PLANNED = "planned"
    GO = "go"
    CAUTION = "caution"
    NO_GO = "no-go"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_FLIGHT_STATUSES = frozenset({FlightStatus.COMPLETED, FlightStatus.CANCELLED})


# ---------- Aircraft ----------
class MaintenanceDates(BaseModel):
    annual: AwareDatetime
    transponder: AwareDatetime
    static_system: AwareDatetime
    hundred_hour: Optional[AwareDatetime] = None


class CurrentHours(BaseModel):
    hobbs: float = 0.0
    tach: float = 0.0


class VSpeeds(BaseModel):
    vso: Optional[float] = None
    vs1: Optional[float] = None
    vr: Optional[float] = None
    vx: Optional[float] = None
    vy: Optional[float] = None
    vfe: Optional[float] = None
    va: Optional[float] = None
    vno: Optional[float] = None
    vne: Optional[float] = None


class OperatingLimits(BaseModel):
    v_speeds: Optional[VSpeeds] = None
    # maximum demonstrated crosswind component, knots
    max_crosswind_kts: Optional[float] = Field(default=None, gt=0)


class LogEntry(BaseModel):
    date: AwareDatetime
    description: str
    hobbs_time: float = 0.0
    tach_time: float = 0.0
    mechanic: Optional[str] = None


class AircraftSnapshot(BaseModel):
    id: str = Field(default_factory=new_id)
    tail_number: str
    model: Optional[str] = None
    maintenance_dates: MaintenanceDates
    current_hours: CurrentHours = Field(default_factory=CurrentHours)
    for_hire: bool = False
    operating_limits: Optional[OperatingLimits] = None
    logs: List[LogEntry] = Field(default_factory=list)
    owner_email: Optional[str] = None

    @field_validator("tail_number")
    @classmethod
    def _tail_upper(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("tail_number must be non-empty")
        return v


# ---------- Pilot ----------
class Certificates(BaseModel):
    type: CertificateType
    instrument_rated: bool = False
    multi_engine_rated: bool = False


class Experience(BaseModel):
    total_hours: float = 0.0
    pic_hours: float = 0.0
    night_hours: float = 0.0
    ifr_hours: float = 0.0
    cross_country_hours: float = 0.0
    last_90_days_hours: float = 0.0
    last_30_days_hours: float = 0.0


class SafetyFinding(BaseModel):
    category: str
    risk_level: str
    message: str


class SafetyAnalysis(BaseModel):
    """Opaque risk score supplied by the narrative advisor (0..10, higher = riskier)."""
    score: float = Field(ge=0, le=10)
    last_analyzed: Optional[AwareDatetime] = None
    findings: List[SafetyFinding] = Field(default_factory=list)


class PilotSnapshot(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: Optional[str] = None
    certificates: Certificates
    experience: Experience = Field(default_factory=Experience)
    medical_expiration: AwareDatetime
    flight_review_expiration: AwareDatetime
    safety_analysis: Optional[SafetyAnalysis] = None


# ---------- Weather ----------
class Wind(BaseModel):
    direction: float = 0
    speed: float = 0
    gust: Optional[float] = None


class WeatherSnapshot(BaseModel):
    station: str
    metar: str = ""
    taf: Optional[str] = None
    flight_category: FlightCategory
    visibility: float = 10.0
    ceiling: Optional[int] = None
    wind: Wind = Field(default_factory=Wind)
    fetched_at: AwareDatetime = Field(default_factory=utcnow)


# ---------- Audit outputs ----------
class LegalityCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: CheckCategory
    item: str
    status: CheckStatus
    message: str
    details: Optional[str] = None


class RiskScenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    probability: int = Field(ge=0, le=100)
    severity: Severity
    description: str


class AuditSnapshot(BaseModel):
    """Persisted audit record. JSON shape uses camelCase keys for the history log."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    checks: List[LegalityCheck]
    overall_status: OverallStatus = Field(alias="overallStatus")
    weather: Optional[WeatherSnapshot] = None
    risk_scenarios: List[RiskScenario] = Field(default_factory=list, alias="riskScenarios")
    generated_at: AwareDatetime = Field(alias="generatedAt")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Flight(BaseModel):
    id: str = Field(default_factory=new_id)
    pilot_id: str
    aircraft_id: str
    scheduled_at: AwareDatetime
    departure_airport: str
    arrival_airport: Optional[str] = None
    status: FlightStatus = FlightStatus.PLANNED
    overall_status: Optional[OverallStatus] = None
    legality_checks: List[LegalityCheck] = Field(default_factory=list)
    weather: Optional[WeatherSnapshot] = None
    latest_snapshot: Optional[AuditSnapshot] = None
    email_sent: bool = False
    notes: Optional[str] = None
    created_at: AwareDatetime = Field(default_factory=utcnow)
    updated_at: AwareDatetime = Field(default_factory=utcnow)

    @field_validator("departure_airport")
    @classmethod
    def _departure_upper(cls, v: str) -> str:
        return airport_code(v)

    @field_validator("arrival_airport")
    @classmethod
    def _arrival_upper(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().upper() or None

    @property
    def is_cross_country(self) -> bool:
        return bool(self.arrival_airport) and self.arrival_airport != self.departure_airport


class AuditResult(BaseModel):
    flight_id: str
    overall_status: OverallStatus
    previous_status: Optional[OverallStatus] = None
    checks: List[LegalityCheck]
    risk_scenarios: List[RiskScenario]
    summary: str
    weather: Optional[WeatherSnapshot] = None
    generated_at: AwareDatetime
    weather_degraded: bool = False
    alert_required: bool = False
