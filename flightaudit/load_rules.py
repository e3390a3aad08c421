# flightaudit/load_rules.py
"""
Threshold rule loader for the audit engine.

Rules live as JSON files in flightaudit/rules (override with FLIGHTAUDIT_RULES_DIR).
Each file holds rule objects shaped like:

    {"id": "flight_review", "title": "...", "logic": {"type": "expiry", "warning_days": 30}}

Provides:
 - ThresholdRuleSpec: validated rule wrapper (id/title/logic/reference/enabled/version)
 - AuditThresholds: typed thresholds consumed by the evaluators
 - load_thresholds_from_folder(): (thresholds, valid rules, invalid reports)
 - ThresholdRegistry / registry: process-wide holder with explicit init/reload/reset

Files must declare meta.schema_version; a missing or mismatched version rejects the
whole file. Invalid files or rule objects are reported, never fatal: missing rules
keep their defaults.
"""
from pathlib import Path
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Tuple, Type
import datetime

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

log = logging.getLogger("threshold_loader")

SCHEMA_VERSION = 1
RULES_DIR = Path(os.getenv("FLIGHTAUDIT_RULES_DIR") or Path(__file__).parent / "rules")


# ---------------------------------------------------------
# Rule wrapper
# ---------------------------------------------------------
class ThresholdRuleSpec(BaseModel):
    id: str
    title: str
    logic: Dict[str, Any]
    reference: Optional[Any] = None
    enabled: bool = True
    version: Optional[str] = None
    notes: Optional[Any] = None

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, v):
        if not v or not isinstance(v, str) or v.strip() == "":
            raise ValueError("id must be non-empty string")
        return v.strip()

    @field_validator("logic")
    @classmethod
    def _logic_has_type(cls, v):
        if not isinstance(v.get("type"), str):
            raise ValueError("logic.type must be a string")
        return v


# ---------------------------------------------------------
# Typed thresholds
# ---------------------------------------------------------
class DateRecurrenceRule(BaseModel):
    interval_months: int = Field(gt=0)
    # None means pass/fail only
    warning_days: Optional[int] = Field(default=None, ge=0)


class ExpiryRule(BaseModel):
    warning_days: int = Field(ge=0)


class HourRecurrenceRule(BaseModel):
    interval_hours: float = Field(gt=0)
    warning_hours: float = Field(ge=0)


class CurrencyRule(BaseModel):
    min_hours: float = Field(ge=0)


class WindLimits(BaseModel):
    warning_kts: float = Field(default=20, gt=0)
    fail_kts: float = Field(default=30, gt=0)
    crosswind_warning_ratio: float = Field(default=0.8, gt=0, le=1)

    @model_validator(mode="after")
    def _ordered(self):
        if self.warning_kts > self.fail_kts:
            raise ValueError("warning_kts must not exceed fail_kts")
        return self


class OrchestrationSettings(BaseModel):
    weather_timeout_seconds: float = Field(default=10.0, gt=0)
    sweep_concurrency: int = Field(default=8, ge=1)


class AuditThresholds(BaseModel):
    annual_inspection: DateRecurrenceRule = DateRecurrenceRule(interval_months=12, warning_days=30)
    transponder: DateRecurrenceRule = DateRecurrenceRule(interval_months=24, warning_days=60)
    static_system: DateRecurrenceRule = DateRecurrenceRule(interval_months=24, warning_days=None)
    hundred_hour: HourRecurrenceRule = HourRecurrenceRule(interval_hours=100, warning_hours=10)
    medical: ExpiryRule = ExpiryRule(warning_days=30)
    flight_review: ExpiryRule = ExpiryRule(warning_days=30)
    recent_currency: CurrencyRule = CurrencyRule(min_hours=3)
    wind: WindLimits = WindLimits()
    orchestration: OrchestrationSettings = OrchestrationSettings()
    loaded_at: Optional[str] = None
    source_files: List[str] = Field(default_factory=list)


DEFAULT_THRESHOLDS = AuditThresholds()

# rule id -> (logic.type, model)
RULE_TARGETS: Dict[str, Tuple[str, Type[BaseModel]]] = {
    "annual_inspection": ("date_recurrence", DateRecurrenceRule),
    "transponder": ("date_recurrence", DateRecurrenceRule),
    "static_system": ("date_recurrence", DateRecurrenceRule),
    "hundred_hour": ("hour_recurrence", HourRecurrenceRule),
    "medical": ("expiry", ExpiryRule),
    "flight_review": ("expiry", ExpiryRule),
    "recent_currency": ("currency_threshold", CurrencyRule),
    "wind": ("wind_limits", WindLimits),
    "orchestration": ("orchestration", OrchestrationSettings),
}


# ---------------------------------------------------------
# Helper: Extract rule objects from a rules file
# ---------------------------------------------------------
def _iter_rule_objects_from_raw(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return []

    # wrapper { "meta": {...}, "rules": [ ... ] }
    if "rules" in raw and isinstance(raw["rules"], list):
        return raw["rules"]

    # { "meta": {...}, "<id>": {rule}, ... }
    out = []
    for k, v in raw.items():
        if k == "meta" or not isinstance(v, dict):
            continue
        vr = dict(v)
        vr.setdefault("id", k)
        out.append(vr)
    return out


def _schema_version_of(raw: Any) -> Optional[int]:
    if isinstance(raw, dict) and isinstance(raw.get("meta"), dict):
        v = raw["meta"].get("schema_version")
        return int(v) if v is not None else None
    return None


def apply_rule(values: Dict[str, Any], rule: ThresholdRuleSpec) -> None:
    """Validate a rule's logic against its target model and store it in values. Raises ValueError."""
    target = RULE_TARGETS.get(rule.id)
    if target is None:
        raise ValueError(f"unknown threshold id: {rule.id}")
    expected_type, model = target
    logic = dict(rule.logic)
    ltype = logic.pop("type")
    if ltype != expected_type:
        raise ValueError(f"rule {rule.id} expects logic.type '{expected_type}', got '{ltype}'")
    values[rule.id] = model.model_validate(logic)


# ---------------------------------------------------------
# Main Loader
# ---------------------------------------------------------
def load_thresholds_from_folder(
    folder: Path,
) -> Tuple[AuditThresholds, Dict[str, ThresholdRuleSpec], List[Dict[str, Any]]]:
    """
    Loads all rule JSON files from folder.
    Returns:
        (THRESHOLDS, VALID_RULES, INVALID_REPORTS)
    """
    valid: Dict[str, ThresholdRuleSpec] = {}
    invalid: List[Dict[str, Any]] = []
    values: Dict[str, Any] = {}
    source_files: List[str] = []

    folder = Path(folder)

    if not folder.exists() or not folder.is_dir():
        log.warning("Rules folder does not exist: %s", folder)
        return DEFAULT_THRESHOLDS, valid, invalid

    # Load *.json files deterministically
    for f in sorted(folder.glob("*.json")):
        fname = f.name
        try:
            parsed = json.loads(f.read_text(encoding="utf-8"))
        except OSError as e:
            invalid.append({"file": fname, "error": f"read_error: {e}"})
            log.error("Failed to read %s: %s", fname, e)
            continue
        except json.JSONDecodeError as e:
            invalid.append({"file": fname, "error": f"json_parse_error: {e}"})
            log.error("JSON parse error in %s: %s", fname, e)
            continue

        try:
            schema_version = _schema_version_of(parsed)
        except (TypeError, ValueError):
            schema_version = -1
        if schema_version is None:
            invalid.append({"file": fname, "error": "missing meta.schema_version"})
            log.error("Skipping %s: no meta.schema_version", fname)
            continue
        if schema_version != SCHEMA_VERSION:
            invalid.append({
                "file": fname,
                "error": f"schema_version {schema_version} not supported (expected {SCHEMA_VERSION})",
            })
            log.error("Skipping %s: unsupported schema_version %s", fname, schema_version)
            continue

        source_files.append(fname)

        for idx, raw_rule in enumerate(_iter_rule_objects_from_raw(parsed)):
            try:
                r = ThresholdRuleSpec.model_validate(raw_rule)
            except ValidationError as e:
                invalid.append({"file": fname, "index": idx, "error": f"validation_error: {e.errors()}"})
                continue

            if not r.enabled:
                log.info("Rule %s from %s disabled, keeping default", r.id, fname)
                continue
            if r.id in valid:
                invalid.append({"file": fname, "index": idx, "error": f"duplicate rule id: {r.id}"})
                log.error("Duplicate rule id %s in %s", r.id, fname)
                continue

            try:
                apply_rule(values, r)
            except (ValueError, ValidationError) as e:
                invalid.append({"file": fname, "index": idx, "error": f"logic_error: {e}"})
                log.error("Invalid logic for rule %s in %s: %s", r.id, fname, e)
                continue

            valid[r.id] = r
            log.info("Loaded rule %s from %s", r.id, fname)

    thresholds = AuditThresholds(
        **values,
        loaded_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        source_files=source_files,
    )

    log.info(
        "Threshold loader summary: %d valid rules, %d invalid, %d files",
        len(valid), len(invalid), len(source_files),
    )

    return thresholds, valid, invalid


# ---------------------------------------------------------
# Registry
# ---------------------------------------------------------
class ThresholdRegistry:
    """
    Holds the active thresholds for the process.

    init() loads from a folder, reload() re-reads the same folder, reset() drops
    everything back to defaults. get() lazily initialises from RULES_DIR.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._folder: Optional[Path] = None
        self._thresholds: Optional[AuditThresholds] = None
        self._valid: Dict[str, ThresholdRuleSpec] = {}
        self._invalid: List[Dict[str, Any]] = []

    @property
    def initialized(self) -> bool:
        return self._thresholds is not None

    @property
    def folder(self) -> Optional[Path]:
        return self._folder

    @property
    def valid_rules(self) -> Dict[str, ThresholdRuleSpec]:
        return dict(self._valid)

    @property
    def invalid_reports(self) -> List[Dict[str, Any]]:
        return list(self._invalid)

    def init(self, folder: Optional[Path] = None) -> AuditThresholds:
        folder = Path(folder) if folder is not None else RULES_DIR
        thresholds, valid, invalid = load_thresholds_from_folder(folder)
        with self._lock:
            self._folder = folder
            self._thresholds = thresholds
            self._valid = valid
            self._invalid = invalid
        return thresholds

    def reload(self) -> AuditThresholds:
        return self.init(self._folder)

    def get(self) -> AuditThresholds:
        if self._thresholds is None:
            return self.init(self._folder)
        return self._thresholds

    def reset(self) -> None:
        with self._lock:
            self._folder = None
            self._thresholds = None
            self._valid = {}
            self._invalid = []


registry = ThresholdRegistry()

__all__ = [
    "AuditThresholds",
    "DEFAULT_THRESHOLDS",
    "SCHEMA_VERSION",
    "ThresholdRegistry",
    "ThresholdRuleSpec",
    "load_thresholds_from_folder",
    "registry",
]
