# flightaudit/main.py
"""
Flight Audit Engine - FastAPI main file.

Loads threshold rules from flightaudit/rules, exposes:
- GET  /                   -> "Audit Engine Ready!" + thresholds summary
- GET  /thresholds         -> active thresholds + rule summaries + invalid reports
- POST /thresholds/reload  -> reload rules from disk
- POST /check              -> offline legality check of posted snapshots
- flights / audit / weather routes from audit.py
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .audit import AuditService
from .audit import router as audit_router
from .collaborators import LoggingDispatcher
from .exceptions import AuditError
from .legality import router as legality_router
from .load_rules import AuditThresholds, registry
from .store import InMemoryFlightStore
from .weather import AviationWeatherProvider

log = logging.getLogger("uvicorn.error")


# ---------- RESPONSE MODELS ----------
class RuleSummary(BaseModel):
    id: str
    title: Optional[str] = None
    reference: Optional[Any] = None
    enabled: Optional[bool] = None
    version: Optional[str] = None
    logic: Optional[Dict[str, Any]] = None


class ThresholdsView(BaseModel):
    thresholds: AuditThresholds
    rules: List[RuleSummary]
    invalid: List[Dict[str, Any]]


def _rule_summaries() -> List[RuleSummary]:
    return [
        RuleSummary(
            id=r.id,
            title=r.title,
            reference=r.reference,
            enabled=r.enabled,
            version=r.version,
            logic=r.logic,
        )
        for r in sorted(registry.valid_rules.values(), key=lambda r: r.id)
    ]


def build_service(thresholds_source=None) -> AuditService:
    return AuditService(
        store=InMemoryFlightStore(),
        weather_provider=AviationWeatherProvider(),
        thresholds_source=thresholds_source or registry.get,
        dispatcher=LoggingDispatcher(),
    )


# ---------- LIFESPAN ----------
@asynccontextmanager
async def _lifespan(app: FastAPI):
    thresholds = registry.init()
    app.state.thresholds = thresholds
    app.state.invalid_rules = registry.invalid_reports
    if getattr(app.state, "audit_service", None) is None:
        app.state.audit_service = build_service(lambda: app.state.thresholds)

    log.info(
        "Threshold loader startup: %d valid, %d invalid",
        len(registry.valid_rules), len(registry.invalid_reports),
    )

    yield

    app.state.audit_service = None
    app.state.thresholds = None
    registry.reset()


app = FastAPI(title="Flight Legality & Risk Audit Engine", lifespan=_lifespan)

app.include_router(legality_router)
app.include_router(audit_router)


@app.exception_handler(AuditError)
async def _audit_error_handler(request: Request, exc: AuditError):
    if exc.http_status >= 500:
        log.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ---------- ROOT ----------
@app.get("/")
def root():
    thresholds = getattr(app.state, "thresholds", None) or registry.get()
    return {
        "message": "Audit Engine Ready!",
        "rules_loaded": len(registry.valid_rules),
        "rules_invalid": len(registry.invalid_reports),
        "thresholds_loaded_at": thresholds.loaded_at,
    }


# ---------- THRESHOLDS ----------
@app.get("/thresholds", response_model=ThresholdsView)
def get_thresholds():
    thresholds = getattr(app.state, "thresholds", None) or registry.get()
    return ThresholdsView(
        thresholds=thresholds,
        rules=_rule_summaries(),
        invalid=registry.invalid_reports,
    )


@app.post("/thresholds/reload")
def reload_thresholds():
    thresholds = registry.reload()
    app.state.thresholds = thresholds
    app.state.invalid_rules = registry.invalid_reports
    log.info("Thresholds reloaded from %s", registry.folder)
    return {
        "loaded": len(registry.valid_rules),
        "invalid": registry.invalid_reports,
    }
