# flightaudit/exceptions.py
"""
Audit engine exceptions.

Every error carries a machine-readable code and a details dict so the HTTP
layer can render it without knowing the concrete type.
"""

from typing import Any, Dict, Optional


class AuditError(Exception):
    """Base exception for audit engine errors."""

    http_status = 500

    def __init__(
        self,
        message: str,
        code: str = "AUDIT_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class EntityNotFound(AuditError):
    """Raised when a flight, pilot or aircraft cannot be loaded. Fatal for the audit."""

    http_status = 404

    def __init__(self, entity: str, entity_id: str, message: str = None):
        msg = message or f"{entity.capitalize()} not found: {entity_id}"
        super().__init__(
            message=msg,
            code="ENTITY_NOT_FOUND",
            details={"entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class WeatherUnavailable(AuditError):
    """Raised by weather providers on transport or upstream failure. Recoverable."""

    http_status = 503

    def __init__(self, airport: str, reason: str = None):
        msg = f"Weather unavailable for {airport}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(
            message=msg,
            code="WEATHER_UNAVAILABLE",
            details={"airport": airport, "reason": reason}
        )
        self.airport = airport


class MalformedInput(AuditError):
    """Raised when input data fails validation at the ingestion boundary."""

    http_status = 422

    def __init__(self, message: str, field: str = None, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="MALFORMED_INPUT",
            details=error_details
        )


class PersistenceError(AuditError):
    """Raised when the store fails to write. The audit result is not returned."""

    def __init__(self, operation: str, reason: str = None):
        msg = f"Persistence failed during {operation}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(
            message=msg,
            code="PERSISTENCE_ERROR",
            details={"operation": operation, "reason": reason}
        )


class FlightStateError(AuditError):
    """Raised when a flight lifecycle transition is invalid."""

    http_status = 409

    def __init__(self, current_state: str, target_state: str, message: str = None):
        msg = message or f"Cannot transition from {current_state} to {target_state}"
        super().__init__(
            message=msg,
            code="FLIGHT_STATE_ERROR",
            details={
                "current_state": current_state,
                "target_state": target_state,
            }
        )
