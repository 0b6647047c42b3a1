"""Error taxonomy for the reservation engine.

Every error carries a stable ``code``, a human message, the ids a caller needs
to decide on user messaging (``details``) and whether retrying the same call
can succeed (``retryable``).
"""

from typing import Any, Dict, List, Optional


class ReservationEngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidInput(ReservationEngineError):
    """Malformed dates, zero-night stay, unknown role code and similar."""

    code = "invalid_input"


class NotFound(ReservationEngineError):
    code = "not_found"

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            f"{entity} '{identifier}' not found",
            {"entity": entity, "id": str(identifier)},
        )


class RoomNotAvailable(ReservationEngineError):
    """The requested unit is taken for (part of) the requested dates."""

    code = "room_not_available"

    def __init__(
        self,
        unit_key: str,
        conflicts: Optional[List[str]] = None,
        reason: str = "overlap",
    ):
        self.unit_key = unit_key
        self.conflicts = list(conflicts or [])
        self.reason = reason
        super().__init__(
            f"Accommodation {unit_key} is not available ({reason})",
            {"unit": unit_key, "conflicts": self.conflicts, "reason": reason},
        )


class IllegalTransition(ReservationEngineError):
    """Requested status change is not allowed from the booking's current status."""

    code = "illegal_transition"

    def __init__(self, booking_reference: str, current_status: str, target_status: str, reason: str = ""):
        self.booking_reference = booking_reference
        self.current_status = current_status
        self.target_status = target_status
        message = f"Cannot move booking {booking_reference} from {current_status} to {target_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            {
                "booking_reference": booking_reference,
                "current_status": current_status,
                "target_status": target_status,
            },
        )


class InvalidHierarchy(ReservationEngineError):
    """Role graph is malformed (cycle, dangling parent, wrong level)."""

    code = "invalid_hierarchy"


class GenerationExhausted(ReservationEngineError):
    """Identifier generation gave up after its bounded retries."""

    code = "generation_exhausted"
    retryable = True


class PermissionDenied(ReservationEngineError):
    code = "permission_denied"


class StoreUnavailable(ReservationEngineError):
    """The data store timed out or a lock wait expired."""

    code = "store_unavailable"
    retryable = True
