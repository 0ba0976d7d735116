"""
Domain exceptions for the progress engine.

Every exception carries the HTTP status the API layer answers with, so routers
can translate them without knowing the individual types.
"""
from fastapi import status


class GamificationError(Exception):
    """Base exception for the engine"""
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class NotFoundError(GamificationError):
    """Requested record does not exist"""
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status.HTTP_404_NOT_FOUND, detail)


class DuplicateEventError(GamificationError):
    """Activity event was already recorded in the ledger"""
    def __init__(self, event_id: str):
        super().__init__(status.HTTP_200_OK, f"Event {event_id} already processed")
        self.event_id = event_id


class VersionConflictError(GamificationError):
    """Conditional write lost against a concurrent writer"""
    def __init__(self, detail: str = "Concurrent modification detected"):
        super().__init__(status.HTTP_409_CONFLICT, detail)


class ConcurrencyConflictError(GamificationError):
    """Retries exhausted; the caller should redeliver the event"""
    def __init__(self, detail: str = "Too many concurrent modifications, retry later"):
        super().__init__(status.HTTP_409_CONFLICT, detail)


class DefinitionError(GamificationError):
    """Invalid achievement or leaderboard definition"""
    def __init__(self, detail: str = "Invalid definition"):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, detail)


class GoalValidationError(GamificationError, ValueError):
    """Goal payload rejected at creation"""
    def __init__(self, detail: str = "Invalid goal"):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, detail)


class InvalidTransitionError(GamificationError):
    """Status change not allowed from the current state"""
    def __init__(self, detail: str = "Invalid status transition"):
        super().__init__(status.HTTP_409_CONFLICT, detail)
