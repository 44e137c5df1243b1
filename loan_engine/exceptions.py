"""
Error Taxonomy Module

Every rejected operation raises one of these so callers can tell bad input
from wrong timing from transient persistence trouble.
"""


class LoanEngineError(Exception):
    """Base exception for all loan engine errors"""
    reason = "error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"reason": self.reason, "detail": self.message}


class InvalidArgumentError(LoanEngineError, ValueError):
    """Malformed or out-of-range input (never retried)"""
    reason = "invalid_argument"


class InvalidStateError(LoanEngineError):
    """Operation not permitted in the entity's current state (never retried)"""
    reason = "invalid_state"


class NotFoundError(InvalidStateError):
    """Referenced entity does not exist"""
    reason = "not_found"


class ConflictError(LoanEngineError):
    """Concurrent write detected at the persistence boundary"""
    reason = "conflict"
    retryable = True


class UnavailableError(LoanEngineError):
    """Persistence collaborator unreachable or timed out"""
    reason = "unavailable"
    retryable = True
