"""
Failure taxonomy for the booking core.

Every rejected operation raises a ServiceError subclass carrying a stable
``kind`` and the HTTP status it maps to. The API layer renders them with a
single exception handler; nothing below the routes talks HTTP.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for recoverable, request-scoped failures."""

    kind = "ServiceError"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"


class NotFoundError(ServiceError):
    kind = "NotFound"
    status_code = 404


class ForbiddenError(ServiceError):
    kind = "Forbidden"
    status_code = 403


class InvalidStateError(ServiceError):
    """A precondition on the current status or availability is not met."""

    kind = "InvalidState"
    status_code = 400


class InvalidStatusError(ServiceError):
    kind = "InvalidStatus"
    status_code = 400


class InvalidInputError(ServiceError):
    kind = "InvalidInput"
    status_code = 400


class AlreadyPaidError(InvalidStateError):
    kind = "AlreadyPaid"


class AlreadyCompletedError(InvalidStateError):
    kind = "AlreadyCompleted"


class AmountExceededError(ServiceError):
    kind = "AmountExceeded"
    status_code = 400


class DuplicateError(ServiceError):
    kind = "Duplicate"
    status_code = 409
