"""Application exceptions.

Two families live here:

* HTTP-flavoured exceptions used by the auth layer and routes
  (``UnauthorizedException`` and friends). They carry a ``detail`` and are
  rendered by the handlers registered in ``app.main``.
* Domain errors raised by the assignment lifecycle. They know nothing about
  HTTP; ``app.main`` maps each one to a status code and keeps its message
  verbatim.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class UnauthorizedException(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ForbiddenException(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundException(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


# --- Domain errors -----------------------------------------------------------

class AssignmentError(Exception):
    """Base class for lifecycle/scoring failures surfaced to the caller."""

    code = "assignment_error"
    status_code = 400
    default_message = "Assignment operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTransition(AssignmentError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This action is not allowed in the assignment's current status"


class NotSubmitted(InvalidTransition):
    code = "not_submitted"
    default_message = "This assignment has not been submitted yet"


class AlreadyReviewed(InvalidTransition):
    code = "already_reviewed"
    default_message = "This assignment has already been reviewed"


class MissingRubric(AssignmentError):
    code = "missing_rubric"
    status_code = 422
    default_message = "No scoring assessment is configured for this assignment type"


class NotFound(AssignmentError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class PermissionDenied(AssignmentError):
    code = "permission_denied"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class ValidationError(AssignmentError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors) or self.default_message,
                         details={"errors": self.errors})
