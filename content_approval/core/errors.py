"""
Error taxonomy for the approval engine.

Services raise these; the API layer maps them onto HTTP responses and the
batch coordinator records them per item.
"""
from datetime import datetime
from typing import Any, Dict, Optional


class ApprovalEngineError(Exception):
    """Base class for all caller-visible engine errors"""

    error_code = "approval_engine_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        """Render the error as an API response body"""
        detail = {"error": self.message, "error_code": self.error_code}
        detail.update(self.details)
        return detail


class NotFoundError(ApprovalEngineError):
    """Post or session could not be located"""

    error_code = "not_found"
    status_code = 404


class ExpiredError(ApprovalEngineError):
    """Approval session is past its expires_at"""

    error_code = "expired"
    status_code = 410


class ForbiddenError(ApprovalEngineError):
    """Scope mismatch: wrong client, project or session"""

    error_code = "forbidden"
    status_code = 403


class InvalidStateError(ApprovalEngineError):
    """Illegal status transition or edit on a finalized post"""

    error_code = "invalid_state"
    status_code = 400


class ValidationError(ApprovalEngineError):
    """Malformed decision or request payload"""

    error_code = "validation_error"
    status_code = 400


class LockConflictError(ApprovalEngineError):
    """
    Another editor holds an unexpired edit lock.

    Retryable: the caller may resubmit with ``force=True``.
    """

    error_code = "lock_conflict"
    status_code = 409

    def __init__(
        self,
        currently_editing_by: str,
        editing_started_at: Optional[datetime],
        message: str = "Post is currently being edited by another user",
    ):
        super().__init__(message)
        self.currently_editing_by = currently_editing_by
        self.editing_started_at = editing_started_at
        self.can_force = True

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.error_code,
            "currentlyEditingBy": self.currently_editing_by,
            "editingStartedAt": self.editing_started_at.isoformat() if self.editing_started_at else None,
            "canForce": self.can_force,
            "message": "Use force=true to override the lock",
        }
