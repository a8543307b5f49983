"""
Error taxonomy for remediation actions.
All of these are recoverable by the caller; none is fatal to the process.
"""


class RemediationError(Exception):
    """Base class for refused remediation actions."""
    error_type = "REMEDIATION_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error_type": self.error_type, "message": self.message}


class ValidationError(RemediationError):
    """Malformed or missing payload fields."""
    error_type = "VALIDATION_ERROR"
    status_code = 400


class InvalidState(RemediationError):
    """Action attempted from a status that does not permit it."""
    error_type = "INVALID_STATE"
    status_code = 409


class EvidenceRequirementError(RemediationError):
    """Strategy-specific evidence or metadata is missing."""
    error_type = "EVIDENCE_REQUIRED"
    status_code = 400


class IncompleteTasks(RemediationError):
    """Required action items are still pending at submission."""
    error_type = "INCOMPLETE_TASKS"
    status_code = 400


class NotFound(RemediationError):
    """Flag or task does not exist in the caller's workspace."""
    error_type = "NOT_FOUND"
    status_code = 404


class Forbidden(RemediationError):
    """Caller lacks the reviewer role."""
    error_type = "FORBIDDEN"
    status_code = 403
