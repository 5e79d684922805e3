"""
Workflow error taxonomy.

Every error carries the HTTP status it is surfaced with; main.py renders them
all as `{"success": false, "message": ...}`.
"""


class WorkflowError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Missing or malformed identifier or required field."""
    status_code = 400


class NotFound(WorkflowError):
    status_code = 404


class Conflict(WorkflowError):
    """A state-transition precondition failed."""
    status_code = 409


class Forbidden(WorkflowError):
    status_code = 403


class CapacityExceeded(WorkflowError):
    """The HR company is at its package limit."""
    status_code = 403


class InsufficientStock(WorkflowError):
    status_code = 400


class UpstreamPaymentError(WorkflowError):
    """The payment provider failed or the payment was not completed."""
    status_code = 502

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
