"""Error taxonomy for the commission engine.

Every condition raised here is local and recoverable: the API layer maps
each class to a 4xx response, and nothing in this module is fatal.
Resolution misses are not errors at all (see ``AssignmentNotFound``).
"""


class CommissionError(Exception):
    """Base class for commission engine errors."""

    code = "COMMISSION_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CommissionError, ValueError):
    """Malformed input, rejected before any state change."""

    code = "VALIDATION_ERROR"
    status_code = 400


class DuplicateAssignmentError(CommissionError):
    """An active assignment with an overlapping window already exists."""

    code = "DUPLICATE_ASSIGNMENT"
    status_code = 409

    def __init__(self, message: str, conflicting_id: int = None):
        super().__init__(message)
        self.conflicting_id = conflicting_id


class InvalidStateError(CommissionError):
    """Lifecycle transition not allowed from the record's current status."""

    code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str, current_status: str = None):
        super().__init__(message)
        self.current_status = current_status


class RecordNotFoundError(CommissionError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class ConcurrencyConflict(CommissionError):
    """Unique key race on ledger insert. Handled inside the ledger."""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409
