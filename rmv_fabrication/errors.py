"""Workflow error taxonomy.

Every guard failure in the engines raises one of these before any mutation is
applied. Each class carries a stable machine-readable ``kind`` and the HTTP
status the API maps it to.
"""


class WorkflowError(Exception):
    """Base class for caller-recoverable workflow failures"""

    kind = "workflow_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class ValidationError(WorkflowError):
    """Malformed or missing input"""

    kind = "validation_error"
    status_code = 400


class OutOfHoursError(ValidationError):
    """Requested time falls outside business hours"""

    kind = "out_of_hours"


class NotFoundError(WorkflowError):
    kind = "not_found"
    status_code = 404


class ForbiddenError(WorkflowError):
    """Caller lacks the role or ownership the operation requires"""

    kind = "forbidden"
    status_code = 403


class InvalidStateError(WorkflowError):
    """Operation is illegal in the aggregate's current state"""

    kind = "invalid_state"
    status_code = 409


class AlreadyAssignedError(InvalidStateError):
    kind = "already_assigned"


class ConflictError(WorkflowError):
    """Sales staff already holds an appointment at the requested timestamp"""

    kind = "conflict"
    status_code = 409


class PreconditionError(WorkflowError):
    """A required prior step has not happened yet"""

    kind = "precondition_failed"
    status_code = 412
