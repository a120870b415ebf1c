"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one error
handler per type so every blueprint gets the same HTTP status codes.

Usage:
    from bgf.core.exceptions import NotFoundError, InvalidStageError

    raise NotFoundError(resource="Request", resource_id=42)
    raise InvalidStageError(request_id=42, action="officer_review",
                            current="hop_review", required="officer_assignment")

HTTP mapping (see ``bgf.create_app``):
    NotFoundError             404
    ValidationError           422
    ConflictError             409
    InvalidStageError         400
    UnauthorizedActorError    403
    InvalidAssignmentError    400
    PersistenceConflictError  409
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Request", "Workflow").
        resource_id: The key that was looked up. Included in logs and responses.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (unknown request type, negative amount, empty comment).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow engine errors ───────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for stage transition failures.

    Every subclass carries a machine-readable ``code`` used in API responses.
    None of them is retryable as-is: the caller must reload the workflow.
    """

    code = "ERR_WORKFLOW"

    def __init__(self, message: str, request_id: int | None = None) -> None:
        self.request_id = request_id
        super().__init__(message)


class InvalidStageError(WorkflowError):
    """Operation attempted outside its required stage, or on a completed workflow."""

    code = "ERR_INVALID_STAGE"

    def __init__(self, request_id: int, action: str, current: str, required: str | None = None) -> None:
        self.action = action
        self.current_stage = current
        self.required_stage = required
        msg = f"Cannot '{action}' request {request_id} (stage={current})"
        if required:
            msg += f": requires stage '{required}'"
        super().__init__(msg, request_id)


class UnauthorizedActorError(WorkflowError):
    """Actor is not the stage's recorded assignee, or lacks the required role."""

    code = "ERR_UNAUTHORIZED_ACTOR"

    def __init__(self, request_id: int, action: str, actor_id: int | None, reason: str) -> None:
        self.action = action
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(f"User {actor_id} may not '{action}' request {request_id}: {reason}", request_id)


class InvalidAssignmentError(WorkflowError):
    """Assignment target is unknown or its role does not match the expected type."""

    code = "ERR_INVALID_ASSIGNMENT"

    def __init__(self, message: str, request_id: int | None = None, target_id: int | None = None) -> None:
        self.target_id = target_id
        super().__init__(message, request_id)


class PersistenceConflictError(WorkflowError):
    """A concurrent transition won the race on the same workflow row too many times."""

    code = "ERR_PERSISTENCE_CONFLICT"

    def __init__(self, request_id: int, action: str, attempts: int) -> None:
        self.action = action
        self.attempts = attempts
        super().__init__(
            f"Concurrent update on request {request_id} while running '{action}' "
            f"(gave up after {attempts} attempts)",
            request_id,
        )


class NotificationDispatchFailure(Exception):
    """Delivery of an in-app notification failed. Logged, never surfaced."""

    def __init__(self, user_id: int, title: str, cause: Exception | None = None) -> None:
        self.user_id = user_id
        self.title = title
        self.cause = cause
        super().__init__(f"Notification '{title}' to user {user_id} failed: {cause}")
