"""
Engine-wide exception hierarchy.

Every service in the lifecycle engine raises one of these types for an
expected domain condition. Blueprints never catch them one by one; the app
factory registers a single handler per type and gets consistent HTTP status
codes everywhere.

Usage:
    from designflow.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="DesignVersion", resource_id=version_id)
    raise InvalidTransitionError("review_requested", "in_progress")
"""


class NotFoundError(Exception):
    """Raised when a requested project, version, feedback or request is unknown.

    Args:
        resource: Human-readable entity name (e.g. "Project", "DesignVersion").
        resource_id: The id that was looked up.
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
    """Raised when input is malformed (unknown role, unknown status, bad shape).

    Distinct from ValidationFailedError: this one signals a caller bug, not a
    workflow rule that the project state currently violates.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with the current stored state.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} conflicts with stored state")


class StaleRevisionError(ConflictError):
    """Raised when a store write was based on an outdated revision.

    Two writers read the same revision; the slower one loses and must re-read
    and re-issue its operation. Only the modification quota sync retries on its
    own, a bounded number of times.
    """

    def __init__(self, key: str, expected: int | None, actual: int | None) -> None:
        super().__init__(
            "StoreEntry", "revision", str(actual),
            message=f"Stale write on '{key}': expected revision {expected}, found {actual}",
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class TransitionError(Exception):
    """Base class for rejected project lifecycle transitions."""

    def __init__(self, from_status: str | None, to_status: str | None, reason: str) -> None:
        super().__init__(reason)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason


class InvalidTransitionError(TransitionError):
    """Raised when no transition is declared for the requested (from, to) pair."""

    def __init__(self, from_status: str | None, to_status: str | None, reason: str | None = None) -> None:
        super().__init__(
            from_status,
            to_status,
            reason or f"Transition from '{from_status}' to '{to_status}' is not allowed",
        )


class ForbiddenError(TransitionError):
    """Raised when the acting role is not the role the transition requires."""

    def __init__(self, from_status: str, to_status: str, required_role: str, acting_role: str) -> None:
        super().__init__(
            from_status,
            to_status,
            f"This action requires the '{required_role}' role (acting as '{acting_role}')",
        )
        self.required_role = required_role
        self.acting_role = acting_role


class ValidationFailedError(TransitionError):
    """Raised when one or more validation rules of a transition fail.

    Carries every violated rule of the attempt, in declaration order, so the
    caller can present all of them at once.
    """

    def __init__(self, from_status: str, to_status: str, failed_rules: list[str],
                 messages: list[str] | None = None) -> None:
        super().__init__(
            from_status,
            to_status,
            f"Transition to '{to_status}' failed validation: {', '.join(failed_rules)}",
        )
        self.failed_rules = list(failed_rules)
        self.messages = list(messages or [])


class EmptyInputError(Exception):
    """Raised when an operation that needs at least one item receives none."""


class EmptyFileSetError(EmptyInputError):
    """Raised when a design version is created without any file."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"A design version for project {project_id} needs at least one file")
        self.project_id = project_id
