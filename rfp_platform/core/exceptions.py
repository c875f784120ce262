"""
Platform-wide exception hierarchy.

Services raise these types; ``utils.errors.register_error_handlers``
maps each one to an HTTP status and error code once for the whole app,
so route handlers never translate exceptions themselves.

Usage:
    from rfp_platform.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="RFP", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class RfpPlatformError(Exception):
    """Base class of the domain errors below."""


class UnauthenticatedError(RfpPlatformError):
    """Raised when a request carries no valid session. Maps to HTTP 401."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(RfpPlatformError):
    """Raised when the session's role or company does not permit the action.

    Maps to HTTP 403.
    """

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class NotFoundError(RfpPlatformError):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model/entity name (e.g. "RFP", "StageTask").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(RfpPlatformError):
    """Raised when input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(RfpPlatformError):
    """Raised when a stage change is not allowed from the current stage.

    Carries the validation result so the response can show the reason and
    the blocking tasks.
    """

    def __init__(self, from_stage: str, to_stage: str, reason: str, result: dict | None = None) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.reason = reason
        self.result = result or {}
        super().__init__(reason)


class ArchivedReadOnlyError(RfpPlatformError):
    """Raised on any mutation of an archived RFP or its children."""

    def __init__(self, rfp_id: int | None = None) -> None:
        self.rfp_id = rfp_id
        super().__init__("RFP is archived and read-only")


class ConflictError(RfpPlatformError):
    """Raised when an operation conflicts with existing state.

    Args:
        resource: Model name.
        field: The field (or state) in conflict.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class SubmissionsClosedError(RfpPlatformError):
    """Raised when a supplier edits or submits after the submission deadline."""

    def __init__(self, message: str = "Submissions are closed for this RFP") -> None:
        super().__init__(message)
