"""
Service-wide exception hierarchy.

Services raise these types and never build HTTP responses themselves.
Blueprints register one handler per type and get consistent status codes
everywhere:

    NotFoundError       -> 404
    ValidationError     -> 422
    ConflictError       -> 409
    StateConflictError  -> 409

The agent collaborator raises the ``AgentError`` family. Phase executors
catch those and persist the failure on the investigation instead of
letting them reach a request handler.

Usage:
    from triage.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Investigation", resource_id=4711)
    raise ValidationError("Invalid restore mode", details={"mode": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested investigation, version, run or job does not exist.

    Not retryable. Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Investigation", "Version").
        resource_id: The key that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Raised before any state mutation or snapshot is taken, so a rejected
    call leaves no trace. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique key.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StateConflictError(Exception):
    """Raised when the investigation's current state forbids the operation.

    Typical case: a phase task is already queued or running for the
    investigation and the caller asked for another one. Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AgentError(Exception):
    """Base class for failures of the external agent CLI.

    Attributes:
        error_type: ``"auth"`` or ``"general"``; persisted on the investigation
                    so the dashboard can show a remediation hint.
    """

    error_type = "general"


class AgentTimeoutError(AgentError):
    """The agent did not finish within the configured wall-clock timeout."""

    def __init__(self, timeout_seconds: int | float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Agent call timed out after {timeout_seconds}s")


class AgentAuthError(AgentError):
    """The agent CLI reported an expired or missing login."""

    error_type = "auth"


class AgentExitError(AgentError):
    """The agent CLI exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Agent exited with code {returncode}"
        if stderr:
            msg += f": {stderr.strip()[:500]}"
        super().__init__(msg)


class AgentUnavailableError(AgentError):
    """The agent CLI binary could not be started."""


class PhaseError(Exception):
    """A phase could not produce its outputs (missing ticket data, empty agent output)."""
