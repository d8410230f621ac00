"""
Workflow-wide exception hierarchy.

Services raise these; blueprints register one handler per type and get
consistent HTTP status codes everywhere.  Four of the five kinds are caller
errors and are never retried automatically.  ``StorageError`` is the only
kind a caller may retry, and only with backoff after re-fetching state.

Usage:
    from query_workflow.core.exceptions import NotFoundError, ConflictError

    raise NotFoundError(resource="QueryItem", resource_id=item_id)
    raise ConflictError("Cannot approve item in status 'deferred'", current_status="deferred")
"""


class WorkflowError(Exception):
    """Base class for every error the engine raises on purpose."""

    retryable = False


class NotFoundError(WorkflowError):
    """Raised when an application, group, item or entry does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Application", "QueryItem").
        resource_id: The key that was looked up.
        message: Overrides the generated message (used when relaying a
                 server response).
    """

    def __init__(self, resource: str, resource_id: str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if message is None:
            message = f"{resource}"
            if resource_id is not None:
                message += f" {resource_id!r}"
            message += " not found"
        super().__init__(message)


class ValidationError(WorkflowError):
    """Raised when a request is missing fields or breaks a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.  Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(WorkflowError):
    """Raised when a team is not routed to the item it tries to read or act on."""

    def __init__(
        self,
        team: str,
        item_id: str | None = None,
        action: str | None = None,
        message: str | None = None,
    ) -> None:
        self.team = team
        self.item_id = item_id
        self.action = action
        if message is None:
            what = f"'{action}'" if action else "access"
            message = f"Team '{team}' is not authorized for {what}"
            if item_id is not None:
                message += f" on query {item_id}"
        super().__init__(message)


class ConflictError(WorkflowError):
    """Raised when the requested transition is illegal from the current status.

    Covers double-apply too: the second ``approve`` on the same item lands here.
    The caller must re-fetch the item before deciding what to do next.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class StorageError(WorkflowError):
    """Raised when the backing store is unavailable or timed out.

    The outcome of the write is unknown to the caller: it may have committed.
    """

    retryable = True

    def __init__(self, message: str = "Storage unavailable", operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)
