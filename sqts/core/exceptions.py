"""
Engine-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Cycles and unresolved anchors are not exceptions: a derivation pass reports
them as data (see ``anchor_resolver.ResolutionStatus``).

Usage:
    from sqts.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ActivityTemplate", resource_id=42)
    raise ValidationError("fixed_date is required", details={"fixed_date": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ProjectActivity").
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


class ValidationError(Exception):
    """Raised when input is well-formed but violates a scheduling rule.

    Typical causes: anchor-specific fields that do not match the anchor type,
    an anchor reference outside the owning template, or a write that would
    close a SCHEDULE_ITEM cycle. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ConcurrencyConflict(Exception):
    """Raised by a strict apply when the fresh plan differs from the caller's preview.

    Args:
        conflicts: One dict per instance whose expected new date no longer
                   matches: ``{"instance_id", "expected", "actual"}``.
    """

    def __init__(self, conflicts: list[dict]) -> None:
        self.conflicts = conflicts
        super().__init__(
            f"{len(conflicts)} change(s) differ from the previewed plan; re-run the preview"
        )


class PropagationApplyError(Exception):
    """Raised when persisting a propagation batch fails.

    The batch is rolled back before this is raised, so ``updated_count`` is
    always 0.
    """

    updated_count = 0

    def __init__(self, project_id: int, cause: Exception | None = None) -> None:
        self.project_id = project_id
        self.cause = cause
        super().__init__(f"Propagation for project id={project_id} was rolled back")
