"""Error handling utilities."""

from typing import Optional


class TaskDeskError(Exception):
    """Base exception for TaskDesk backend."""
    pass


class ValidationError(TaskDeskError):
    """Malformed or missing input, with field-level detail."""

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class NotFoundError(TaskDeskError):
    """Referenced task or actor does not exist."""
    pass


class ConflictError(TaskDeskError):
    """A lifecycle precondition was violated (already claimed, already completed...)."""
    pass


class DependencyUnavailable(TaskDeskError):
    """Repository, notification or audit collaborator unreachable or timed out."""
    pass


class SupabaseError(DependencyUnavailable):
    """Supabase operation error."""
    pass
