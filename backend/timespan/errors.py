from __future__ import annotations

from typing import Optional


class TimespanError(Exception):
    """Base class for every failure an operation reports to its caller.

    ``public_message`` is what the HTTP layer and the CLI show. Storage and git
    failures keep their detail in the log only.
    """

    public_message = "operation failed"
    exit_code = 1
    # Only validation messages describe caller input and are safe to echo.
    message_is_public = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        if message is not None and self.message_is_public:
            self.public_message = message


class ValidationError(TimespanError):
    public_message = "invalid input"
    exit_code = 2
    message_is_public = True


class ConflictError(TimespanError):
    public_message = "conflicting state"
    exit_code = 3


class ProjectExistsError(ConflictError):
    public_message = "a project with this name already exists"


class DuplicateCommitError(ConflictError):
    public_message = "commit has already been imported"


class AlreadyTrackingError(ConflictError):
    public_message = "a timer is already running"

    def __init__(self, project_id: str, project_name: Optional[str] = None, task: Optional[str] = None):
        super().__init__(f"timer already running for project {project_name or project_id}")
        self.project_id = project_id
        self.project_name = project_name
        self.task = task


class NotFoundError(TimespanError):
    public_message = "not found"
    exit_code = 4


class UnknownProjectError(NotFoundError):
    public_message = "project not found"

    def __init__(self, reference: str):
        super().__init__(f"unknown project: {reference}")
        self.reference = reference


class TimeEntryNotFoundError(NotFoundError):
    public_message = "time entry not found"


class NotTrackingError(NotFoundError):
    public_message = "no active timer"


class PreconditionError(TimespanError):
    public_message = "project still has time entries"
    exit_code = 5
    message_is_public = True


class StorageError(TimespanError):
    public_message = "storage operation failed"
    exit_code = 6


class GitError(TimespanError):
    public_message = "repository analysis failed"
    exit_code = 7
