"""Error taxonomy shared by services, repositories and the CLI."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes used by the CLI for each error family."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    NOT_FOUND = 2
    CONFLICT = 3
    VALIDATION_ERROR = 4
    STORAGE_ERROR = 5


class TrackerError(Exception):
    """Base error carrying a caller-facing message and an exit code."""

    exit_code: ExitCode = ExitCode.GENERAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TrackerError):
    """Referenced task, parent, dependency target, sprint or project does not exist."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, resource: str, entity_id: str) -> None:
        super().__init__(f"{resource} not found: {entity_id}")
        self.resource = resource
        self.entity_id = entity_id


class ValidationError(TrackerError):
    """Illegal transition, hierarchy edit, dependency edit or oversized payload."""

    exit_code = ExitCode.VALIDATION_ERROR


class ConflictError(TrackerError):
    """Optimistic-lock mismatch or an interleaved concurrent write."""

    exit_code = ExitCode.CONFLICT

    def __init__(
        self,
        message: str,
        *,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version

    @classmethod
    def version_mismatch(cls, *, expected: int, actual: int) -> ConflictError:
        return cls(
            f"Version mismatch: expected {expected}, got {actual}. "
            "Task was modified by another process. "
            "Re-read the task and retry with the current version.",
            expected_version=expected,
            actual_version=actual,
        )


class StorageError(TrackerError):
    """Persistent store failed while applying a write."""

    exit_code = ExitCode.STORAGE_ERROR
