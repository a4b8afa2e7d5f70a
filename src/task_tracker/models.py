"""Domain models for tasks, dependencies, sprints and projects."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from task_tracker.errors import ValidationError

TITLE_MAX_CHARS = 500
DESCRIPTION_MAX_CHARS = 10_240
CRITERION_MAX_CHARS = 1_000
EVIDENCE_MAX_CHARS = 5_000
NAME_MAX_CHARS = 200
PROJECT_DESCRIPTION_MAX_CHARS = 2_000
LIST_MAX_LIMIT = 1_000


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFICATION = "verification"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    ARCHIVED = "archived"


FINISHED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.ARCHIVED})


class Priority(str, Enum):
    P0 = "p0"
    P1 = "p1"
    P2 = "p2"
    P3 = "p3"


class TaskType(str, Enum):
    FEATURE = "feature"
    BUGFIX = "bugfix"
    PLANNING = "planning"
    DEVELOPMENT = "development"
    UI = "ui"
    REFACTOR = "refactor"
    DOCS = "docs"
    TEST = "test"
    CHORE = "chore"


class SprintStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class _Unset:
    """Marker for update fields the caller did not touch."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(slots=True)
class SessionContext:
    """Per-session state threaded into service calls.

    ``current_project_id`` acts as an implicit filter for listings and as the
    default project for newly created tasks and sprints.
    """

    current_project_id: str | None = None


@dataclass(slots=True)
class AcceptanceCriterion:
    """One verifiable acceptance criterion stored on a task."""

    criterion_id: str
    description: str
    verified: bool = False
    verified_at: datetime | None = None
    verified_by: str | None = None
    evidence: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.criterion_id,
            "description": self.description,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
            "evidence": self.evidence,
        }

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> AcceptanceCriterion:
        verified_at = payload.get("verified_at")
        return cls(
            criterion_id=str(payload["id"]),
            description=str(payload["description"]),
            verified=bool(payload.get("verified", False)),
            verified_at=datetime.fromisoformat(verified_at) if verified_at else None,
            verified_by=payload.get("verified_by"),
            evidence=payload.get("evidence"),
        )


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    title: str
    description: str | None = None
    priority: Priority | None = None
    task_type: TaskType | None = None
    parent_id: str | None = None
    sprint_id: str | None = None
    project_id: str | None = None
    due_at: datetime | None = None
    tags: list[str] = field(default_factory=list)
    assignee: str | None = None
    estimate: int | None = None
    context: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    acceptance_criteria: list[str] = field(default_factory=list)

    def validate(self) -> None:
        _validate_title(self.title)
        _validate_description(self.description)
        _validate_estimate(self.estimate)
        _validate_tags(self.tags)
        _validate_json_object(self.context, "Context")
        _validate_json_object(self.metadata, "Metadata")
        for description in self.acceptance_criteria:
            _validate_criterion_description(description)


@dataclass(slots=True)
class TaskUpdate:
    """Partial update; fields left as ``UNSET`` are not written.

    ``version`` is the expected current version for optimistic locking and is
    never written itself.
    """

    title: str = UNSET
    description: str | None = UNSET
    status: TaskStatus = UNSET
    priority: Priority | None = UNSET
    task_type: TaskType | None = UNSET
    parent_id: str | None = UNSET
    sprint_id: str | None = UNSET
    project_id: str | None = UNSET
    due_at: datetime | None = UNSET
    tags: list[str] = UNSET
    assignee: str | None = UNSET
    estimate: int | None = UNSET
    context: dict[str, Any] = UNSET
    metadata: dict[str, Any] = UNSET
    acceptance_criteria: list[AcceptanceCriterion] = UNSET
    version: int | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were explicitly set."""

        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name != "version" and getattr(self, item.name) is not UNSET
        }

    def validate(self) -> None:
        if self.title is not UNSET:
            _validate_title(self.title)
        if self.description is not UNSET:
            _validate_description(self.description)
        if self.estimate is not UNSET:
            _validate_estimate(self.estimate)
        if self.tags is not UNSET:
            _validate_tags(self.tags)
        if self.context is not UNSET:
            _validate_json_object(self.context, "Context")
        if self.metadata is not UNSET:
            _validate_json_object(self.metadata, "Metadata")
        if self.version is not None and self.version < 1:
            raise ValidationError("Expected version must be a positive integer")
        if self.acceptance_criteria is not UNSET:
            for criterion in self.acceptance_criteria:
                _validate_criterion_description(criterion.description)


@dataclass(slots=True)
class TaskView:
    """Readable task record returned by every task operation."""

    task_id: str
    title: str
    description: str | None
    status: TaskStatus
    priority: Priority | None
    task_type: TaskType | None
    parent_id: str | None
    sprint_id: str | None
    project_id: str | None
    due_at: datetime | None
    tags: list[str]
    assignee: str | None
    agent_id: str | None
    estimate: int | None
    context: dict[str, Any]
    metadata: dict[str, Any]
    acceptance_criteria: list[AcceptanceCriterion]
    version: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskListQuery:
    """Filters, sorting and pagination for task listing."""

    statuses: tuple[TaskStatus, ...] = ()
    priorities: tuple[Priority, ...] = ()
    task_types: tuple[TaskType, ...] = ()
    parent_id: str | None = None
    sprint_id: str | None = None
    project_id: str | None = None
    assignee: str | None = None
    agent_id: str | None = None
    tags: tuple[str, ...] = ()
    sort: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    include_archived: bool = False

    def validate(self) -> None:
        if self.limit is not None and not 1 <= self.limit <= LIST_MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {LIST_MAX_LIMIT}")
        if self.offset is not None and self.offset < 0:
            raise ValidationError("offset must be >= 0")


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a workflow lookup."""

    valid: bool
    from_status: TaskStatus
    to_status: TaskStatus
    reason: str | None = None


@dataclass(slots=True)
class TaskTransition:
    task: TaskView
    transition: TransitionResult


@dataclass(slots=True)
class AvailableTransitions:
    current: TaskStatus
    allowed: tuple[TaskStatus, ...]


@dataclass(slots=True)
class ClaimResult:
    """Structured claim/release outcome; contention is not an error."""

    success: bool
    task: TaskView
    message: str


@dataclass(slots=True)
class BulkFailure:
    task_id: str
    reason: str


@dataclass(slots=True)
class BulkTransitionResult:
    updated: list[TaskView] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)


@dataclass(slots=True)
class DependencyView:
    task_id: str
    depends_on_id: str
    created_at: datetime


@dataclass(slots=True)
class VerificationResult:
    task: TaskView
    criterion: AcceptanceCriterion
    all_verified: bool
    verified: int
    total: int


@dataclass(slots=True)
class VerificationStatus:
    has_criteria: bool
    criteria: list[AcceptanceCriterion]
    all_verified: bool
    verified: int
    total: int


@dataclass(slots=True)
class TaskTreeNode:
    task: TaskView
    children: list[TaskTreeNode] = field(default_factory=list)


@dataclass(slots=True)
class WorkspaceContext:
    """Snapshot of what an agent session should look at next."""

    agent_id: str
    current_project: ProjectView | None
    my_tasks: list[TaskView]
    orphaned_tasks: list[TaskView]
    pending_tasks: list[TaskView]
    recently_completed: list[TaskView] | None
    suggested_actions: list[str]


@dataclass(slots=True)
class SprintCreate:
    name: str
    status: SprintStatus = SprintStatus.PLANNING
    project_id: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None

    def validate(self) -> None:
        _validate_name(self.name)
        _validate_date_range(self.start_at, self.end_at)


@dataclass(slots=True)
class SprintUpdate:
    name: str = UNSET
    status: SprintStatus = UNSET
    project_id: str | None = UNSET
    start_at: datetime | None = UNSET
    end_at: datetime | None = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not UNSET
        }

    def validate(self) -> None:
        if self.name is not UNSET:
            _validate_name(self.name)


@dataclass(slots=True)
class SprintView:
    sprint_id: str
    name: str
    status: SprintStatus
    project_id: str | None
    start_at: datetime | None
    end_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class SprintWithTasks:
    sprint: SprintView
    tasks: list[TaskView]
    counts: dict[str, int]


@dataclass(slots=True)
class ProjectCreate:
    name: str
    path: str | None = None
    description: str | None = None

    def validate(self) -> None:
        _validate_name(self.name)
        _validate_project_description(self.description)


@dataclass(slots=True)
class ProjectUpdate:
    name: str = UNSET
    path: str | None = UNSET
    description: str | None = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not UNSET
        }

    def validate(self) -> None:
        if self.name is not UNSET:
            _validate_name(self.name)
        if self.description is not UNSET:
            _validate_project_description(self.description)


@dataclass(slots=True)
class ProjectView:
    project_id: str
    name: str
    path: str | None
    description: str | None
    created_at: datetime
    updated_at: datetime


def _validate_title(title: str) -> None:
    if not title or len(title) > TITLE_MAX_CHARS:
        raise ValidationError(f"Title must be 1..{TITLE_MAX_CHARS} characters")


def _validate_description(description: str | None) -> None:
    if description is not None and len(description) > DESCRIPTION_MAX_CHARS:
        raise ValidationError(f"Description exceeds {DESCRIPTION_MAX_CHARS} characters")


def _validate_estimate(estimate: int | None) -> None:
    if estimate is not None and estimate <= 0:
        raise ValidationError("Estimate must be a positive integer")


def _validate_tags(tags: list[str]) -> None:
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ValidationError("Tags must be a list of strings")


def _validate_json_object(value: dict[str, Any] | None, label: str) -> None:
    if value is not None and not isinstance(value, dict):
        raise ValidationError(f"{label} must be a JSON object")


def _validate_criterion_description(description: str) -> None:
    if not isinstance(description, str) or not 1 <= len(description) <= CRITERION_MAX_CHARS:
        raise ValidationError(
            f"Acceptance criterion must be 1..{CRITERION_MAX_CHARS} characters",
        )


def _validate_name(name: str) -> None:
    if not name or len(name) > NAME_MAX_CHARS:
        raise ValidationError(f"Name must be 1..{NAME_MAX_CHARS} characters")


def _validate_project_description(description: str | None) -> None:
    if description is not None and len(description) > PROJECT_DESCRIPTION_MAX_CHARS:
        raise ValidationError(
            f"Description exceeds {PROJECT_DESCRIPTION_MAX_CHARS} characters",
        )


def _validate_date_range(start_at: datetime | None, end_at: datetime | None) -> None:
    if start_at is not None and end_at is not None and end_at < start_at:
        raise ValidationError("Sprint end_at must not be before start_at")
