"""Task coordination service: validation and orchestration over the task store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import timedelta
from typing import Any

from task_tracker.context import DEFAULT_CONTEXT_MAX_BYTES, deep_merge, ensure_context_size
from task_tracker.errors import ConflictError, NotFoundError, ValidationError
from task_tracker.hierarchy import build_tree, group_children, would_create_cycle
from task_tracker.models import (
    EVIDENCE_MAX_CHARS,
    UNSET,
    AcceptanceCriterion,
    AvailableTransitions,
    BulkTransitionResult,
    ClaimResult,
    DependencyView,
    Priority,
    SessionContext,
    TaskCreate,
    TaskListQuery,
    TaskStatus,
    TaskTransition,
    TaskTreeNode,
    TaskUpdate,
    TaskView,
    VerificationResult,
    VerificationStatus,
    WorkspaceContext,
)
from task_tracker.planning_repository import PlanningRepository
from task_tracker.repository import TaskRepository
from task_tracker.storage.common import utc_now
from task_tracker.workflow import STANDARD_WORKFLOW, WorkflowDefinition

logger = logging.getLogger(__name__)

DEFAULT_BULK_MAX_ITEMS = 100
DEFAULT_TREE_MAX_DEPTH = 5
PENDING_PREVIEW_LIMIT = 10
RECENT_COMPLETED_LIMIT = 20
RECENT_COMPLETED_WINDOW = timedelta(hours=24)
SESSION_AGENT_PREFIX = "session-"
_FINISHABLE_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.VERIFICATION})


class TaskService:
    """Externally visible task operations.

    Every check that can be decided up front (workflow, hierarchy, sizes,
    referenced rows) runs here; the repository re-checks what a concurrent
    writer could invalidate inside the write transaction.
    """

    def __init__(  # noqa: PLR0913
        self,
        repository: TaskRepository,
        planning: PlanningRepository,
        *,
        workflow: WorkflowDefinition = STANDARD_WORKFLOW,
        session: SessionContext | None = None,
        bulk_max_items: int = DEFAULT_BULK_MAX_ITEMS,
        context_max_bytes: int = DEFAULT_CONTEXT_MAX_BYTES,
        tree_max_depth: int = DEFAULT_TREE_MAX_DEPTH,
    ) -> None:
        self.repository = repository
        self.planning = planning
        self.workflow = workflow
        self.session = session if session is not None else SessionContext()
        self.bulk_max_items = bulk_max_items
        self.context_max_bytes = context_max_bytes
        self.tree_max_depth = tree_max_depth

    # CRUD

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create one task in ``pending`` with version 1."""

        prepared = self._prepare_create(payload)
        task = self.repository.create_task(
            _new_id(),
            prepared,
            criteria=_new_criteria(prepared.acceptance_criteria),
        )
        logger.info("Task created: %s (%s)", task.task_id, task.title)
        return task

    def get_task(self, task_id: str) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def update_task(self, task_id: str, update: TaskUpdate) -> TaskView:
        """Apply a partial update with ``update.version`` as the expected version."""

        update.validate()
        existing = self.get_task(task_id)
        changes = update.changes()

        expected_status: TaskStatus | None = None
        new_status = changes.get("status")
        if new_status is not None:
            new_status = TaskStatus(new_status)
            if new_status == existing.status:
                changes.pop("status")
            else:
                self._require_transition(existing.status, new_status)
                changes["status"] = new_status
                expected_status = existing.status

        if "parent_id" in changes:
            self._check_parent(task_id, changes["parent_id"])
        self._check_references(
            sprint_id=changes.get("sprint_id"),
            project_id=changes.get("project_id"),
        )
        if changes.get("context") is not None:
            ensure_context_size(changes["context"], max_bytes=self.context_max_bytes)
        if "tags" in changes and changes["tags"] is None:
            changes["tags"] = []

        if not changes:
            if update.version is not None and update.version != existing.version:
                raise ConflictError.version_mismatch(
                    expected=update.version,
                    actual=existing.version,
                )
            return existing

        task = self.repository.update_task(
            task_id,
            changes,
            expected_version=update.version,
            expected_status=expected_status,
        )
        logger.info("Task updated: %s version=%s", task_id, task.version)
        return task

    def delete_task(self, task_id: str) -> None:
        if not self.repository.delete_task(task_id):
            raise NotFoundError("Task", task_id)
        logger.info("Task deleted: %s", task_id)

    def list_tasks(self, query: TaskListQuery | None = None) -> list[TaskView]:
        return self.repository.list_tasks(self._scoped_query(query))

    def count_tasks(self, query: TaskListQuery | None = None) -> int:
        return self.repository.count_tasks(self._scoped_query(query))

    def get_children(self, task_id: str) -> list[TaskView]:
        self.get_task(task_id)
        return self.repository.list_children(task_id)

    # Workflow

    def transition_task(self, task_id: str, to_status: TaskStatus) -> TaskTransition:
        """Move one task through the workflow, failing on an illegal move."""

        existing = self.get_task(task_id)
        transition = self.workflow.can_transition(existing.status, to_status)
        if not transition.valid:
            raise ValidationError(transition.reason or "Invalid transition")
        task = self.repository.update_task(
            task_id,
            {"status": to_status},
            expected_status=existing.status,
        )
        logger.info(
            "Task %s transitioned %s -> %s",
            task_id,
            existing.status.value,
            to_status.value,
        )
        return TaskTransition(task=task, transition=transition)

    def available_transitions(self, task_id: str) -> AvailableTransitions:
        task = self.get_task(task_id)
        return AvailableTransitions(
            current=task.status,
            allowed=self.workflow.allowed_transitions(task.status),
        )

    # Dependencies

    def add_dependency(self, task_id: str, depends_on_id: str) -> DependencyView:
        """Record that ``task_id`` cannot finish before ``depends_on_id``."""

        self.get_task(task_id)
        if self.repository.get_task(depends_on_id) is None:
            raise NotFoundError("Dependency task", depends_on_id)
        if task_id == depends_on_id:
            raise ValidationError("Task cannot depend on itself")
        if self.repository.has_dependency(task_id, depends_on_id):
            raise ValidationError("Dependency already exists")
        edge = self.repository.add_dependency(task_id, depends_on_id)
        logger.info("Dependency added: %s -> %s", task_id, depends_on_id)
        return edge

    def remove_dependency(self, task_id: str, depends_on_id: str) -> bool:
        self.get_task(task_id)
        removed = self.repository.remove_dependency(task_id, depends_on_id)
        if removed:
            logger.info("Dependency removed: %s -> %s", task_id, depends_on_id)
        return removed

    def dependencies_of(self, task_id: str) -> list[str]:
        self.get_task(task_id)
        return self.repository.dependencies_of(task_id)

    def dependents_of(self, task_id: str) -> list[str]:
        self.get_task(task_id)
        return self.repository.dependents_of(task_id)

    def blocked_tasks(self) -> list[TaskView]:
        return self.repository.blocked_tasks(project_id=self.session.current_project_id)

    def ready_tasks(self) -> list[TaskView]:
        return self.repository.ready_tasks(project_id=self.session.current_project_id)

    # Claims

    def claim_task(self, task_id: str, agent_id: str) -> ClaimResult:
        result = self.repository.claim_task(
            task_id,
            _require_agent(agent_id),
            check=self.workflow.can_transition,
        )
        if result.success:
            logger.info("Task %s claimed by %s", task_id, agent_id)
        else:
            logger.debug("Claim of %s by %s refused: %s", task_id, agent_id, result.message)
        return result

    def release_task(self, task_id: str, agent_id: str) -> ClaimResult:
        result = self.repository.release_task(task_id, _require_agent(agent_id))
        if result.success:
            logger.info("Task %s released by %s", task_id, agent_id)
        else:
            logger.debug("Release of %s by %s refused: %s", task_id, agent_id, result.message)
        return result

    # Bulk

    def create_tasks_bulk(self, payloads: Sequence[TaskCreate]) -> list[TaskView]:
        """Create every task or none, returning them in input order."""

        self._check_bulk_size(payloads, "Bulk create")
        if not payloads:
            return []
        items = []
        for payload in payloads:
            prepared = self._prepare_create(payload)
            items.append((_new_id(), prepared, _new_criteria(prepared.acceptance_criteria)))
        tasks = self.repository.create_tasks(items)
        logger.info("Bulk created %d tasks", len(tasks))
        return tasks

    def update_tasks_bulk(self, task_ids: Sequence[str], update: TaskUpdate) -> list[TaskView]:
        """Apply one field set to every id; ids that do not exist are skipped."""

        self._check_bulk_size(task_ids, "Bulk update")
        update.validate()
        if update.status is not UNSET:
            raise ValidationError("Bulk update cannot change status; use bulk transition")
        if update.version is not None:
            raise ValidationError("Bulk update does not accept an expected version")
        if not task_ids:
            return []
        changes = update.changes()
        if not changes:
            raise ValidationError("No fields to update")
        if changes.get("parent_id") is not None:
            parent_id = changes["parent_id"]
            if self.repository.get_task(parent_id) is None:
                raise NotFoundError("Parent task", parent_id)
        self._check_references(
            sprint_id=changes.get("sprint_id"),
            project_id=changes.get("project_id"),
        )
        if changes.get("context") is not None:
            ensure_context_size(changes["context"], max_bytes=self.context_max_bytes)
        tasks = self.repository.update_tasks(task_ids, changes)
        logger.info("Bulk updated %d of %d tasks", len(tasks), len(task_ids))
        return tasks

    def transition_tasks_bulk(
        self,
        task_ids: Sequence[str],
        to_status: TaskStatus,
        *,
        skip_invalid: bool = False,
    ) -> BulkTransitionResult:
        """Transition many tasks in one transaction.

        Strict mode raises the first failure and leaves every task untouched.
        With ``skip_invalid`` failures are reported per id and the valid moves
        are still applied.
        """

        self._check_bulk_size(task_ids, "Bulk transition")
        if not task_ids:
            return BulkTransitionResult()
        result = self.repository.transition_tasks(
            task_ids,
            to_status,
            check=self.workflow.can_transition,
            skip_invalid=skip_invalid,
        )
        logger.info(
            "Bulk transition to %s: %d updated, %d failed",
            to_status.value,
            len(result.updated),
            len(result.failed),
        )
        return result

    # Context

    def get_context(self, task_id: str) -> dict[str, Any]:
        return self.get_task(task_id).context

    def set_context(self, task_id: str, context: dict[str, Any]) -> TaskView:
        """Replace the whole context blob."""

        ensure_context_size(context, max_bytes=self.context_max_bytes)
        existing = self.get_task(task_id)
        return self.repository.update_task(
            task_id,
            {"context": context},
            expected_version=existing.version,
        )

    def merge_context(self, task_id: str, context: dict[str, Any]) -> TaskView:
        """Deep-merge ``context`` into the stored blob."""

        ensure_context_size(context, max_bytes=self.context_max_bytes)
        existing = self.get_task(task_id)
        merged = deep_merge(existing.context, context)
        ensure_context_size(merged, max_bytes=self.context_max_bytes, label="Merged context")
        return self.repository.update_task(
            task_id,
            {"context": merged},
            expected_version=existing.version,
        )

    # Acceptance criteria

    def verify_criterion(
        self,
        task_id: str,
        criterion_id: str,
        agent_id: str,
        evidence: str | None = None,
    ) -> VerificationResult:
        """Mark one criterion verified; verifying it again changes nothing."""

        if evidence is not None and len(evidence) > EVIDENCE_MAX_CHARS:
            raise ValidationError(f"Evidence exceeds {EVIDENCE_MAX_CHARS} characters")
        task = self.get_task(task_id)
        if not task.acceptance_criteria:
            raise ValidationError("Task has no acceptance criteria defined")
        criteria = list(task.acceptance_criteria)
        index = next(
            (pos for pos, item in enumerate(criteria) if item.criterion_id == criterion_id),
            None,
        )
        if index is None:
            raise NotFoundError("Criterion", criterion_id)

        if not criteria[index].verified:
            criteria[index] = replace(
                criteria[index],
                verified=True,
                verified_at=utc_now(),
                verified_by=_require_agent(agent_id),
                evidence=evidence,
            )
            task = self.repository.update_task(
                task_id,
                {"acceptance_criteria": criteria},
                expected_version=task.version,
            )
            logger.info("Criterion %s of task %s verified by %s", criterion_id, task_id, agent_id)

        verified = sum(1 for item in task.acceptance_criteria if item.verified)
        total = len(task.acceptance_criteria)
        return VerificationResult(
            task=task,
            criterion=task.acceptance_criteria[index],
            all_verified=verified == total,
            verified=verified,
            total=total,
        )

    def verification_status(self, task_id: str) -> VerificationStatus:
        task = self.get_task(task_id)
        criteria = task.acceptance_criteria
        verified = sum(1 for item in criteria if item.verified)
        return VerificationStatus(
            has_criteria=bool(criteria),
            criteria=criteria,
            all_verified=verified == len(criteria),
            verified=verified,
            total=len(criteria),
        )

    # Compound operations

    def start_task(self, payload: TaskCreate, agent_id: str) -> TaskView:
        """Create a task already claimed by ``agent_id`` and in progress."""

        agent_id = _require_agent(agent_id)
        prepared = self._prepare_create(payload)
        self._require_transition(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        task = self.repository.create_task(
            _new_id(),
            prepared,
            criteria=_new_criteria(prepared.acceptance_criteria),
            status=TaskStatus.IN_PROGRESS,
            agent_id=agent_id,
        )
        logger.info("Task started: %s by %s", task.task_id, agent_id)
        return task

    def finish_task(self, task_id: str, agent_id: str, summary: str | None = None) -> TaskView:
        """Complete a task the agent is working on, recording an optional summary."""

        task = self.get_task(task_id)
        if task.agent_id is not None and task.agent_id != agent_id:
            raise ConflictError(f"Task is claimed by another agent: {task.agent_id}")
        if task.status not in _FINISHABLE_STATUSES:
            raise ValidationError(
                f"Cannot finish task with status '{task.status.value}'. "
                "Task must be in_progress.",
            )
        self._require_transition(task.status, TaskStatus.COMPLETED)

        changes: dict[str, Any] = {"status": TaskStatus.COMPLETED}
        if summary:
            context = {**task.context, "completion_summary": summary}
            ensure_context_size(context, max_bytes=self.context_max_bytes)
            changes["context"] = context
        finished = self.repository.update_task(
            task_id,
            changes,
            expected_version=task.version,
        )
        logger.info("Task finished: %s by %s", task_id, agent_id)
        return finished

    # Trees

    def task_tree(self, task_id: str, max_depth: int | None = None) -> TaskTreeNode:
        root = self.get_task(task_id)
        children_of = group_children(self.repository.list_all_tasks())
        return build_tree(root, children_of, max_depth=self._depth(max_depth))

    def full_tree(self, max_depth: int | None = None) -> list[TaskTreeNode]:
        """Trees for every root task in the current project, archived roots excluded."""

        project_id = self.session.current_project_id
        tasks = self.repository.list_all_tasks(project_id=project_id)
        children_of = group_children(tasks)
        depth = self._depth(max_depth)
        return [
            build_tree(task, children_of, max_depth=depth)
            for task in tasks
            if task.parent_id is None and task.status != TaskStatus.ARCHIVED
        ]

    # Workspace

    def workspace_context(
        self,
        agent_id: str,
        *,
        include_completed: bool = False,
    ) -> WorkspaceContext:
        """Summarize what ``agent_id`` holds, what was abandoned and what is next."""

        current_project = None
        if self.session.current_project_id is not None:
            current_project = self.planning.get_project(self.session.current_project_id)

        in_progress = self.list_tasks(TaskListQuery(statuses=(TaskStatus.IN_PROGRESS,)))
        my_tasks = [task for task in in_progress if task.agent_id == agent_id]
        orphaned = [
            task
            for task in in_progress
            if task.agent_id is None
            or (task.agent_id != agent_id and task.agent_id.startswith(SESSION_AGENT_PREFIX))
        ]
        pending = self.list_tasks(
            TaskListQuery(statuses=(TaskStatus.PENDING,), limit=PENDING_PREVIEW_LIMIT),
        )

        recently_completed = None
        if include_completed:
            cutoff = utc_now() - RECENT_COMPLETED_WINDOW
            completed = self.list_tasks(
                TaskListQuery(statuses=(TaskStatus.COMPLETED,), limit=RECENT_COMPLETED_LIMIT),
            )
            recently_completed = [task for task in completed if task.updated_at > cutoff]

        return WorkspaceContext(
            agent_id=agent_id,
            current_project=current_project,
            my_tasks=my_tasks,
            orphaned_tasks=orphaned,
            pending_tasks=pending,
            recently_completed=recently_completed,
            suggested_actions=_suggested_actions(my_tasks, orphaned, pending),
        )

    # Internals

    def _prepare_create(self, payload: TaskCreate) -> TaskCreate:
        payload.validate()
        if payload.parent_id is not None and self.repository.get_task(payload.parent_id) is None:
            raise NotFoundError("Parent task", payload.parent_id)
        if payload.context:
            ensure_context_size(payload.context, max_bytes=self.context_max_bytes)
        if payload.project_id is None and self.session.current_project_id is not None:
            payload = replace(payload, project_id=self.session.current_project_id)
        self._check_references(sprint_id=payload.sprint_id, project_id=payload.project_id)
        return payload

    def _check_parent(self, task_id: str, parent_id: str | None) -> None:
        if parent_id is None:
            return
        if parent_id == task_id:
            raise ValidationError("Task cannot be its own parent")
        if self.repository.get_task(parent_id) is None:
            raise NotFoundError("Parent task", parent_id)
        parents = {task.task_id: task.parent_id for task in self.repository.list_all_tasks()}
        if would_create_cycle(task_id, parent_id, parents.get):
            raise ValidationError("Circular parent reference detected")

    def _check_references(self, *, sprint_id: str | None, project_id: str | None) -> None:
        if sprint_id is not None and self.planning.get_sprint(sprint_id) is None:
            raise NotFoundError("Sprint", sprint_id)
        if project_id is not None and self.planning.get_project(project_id) is None:
            raise NotFoundError("Project", project_id)

    def _require_transition(self, from_status: TaskStatus, to_status: TaskStatus) -> None:
        transition = self.workflow.can_transition(from_status, to_status)
        if not transition.valid:
            raise ValidationError(transition.reason or "Invalid transition")

    def _check_bulk_size(self, items: Sequence[Any], label: str) -> None:
        if len(items) > self.bulk_max_items:
            raise ValidationError(f"{label} limited to {self.bulk_max_items} tasks")

    def _scoped_query(self, query: TaskListQuery | None) -> TaskListQuery:
        query = query or TaskListQuery()
        query.validate()
        if query.project_id is None and self.session.current_project_id is not None:
            query = replace(query, project_id=self.session.current_project_id)
        return query

    def _depth(self, max_depth: int | None) -> int:
        depth = self.tree_max_depth if max_depth is None else max_depth
        if depth < 0:
            raise ValidationError("max_depth must be >= 0")
        return depth


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_criteria(descriptions: Sequence[str]) -> list[AcceptanceCriterion]:
    return [
        AcceptanceCriterion(criterion_id=_new_id(), description=description)
        for description in descriptions
    ]


def _require_agent(agent_id: str) -> str:
    agent_id = (agent_id or "").strip()
    if not agent_id:
        raise ValidationError("Agent id must not be empty")
    return agent_id


def _suggested_actions(
    my_tasks: Sequence[TaskView],
    orphaned: Sequence[TaskView],
    pending: Sequence[TaskView],
) -> list[str]:
    actions: list[str] = []
    if orphaned:
        actions.append(
            f"Resume {len(orphaned)} orphaned in_progress task(s) - they may need attention",
        )
    if my_tasks:
        actions.append(f"Continue working on {len(my_tasks)} task(s) you already claimed")
    elif pending:
        high_priority = [task for task in pending if task.priority in {Priority.P0, Priority.P1}]
        if high_priority:
            actions.append(
                "Start with high-priority pending tasks "
                f"({len(high_priority)} P0/P1 tasks available)",
            )
        else:
            actions.append(f"Pick a pending task to work on ({len(pending)} available)")
    else:
        actions.append("No pending tasks - create new tasks or check other projects")
    return actions
