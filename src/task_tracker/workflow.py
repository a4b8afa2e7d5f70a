"""Task status state machine with pluggable transition tables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from task_tracker.models import TaskStatus, TransitionResult

_S = TaskStatus

STANDARD_TRANSITIONS: Mapping[TaskStatus, tuple[TaskStatus, ...]] = {
    _S.PENDING: (_S.IN_PROGRESS, _S.BLOCKED, _S.ARCHIVED),
    _S.IN_PROGRESS: (_S.PENDING, _S.COMPLETED, _S.BLOCKED, _S.ARCHIVED),
    _S.BLOCKED: (_S.PENDING, _S.IN_PROGRESS, _S.ARCHIVED),
    _S.COMPLETED: (_S.IN_PROGRESS, _S.ARCHIVED),
    _S.ARCHIVED: (),
}

# Tasks may skip verification when there is nothing to verify.
VERIFICATION_TRANSITIONS: Mapping[TaskStatus, tuple[TaskStatus, ...]] = {
    _S.PENDING: (_S.IN_PROGRESS, _S.BLOCKED, _S.ARCHIVED),
    _S.IN_PROGRESS: (_S.PENDING, _S.VERIFICATION, _S.COMPLETED, _S.BLOCKED, _S.ARCHIVED),
    _S.VERIFICATION: (_S.IN_PROGRESS, _S.COMPLETED, _S.BLOCKED, _S.ARCHIVED),
    _S.BLOCKED: (_S.PENDING, _S.IN_PROGRESS, _S.ARCHIVED),
    _S.COMPLETED: (_S.IN_PROGRESS, _S.ARCHIVED),
    _S.ARCHIVED: (),
}


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Stateless lookup over one static transition table."""

    name: str
    transitions: Mapping[TaskStatus, tuple[TaskStatus, ...]]

    def can_transition(self, from_status: TaskStatus, to_status: TaskStatus) -> TransitionResult:
        if from_status == to_status:
            return TransitionResult(
                valid=False,
                from_status=from_status,
                to_status=to_status,
                reason=f"Task is already in '{to_status.value}' status",
            )

        allowed = self.allowed_transitions(from_status)
        if to_status not in allowed:
            allowed_text = ", ".join(status.value for status in allowed) or "none"
            return TransitionResult(
                valid=False,
                from_status=from_status,
                to_status=to_status,
                reason=(
                    f"Cannot transition from '{from_status.value}' to '{to_status.value}'. "
                    f"Allowed: {allowed_text}"
                ),
            )
        return TransitionResult(valid=True, from_status=from_status, to_status=to_status)

    def allowed_transitions(self, from_status: TaskStatus) -> tuple[TaskStatus, ...]:
        return self.transitions.get(from_status, ())

    def statuses(self) -> tuple[TaskStatus, ...]:
        return tuple(self.transitions)

    def describe(self) -> dict[str, list[str]]:
        """Return the table as plain strings for display."""

        return {
            source.value: [target.value for target in targets]
            for source, targets in self.transitions.items()
        }


STANDARD_WORKFLOW = WorkflowDefinition(name="standard", transitions=STANDARD_TRANSITIONS)
VERIFICATION_WORKFLOW = WorkflowDefinition(
    name="verification",
    transitions=VERIFICATION_TRANSITIONS,
)

_WORKFLOWS = {
    STANDARD_WORKFLOW.name: STANDARD_WORKFLOW,
    VERIFICATION_WORKFLOW.name: VERIFICATION_WORKFLOW,
}


def get_workflow(name: str) -> WorkflowDefinition:
    """Resolve a configured workflow by name."""

    try:
        return _WORKFLOWS[name.strip().lower()]
    except KeyError as error:
        raise ValueError(
            f"Unknown workflow: {name!r}. Expected one of {', '.join(_WORKFLOWS)}.",
        ) from error
