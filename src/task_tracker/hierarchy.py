"""Parent/child hierarchy validation and tree assembly."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

from task_tracker.models import TaskTreeNode, TaskView


def would_create_cycle(
    task_id: str,
    new_parent_id: str,
    parent_of: Callable[[str], str | None],
) -> bool:
    """Return True if making ``new_parent_id`` the parent of ``task_id`` closes a loop.

    Walks the ancestor chain upward from the proposed parent. Reaching
    ``task_id`` means the task would become its own ancestor. Revisiting a
    node means the stored graph already holds an unrelated loop; the walk
    stops there and reports no new cycle.
    """

    if task_id == new_parent_id:
        return True

    visited: set[str] = set()
    current: str | None = new_parent_id
    while current is not None:
        if current == task_id:
            return True
        if current in visited:
            return False
        visited.add(current)
        current = parent_of(current)
    return False


def group_children(tasks: Sequence[TaskView]) -> dict[str, list[TaskView]]:
    """Index tasks by parent id, keeping creation order within each parent."""

    children: dict[str, list[TaskView]] = {}
    for task in sorted(tasks, key=lambda item: item.created_at):
        if task.parent_id is not None:
            children.setdefault(task.parent_id, []).append(task)
    return children


def build_tree(
    root: TaskView,
    children_of: Mapping[str, Sequence[TaskView]],
    *,
    max_depth: int,
) -> TaskTreeNode:
    """Assemble a nested view down to ``max_depth`` levels below ``root``."""

    return _build_node(root, children_of, depth=0, max_depth=max_depth, path={root.task_id})


def _build_node(
    task: TaskView,
    children_of: Mapping[str, Sequence[TaskView]],
    *,
    depth: int,
    max_depth: int,
    path: set[str],
) -> TaskTreeNode:
    node = TaskTreeNode(task=task)
    if depth >= max_depth:
        return node
    for child in children_of.get(task.task_id, ()):
        # A corrupt parent loop must not recurse forever.
        if child.task_id in path:
            continue
        node.children.append(
            _build_node(
                child,
                children_of,
                depth=depth + 1,
                max_depth=max_depth,
                path=path | {child.task_id},
            ),
        )
    return node
