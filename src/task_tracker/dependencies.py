"""Dependency graph checks over "task depends on prerequisite" edges."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable


def would_create_dependency_cycle(
    task_id: str,
    depends_on_id: str,
    dependencies_of: Callable[[str], Iterable[str]],
) -> bool:
    """Return True if adding ``task_id -> depends_on_id`` closes a cycle.

    Breadth-first search starts at the proposed prerequisite and follows
    existing depends-on edges forward. If it reaches ``task_id``, the
    prerequisite already (transitively) depends on the dependent task.
    """

    visited: set[str] = set()
    queue: deque[str] = deque([depends_on_id])
    while queue:
        current = queue.popleft()
        if current == task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(dependencies_of(current))
    return False


def adjacency(edges: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    """Build ``task_id -> [depends_on_id, ...]`` from stored edge pairs."""

    graph: dict[str, list[str]] = {}
    for task_id, depends_on_id in edges:
        graph.setdefault(task_id, []).append(depends_on_id)
    return graph
