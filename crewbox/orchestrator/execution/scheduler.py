"""Sprint scheduler: pure functions over a sprint's task list.

Nothing here suspends or mutates.  The coordinator asks for the ready set,
dispatches it, writes outcomes back to the project store and asks again.

Dependency satisfaction is deliberately strict: a dependency id that names
no task in the sprint never resolves to ``done``, so the depending task is
never ready.  ``validate_task_graph`` exists to reject such plans up front.
"""

from __future__ import annotations

from collections.abc import Iterable

from crewbox.orchestrator.models.enums import TaskStatus
from crewbox.orchestrator.models.project import Sprint, SprintProgress, Task

_FINISHED = frozenset({TaskStatus.DONE, TaskStatus.FAILED})


def ready_tasks(sprint: Sprint) -> list[Task]:
    """Pending tasks whose every dependency is a task in this sprint with status ``done``.

    Order follows the sprint's task order.
    """
    status_by_id = {t.task_id: t.status for t in sprint.tasks}
    return [
        task
        for task in sprint.tasks
        if task.status == TaskStatus.PENDING
        and all(status_by_id.get(dep) == TaskStatus.DONE for dep in task.dependencies)
    ]


def unmet_dependencies(sprint: Sprint, task: Task) -> list[str]:
    """Dependency ids of *task* that are not (yet) ``done``, dangling ids included."""
    status_by_id = {t.task_id: t.status for t in sprint.tasks}
    return [dep for dep in task.dependencies if status_by_id.get(dep) != TaskStatus.DONE]


def is_sprint_complete(sprint: Sprint) -> bool:
    """Every task is ``done`` or ``failed``.  An empty sprint is complete."""
    return all(task.status in _FINISHED for task in sprint.tasks)


def sprint_progress(sprint: Sprint) -> SprintProgress:
    return SprintProgress(
        done=sum(1 for t in sprint.tasks if t.status == TaskStatus.DONE),
        failed=sum(1 for t in sprint.tasks if t.status == TaskStatus.FAILED),
        total=len(sprint.tasks),
    )


def validate_task_graph(tasks: list[Task], member_ids: Iterable[str] | None = None) -> list[str]:
    """Return human-readable problems with a task graph; empty when it is sound.

    Checks duplicate ids, self-dependencies, dependencies on unknown tasks,
    assignees missing from *member_ids* (when given) and dependency cycles.
    """
    problems: list[str] = []
    ids = [t.task_id for t in tasks]
    known = set(ids)

    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        problems.append(f"duplicate task ids: {', '.join(duplicates)}")

    members = set(member_ids) if member_ids is not None else None
    for task in tasks:
        if task.task_id in task.dependencies:
            problems.append(f"task {task.task_id} depends on itself")
        dangling = [d for d in task.dependencies if d not in known]
        if dangling:
            problems.append(f"task {task.task_id} depends on unknown task(s): {', '.join(dangling)}")
        if members is not None and task.assigned_to not in members:
            problems.append(f"task {task.task_id} is assigned to unknown member {task.assigned_to}")

    cycle = _find_cycle(tasks)
    if cycle:
        problems.append(f"dependency cycle: {' -> '.join(cycle)}")
    return problems


def _find_cycle(tasks: list[Task]) -> list[str] | None:
    """Iterative depth-first search for a cycle; returns it as a closed path of ids."""
    edges = {t.task_id: [d for d in t.dependencies if d != t.task_id] for t in tasks}
    done: set[str] = set()
    for root in edges:
        if root in done:
            continue
        path = [root]
        on_path = {root: 0}
        pending = [iter(edges[root])]
        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                pending.pop()
                node = path.pop()
                del on_path[node]
                done.add(node)
            elif dep in on_path:
                return [*path[on_path[dep] :], dep]
            elif dep not in done and dep in edges:
                on_path[dep] = len(path)
                path.append(dep)
                pending.append(iter(edges[dep]))
    return None
