"""Unit tests for the sprint scheduler."""

from __future__ import annotations

from crewbox.orchestrator.execution.scheduler import (
    is_sprint_complete,
    ready_tasks,
    sprint_progress,
    unmet_dependencies,
    validate_task_graph,
)
from crewbox.orchestrator.models.enums import TaskStatus
from crewbox.orchestrator.models.project import Sprint, Task


def _task(task_id: str, *deps: str, status: TaskStatus = TaskStatus.PENDING, member: str = "m1") -> Task:
    return Task(task_id=task_id, title=task_id.upper(), assigned_to=member, dependencies=list(deps), status=status)


def _sprint(*tasks: Task) -> Sprint:
    return Sprint(sprint_id="sprint-1", goal="goal", tasks=list(tasks))


def _ids(tasks: list[Task]) -> list[str]:
    return [t.task_id for t in tasks]


def test_chain_becomes_ready_in_order() -> None:
    sprint = _sprint(_task("t1"), _task("t2", "t1"))
    assert _ids(ready_tasks(sprint)) == ["t1"]

    sprint.tasks[0].status = TaskStatus.DONE
    assert _ids(ready_tasks(sprint)) == ["t2"]


def test_failed_dependency_blocks() -> None:
    sprint = _sprint(_task("t1", status=TaskStatus.FAILED), _task("t2", "t1"))
    assert ready_tasks(sprint) == []
    assert unmet_dependencies(sprint, sprint.tasks[1]) == ["t1"]


def test_dangling_dependency_is_never_ready() -> None:
    sprint = _sprint(_task("t1", "ghost"), _task("t2"))
    assert _ids(ready_tasks(sprint)) == ["t2"]
    assert unmet_dependencies(sprint, sprint.tasks[0]) == ["ghost"]


def test_only_pending_tasks_are_ready() -> None:
    sprint = _sprint(
        _task("t1", status=TaskStatus.IN_PROGRESS),
        _task("t2", status=TaskStatus.DONE),
        _task("t3", status=TaskStatus.FAILED),
        _task("t4"),
    )
    assert _ids(ready_tasks(sprint)) == ["t4"]


def test_ready_set_is_stable() -> None:
    sprint = _sprint(_task("t1"), _task("t2"), _task("t3", "t1", "t2"))
    assert ready_tasks(sprint) == ready_tasks(sprint)
    assert _ids(ready_tasks(sprint)) == ["t1", "t2"]


def test_completion_and_progress() -> None:
    assert is_sprint_complete(_sprint())
    assert sprint_progress(_sprint()).percent == 0

    sprint = _sprint(_task("t1", status=TaskStatus.DONE), _task("t2", status=TaskStatus.FAILED), _task("t3"))
    assert not is_sprint_complete(sprint)
    progress = sprint_progress(sprint)
    assert (progress.done, progress.failed, progress.total, progress.percent) == (1, 1, 3, 33)

    sprint.tasks[2].status = TaskStatus.DONE
    assert is_sprint_complete(sprint)


# ---------------------------------------------------------------------------
# validate_task_graph
# ---------------------------------------------------------------------------


def test_valid_graph() -> None:
    tasks = [_task("t1"), _task("t2", "t1"), _task("t3", "t1", "t2")]
    assert validate_task_graph(tasks, ["m1"]) == []


def test_graph_problems_are_reported() -> None:
    tasks = [_task("t1", "t1"), _task("t2", "ghost"), _task("t2", member="nobody")]
    problems = validate_task_graph(tasks, ["m1"])

    assert any("duplicate task ids: t2" in p for p in problems)
    assert any("t1 depends on itself" in p for p in problems)
    assert any("unknown task(s): ghost" in p for p in problems)
    assert any("unknown member nobody" in p for p in problems)


def test_cycle_detected() -> None:
    tasks = [_task("t1", "t3"), _task("t2", "t1"), _task("t3", "t2")]
    problems = validate_task_graph(tasks)
    assert len(problems) == 1
    assert problems[0].startswith("dependency cycle: ")
    path = problems[0].removeprefix("dependency cycle: ").split(" -> ")
    assert path[0] == path[-1]
    assert set(path) == {"t1", "t2", "t3"}


def test_members_not_checked_without_roster() -> None:
    assert validate_task_graph([_task("t1", member="anyone")]) == []


def test_long_chains_are_checked_without_recursion() -> None:
    chain = [_task("t0")] + [_task(f"t{i}", f"t{i - 1}") for i in range(1, 5000)]
    assert validate_task_graph(chain) == []

    chain[0] = _task("t0", "t4999")
    (problem,) = validate_task_graph(chain)
    path = problem.removeprefix("dependency cycle: ").split(" -> ")
    assert len(path) == 5001
    assert path[0] == path[-1]
