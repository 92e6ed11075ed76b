"""Prompt rendering with Jinja2 templates.

Four fixed templates drive the language model:

- the **task** prompt given to a team member running one task;
- the **controller** prompt for the agent that manages sandboxes and catalogs;
- the **team analysis** prompt that turns a project description into a roster;
- the **sprint planning** prompt that turns a goal into a task graph.

Team member system prompts may themselves contain Jinja2 syntax and are
rendered with these variables:

- ``project``     : str -- project name
- ``workspace_id``: str -- the workspace the member works in
- ``workdir``     : str -- in-sandbox working directory
- ``role``        : str -- the member's role
- ``date``        : str -- current date (YYYY-MM-DD)

Example::

    You are the {{ role }} on {{ project }}. Keep everything under {{ workdir }}.
"""

from __future__ import annotations

from datetime import UTC, datetime

import jinja2

from crewbox.orchestrator.models.project import Project, Task, TeamMember

_env = jinja2.Environment(autoescape=False, trim_blocks=True, lstrip_blocks=True)  # noqa: S701

TASK_SYSTEM = _env.from_string(
    """\
{{ persona }}

You are working inside the sandbox workspace {{ workspace_id }}. Its working directory is {{ workdir }};
relative paths resolve against it. Act through your tools: `exec` runs shell commands, `file_write`
creates files and `file_read` reads them. Describing work without using tools does not complete a task.

When the task is finished, reply with a short summary of what you did and how you verified it.
If you cannot finish, say so plainly and start the reason with "Error:".
"""
)

CONTROLLER_SYSTEM = _env.from_string(
    """\
You operate the sandbox infrastructure of a software team. Workspaces are docker containers built from
a recipe (a Dockerfile) with a persistent volume mounted at {{ workdir }}.

Use your tools to create, rebuild and destroy workspaces, to edit and verify their recipes, and to keep
the template and custom tool catalogs tidy. Rebuild and test a recipe after changing it. Never destroy a
workspace the user did not ask you to remove.

Today is {{ date }}. Finish with a short summary of what changed.
"""
)

TASK_USER = _env.from_string(
    """\
Task: {{ task.title }}

{{ task.description }}
{% if completed %}

Already completed in this sprint:
{% for t in completed %}
- {{ t.title }}
{% endfor %}
{% endif %}
"""
)

TEAM_ANALYSIS = _env.from_string(
    """\
You assemble a small software team for a project.

Project: {{ project.name }}
Description:
{{ project.description or "(no description)" }}

Propose between 2 and 5 team members. Respond with a JSON array only, no prose. Each element:
{"role": "<short role slug, e.g. backend>", "name": "<display name>",
 "system_prompt": "<instructions for this member>", "capabilities": ["<tag>", ...]}
"""
)

SPRINT_PLANNING = _env.from_string(
    """\
You plan one sprint for a software project.

Project: {{ project.name }}
Description:
{{ project.description or "(no description)" }}

Sprint goal: {{ goal }}

Team:
{% for m in project.team %}
- {{ m.member_id }}: {{ m.name }} ({{ m.role }}){% if m.capabilities %} -- {{ m.capabilities | join(", ") }}{% endif %}

{% endfor %}
{% if previous %}

Earlier sprints:
{% for s in previous %}
- {{ s.goal }} [{{ s.status }}]
{% endfor %}
{% endif %}

Break the goal into concrete tasks that can each be finished with shell commands and file edits in a
sandbox. Respond with a JSON object only, no prose:
{"tasks": [{"id": "t1", "title": "...", "description": "...", "assigned_to": "<member id from the team>",
            "dependencies": ["<ids of tasks that must finish first>"]}]}
Task ids must be unique and dependencies may only name tasks in this list.
"""
)


def render_system_prompt(
    member: TeamMember,
    *,
    project: Project,
    workdir: str,
    extra_vars: dict[str, object] | None = None,
) -> str:
    """Render a member's persona, then wrap it in the task system prompt.

    If the persona contains no Jinja2 syntax it is used unchanged.
    """
    template_vars: dict[str, object] = {
        "project": project.name,
        "workspace_id": project.workspace_id,
        "workdir": workdir,
        "role": member.role,
        "date": datetime.now(tz=UTC).strftime("%Y-%m-%d"),
    }
    if extra_vars:
        template_vars.update(extra_vars)

    persona = member.system_prompt
    # Fast path: skip Jinja2 if no template syntax detected
    if "{{" in persona or "{%" in persona:
        persona = _env.from_string(persona).render(**template_vars)

    return TASK_SYSTEM.render(persona=persona, workspace_id=project.workspace_id, workdir=workdir)


def render_task_prompt(task: Task, completed: list[Task] | None = None) -> str:
    return TASK_USER.render(task=task, completed=completed or [])


def render_team_analysis(project: Project) -> str:
    return TEAM_ANALYSIS.render(project=project)


def render_sprint_planning(project: Project, goal: str) -> str:
    return SPRINT_PLANNING.render(project=project, goal=goal, previous=project.sprints)


def render_controller_prompt(workdir: str) -> str:
    return CONTROLLER_SYSTEM.render(workdir=workdir, date=datetime.now(tz=UTC).strftime("%Y-%m-%d"))
