"""Execution pipeline for the orchestrator.

This package contains the model-driven components:

- **completion**: Tool-calling loop over pydantic-ai's direct model interface
- **tools**: Typed model-facing tools (workspace tools, sandbox control tools)
- **prompt**: Prompt rendering (Jinja2 templates)
- **agent**: Task agent (one task, one team member, one workspace)
- **controller**: Conversational agent over the sandbox control tools
- **planning**: Team synthesis and sprint task-graph synthesis
- **scheduler**: Ready-set computation and task-graph validation
- **coordinator**: Project orchestration (create -> analyze -> plan -> dispatch)
"""
