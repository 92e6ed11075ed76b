import click


@click.group()
def main() -> None:
    """Crewbox - sandboxed agent crews that plan and execute sprints."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from CREW_HOST or 127.0.0.1).")
@click.option("--port", default=None, type=int, help="Bind port (default: from CREW_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the orchestrator API server."""
    import uvicorn

    from crewbox.orchestrator.settings import CrewSettings

    settings = CrewSettings()

    uvicorn.run(
        "crewbox.orchestrator.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Drain timeout plus a buffer for post-drain cleanup.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 30,
    )


@main.command()
@click.option("--data-root", default=None, help="Data directory (default: from CREW_DATA_ROOT).")
def status(data_root: str | None) -> None:
    """Summarise persisted workspaces and projects."""
    import asyncio

    from crewbox.orchestrator.execution.scheduler import sprint_progress
    from crewbox.orchestrator.models.project import Project
    from crewbox.orchestrator.models.workspace import Workspace
    from crewbox.orchestrator.settings import CrewSettings
    from crewbox.orchestrator.store.local import LocalRecordStore

    settings = CrewSettings()
    store = LocalRecordStore(data_root or settings.data_root, prefix=settings.data_prefix)

    async def load() -> tuple[list[Workspace], list[Project]]:
        return await store.load_all("workspaces", Workspace), await store.load_all("projects", Project)

    workspaces, projects = asyncio.run(load())

    live = [ws for ws in workspaces if ws.is_live]
    click.echo(f"Workspaces: {len(live)} live ({len(workspaces) - len(live)} destroyed)")
    for ws in sorted(live, key=lambda w: w.created_at):
        click.echo(f"  {ws.workspace_id}  {ws.status:<9} {ws.name}")

    click.echo(f"Projects: {len(projects)}")
    for project in sorted(projects, key=lambda p: p.created_at):
        click.echo(f"  {project.project_id}  {project.status:<10} {project.name} (team={len(project.team)})")
        for sprint in project.sprints:
            progress = sprint_progress(sprint)
            click.echo(
                f"    {sprint.sprint_id}  {sprint.status:<9} {progress.done}/{progress.total} done"
                f" ({progress.failed} failed)  {sprint.goal}"
            )


if __name__ == "__main__":
    main()
