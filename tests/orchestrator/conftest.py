"""Shared fixtures for orchestrator tests.

``FakeDriver`` replaces the docker CLI with in-memory volumes, images and
containers.  A recipe builds when its first instruction is ``FROM`` and it
contains no ``RUN false``.  Commands run through a tiny interpreter that
understands ``echo``, ``cat``, ``ls``, ``mkdir``, ``exit`` and interpreter
invocations of script files (``sh`` scripts are interpreted line by line);
anything else exits 127 like a missing binary.

``crew_model`` is a scripted language model that plays every role the
coordinator needs: team analysis, sprint planning and task execution.
"""

from __future__ import annotations

import asyncio
import json
import posixpath
import shlex
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from crewbox.orchestrator.app import create_app
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.models.workspace import BuildResult, ExecResult
from crewbox.orchestrator.sandbox.driver import ContainerDriver, ContainerError
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry
from crewbox.orchestrator.services import Services, create_services
from crewbox.orchestrator.settings import CrewSettings
from crewbox.orchestrator.store.local import MemoryRecordStore

# ---------------------------------------------------------------------------
# Fake container engine
# ---------------------------------------------------------------------------


@dataclass
class FakeContainer:
    image: str
    volume: str
    network_enabled: bool
    running: bool = False


class FakeDriver(ContainerDriver):
    def __init__(self, workdir: str = "/workspace") -> None:
        super().__init__("fake-docker", workdir=workdir)
        self.volumes: dict[str, dict[str, str]] = {}
        self.images: dict[str, str] = {}
        self.containers: dict[str, FakeContainer] = {}
        self.calls: list[tuple[str, str]] = []
        self.seeded: list[str | None] = []
        self.exec_results: dict[str, ExecResult] = {}
        self.exec_gate: asyncio.Event | None = None
        self.build_gate: asyncio.Event | None = None

    # -- Volumes -------------------------------------------------------------

    async def create_volume(self, name: str) -> None:
        self.calls.append(("volume create", name))
        self.volumes.setdefault(name, {})

    async def remove_volume(self, name: str) -> None:
        self.calls.append(("volume rm", name))
        self.volumes.pop(name, None)

    # -- Images --------------------------------------------------------------

    async def build_image(self, recipe: str, tag: str, *, seed_volume: str | None = None) -> BuildResult:
        self.calls.append(("build", tag))
        self.seeded.append(seed_volume)
        if self.build_gate is not None:
            await self.build_gate.wait()
        lines = [ln.strip() for ln in recipe.splitlines() if ln.strip() and not ln.strip().startswith("#")]
        if not lines or not lines[0].upper().startswith("FROM "):
            return BuildResult(success=False, log="ERROR: failed to parse Dockerfile: no FROM instruction")
        if "RUN false" in lines:
            return BuildResult(success=False, log="ERROR: process \"/bin/sh -c false\" did not complete successfully")
        self.images[tag] = recipe
        return BuildResult(success=True, image_id=f"sha256:{len(self.images):04d}", log=f"Successfully tagged {tag}")

    async def remove_image(self, image: str) -> None:
        self.calls.append(("rmi", image))
        self.images.pop(image, None)

    # -- Containers ----------------------------------------------------------

    async def create_container(self, image: str, name: str, volume: str, *, network_enabled: bool = False) -> str:
        self.calls.append(("create", name))
        if name in self.containers:
            raise ContainerError("create", ExecResult(stderr=f"Conflict. The name {name} is already in use", code=1))
        if image not in self.images:
            raise ContainerError("create", ExecResult(stderr=f"No such image: {image}", code=1))
        self.containers[name] = FakeContainer(image=image, volume=volume, network_enabled=network_enabled)
        return f"cid-{name}"

    async def start_container(self, name: str) -> None:
        self.calls.append(("start", name))
        self._require(name, "start").running = True

    async def stop_container(self, name: str) -> None:
        self.calls.append(("stop", name))
        if name in self.containers:
            self.containers[name].running = False

    async def remove_container(self, name: str) -> None:
        self.calls.append(("rm", name))
        self.containers.pop(name, None)

    async def is_running(self, name: str) -> bool:
        container = self.containers.get(name)
        return container is not None and container.running

    # -- Exec & files --------------------------------------------------------

    async def exec(self, name: str, command: str, *, timeout: float | None = None) -> ExecResult:
        self.calls.append(("exec", command))
        container = self.containers.get(name)
        if container is None or not container.running:
            return ExecResult(stderr=f"Error response from daemon: container {name} is not running", code=1)
        if self.exec_gate is not None:
            await self.exec_gate.wait()
        if command in self.exec_results:
            return self.exec_results[command]
        return self._interpret(self.volumes[container.volume], command)

    async def copy_to(self, name: str, local_path: str | Path, container_path: str) -> None:
        container = self._require(name, "cp")
        self.volumes[container.volume][container_path] = Path(local_path).read_text(encoding="utf-8")

    async def copy_from(self, name: str, container_path: str, local_path: str | Path) -> None:
        files = self.volumes[self._require(name, "cp").volume]
        if container_path not in files:
            missing = ExecResult(stderr=f"Could not find the file {container_path} in container {name}", code=1)
            raise ContainerError("cp", missing)
        Path(local_path).write_text(files[container_path], encoding="utf-8")

    # -- Helpers -------------------------------------------------------------

    def _require(self, name: str, operation: str) -> FakeContainer:
        container = self.containers.get(name)
        if container is None:
            raise ContainerError(operation, ExecResult(stderr=f"No such container: {name}", code=1))
        return container

    def _interpret(self, files: dict[str, str], command: str) -> ExecResult:
        argv = shlex.split(command)
        if not argv:
            return ExecResult()
        prog, args = argv[0], argv[1:]
        if prog == "echo":
            return ExecResult(stdout=" ".join(args) + "\n")
        if prog == "exit":
            return ExecResult(code=int(args[0]) if args else 0)
        if prog == "mkdir":
            return ExecResult()
        if prog == "ls":
            listing = "".join(f"{posixpath.relpath(p, self.workdir)}\n" for p in sorted(files))
            return ExecResult(stdout=listing)
        if prog in ("cat", "sh", "python3", "node") and args:
            path = posixpath.join(self.workdir, args[0])
            if path not in files:
                return ExecResult(stderr=f"{prog}: {args[0]}: No such file or directory", code=2)
            if prog == "cat":
                return ExecResult(stdout=files[path])
            if prog == "sh":
                return self._run_script(files, files[path])
            return ExecResult(stdout=f"{prog} ran {args[0]}\n")
        return ExecResult(stderr=f"sh: 1: {prog}: not found", code=127)

    def _run_script(self, files: dict[str, str], script: str) -> ExecResult:
        stdout = ""
        for line in script.splitlines():
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            result = self._interpret(files, line)
            stdout += result.stdout
            if not result.ok:
                return ExecResult(stdout=stdout, stderr=result.stderr, code=result.code)
        return ExecResult(stdout=stdout)


class FakeClock:
    """Manually advanced clock for access-time and TTL tests."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Scripted language model
# ---------------------------------------------------------------------------

TEAM_RESPONSE = json.dumps([
    {
        "role": "backend",
        "name": "Bea",
        "system_prompt": "You build the backend of {{ project }}.",
        "capabilities": ["python"],
    },
    {"role": "qa", "name": "Quinn", "system_prompt": "You test everything.", "capabilities": ["pytest"]},
])

SPRINT_RESPONSE = json.dumps({
    "tasks": [
        {"id": "t1", "title": "Write app", "description": "Create app.py", "assigned_to": "backend"},
        {
            "id": "t2",
            "title": "Test app",
            "description": "Run the test suite",
            "assigned_to": "qa",
            "dependencies": ["t1"],
        },
    ]
})


def user_prompt(messages: list[ModelMessage]) -> str:
    """Text of the first user prompt in a conversation."""
    for message in messages:
        if isinstance(message, ModelRequest):
            for part in message.parts:
                if isinstance(part, UserPromptPart) and isinstance(part.content, str):
                    return part.content
    return ""


def _crew(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
    last = messages[-1]
    if isinstance(last, ModelRequest) and any(isinstance(p, ToolReturnPart) for p in last.parts):
        return ModelResponse(parts=[TextPart(content="Finished the task and checked the result.")])
    prompt = user_prompt(messages)
    if prompt.startswith("You assemble a small software team"):
        return ModelResponse(parts=[TextPart(content=f"Here is the team:\n{TEAM_RESPONSE}")])
    if prompt.startswith("You plan one sprint"):
        return ModelResponse(parts=[TextPart(content=SPRINT_RESPONSE)])
    title = prompt.splitlines()[0].removeprefix("Task: ")
    return ModelResponse(parts=[ToolCallPart(tool_name="exec", args={"command": f"echo {title}"}, tool_call_id="c1")])


@pytest.fixture
def crew_model() -> FunctionModel:
    return FunctionModel(_crew)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def templates(store: MemoryRecordStore, clock: FakeClock) -> TemplateCatalog:
    return TemplateCatalog(store, clock=clock)


@pytest.fixture
def workspaces(
    driver: FakeDriver,
    templates: TemplateCatalog,
    store: MemoryRecordStore,
    clock: FakeClock,
) -> WorkspaceRegistry:
    return WorkspaceRegistry(driver, templates, store, max_running=2, max_total=3, idle_ttl=3600, clock=clock)


@pytest.fixture
def settings() -> CrewSettings:
    return CrewSettings(persist=False, max_running_workspaces=3, max_total_workspaces=6, task_max_iterations=5)


@pytest.fixture
def services(
    settings: CrewSettings,
    driver: FakeDriver,
    store: MemoryRecordStore,
    crew_model: FunctionModel,
) -> Services:
    return create_services(settings, driver=driver, model=crew_model, store=store)


@pytest.fixture
async def client(services: Services) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to an app with a prebuilt service graph.

    The app lifespan does NOT run under ``ASGITransport``, so the services
    are handed to ``create_app`` directly.
    """
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
