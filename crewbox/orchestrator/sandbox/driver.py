"""Container operations driver -- a thin, stateless wrapper over the docker CLI.

Every operation spawns one ``docker`` process with an argument vector (never
a host shell string).  Commands *inside* a container run through ``sh -c``.

Failure conventions:

- ``exec`` never raises: non-zero exit, timeout and output overflow are all
  reported in the returned ``ExecResult``.
- ``build_image`` never raises: failure is a ``BuildResult`` with the log.
- ``create_*``/``start_container``/``copy_*`` raise ``ContainerError``.
- ``stop``/``remove`` operations are best effort and only log failures, since
  they are used for teardown of things that may already be gone.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from anyio import to_thread
from loguru import logger

from crewbox.orchestrator.models.workspace import BuildResult, ExecResult

if TYPE_CHECKING:
    from crewbox.orchestrator.settings import CrewSettings

EXIT_TIMEOUT = 124
"""Exit code reported when a command is abandoned after its timeout."""

EXIT_OUTPUT_LIMIT = 125
"""Exit code reported when a command's output exceeded the buffer cap."""

EXIT_NOT_EXECUTABLE = 127

_READ_CHUNK = 64 * 1024


class ContainerError(RuntimeError):
    """A container engine operation that must succeed did not."""

    def __init__(self, operation: str, result: ExecResult) -> None:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.code}"
        super().__init__(f"docker {operation} failed: {detail}")
        self.operation = operation
        self.result = result


@dataclass(frozen=True)
class ContainerLimits:
    memory: str = "512m"
    cpus: str = "1.0"
    exec_timeout: float = 60.0
    build_timeout: float = 300.0
    max_output_bytes: int = 10 * 1024 * 1024


class ContainerDriver:
    """Issues container engine operations.  Owns no state."""

    def __init__(
        self,
        docker_bin: str = "docker",
        *,
        limits: ContainerLimits | None = None,
        workdir: str = "/workspace",
        helper_image: str = "alpine:latest",
    ) -> None:
        self.docker_bin = docker_bin
        self.limits = limits or ContainerLimits()
        self.workdir = workdir
        self.helper_image = helper_image

    @classmethod
    def from_settings(cls, settings: CrewSettings) -> ContainerDriver:
        return cls(
            settings.docker_bin,
            limits=ContainerLimits(
                memory=settings.container_memory,
                cpus=settings.container_cpus,
                exec_timeout=settings.exec_timeout,
                build_timeout=settings.build_timeout,
                max_output_bytes=settings.max_output_bytes,
            ),
            workdir=settings.workdir,
            helper_image=settings.helper_image,
        )

    # -- Volumes ---------------------------------------------------------------

    async def create_volume(self, name: str) -> None:
        await self._checked("volume create", ["volume", "create", name])

    async def remove_volume(self, name: str) -> None:
        await self._best_effort("volume rm", ["volume", "rm", name])

    # -- Images ----------------------------------------------------------------

    async def build_image(self, recipe: str, tag: str, *, seed_volume: str | None = None) -> BuildResult:
        """Build an image from recipe text.

        When *seed_volume* is given, the volume's current contents are copied
        into the build context first (through a throwaway helper container),
        so ``COPY`` instructions can reference workspace files.
        """
        build_dir = Path(await to_thread.run_sync(partial(tempfile.mkdtemp, prefix="crewbox-build-")))
        try:
            if seed_volume:
                await self._seed_context(seed_volume, build_dir)

            # Written last so a stray Dockerfile in the volume never wins.
            await to_thread.run_sync(partial((build_dir / "Dockerfile").write_text, recipe, encoding="utf-8"))

            result = await self._run(
                ["build", "-t", tag, str(build_dir)],
                timeout=self.limits.build_timeout,
            )
            log = result.stdout + (f"\n{result.stderr}" if result.stderr else "")
            if not result.ok:
                logger.info("Driver: build of {} failed (exit={})", tag, result.code)
                return BuildResult(success=False, log=log)

            inspect = await self._run(["image", "inspect", "-f", "{{.Id}}", tag])
            image_id = inspect.stdout.strip() if inspect.ok else ""
            return BuildResult(success=True, image_id=image_id or tag, log=log)
        finally:
            await to_thread.run_sync(partial(shutil.rmtree, build_dir, ignore_errors=True))

    async def remove_image(self, image: str) -> None:
        await self._best_effort("rmi", ["rmi", "-f", image])

    async def _seed_context(self, volume: str, build_dir: Path) -> None:
        helper = f"crewbox-seed-{uuid.uuid4().hex[:12]}"
        created = await self._run(["create", "--name", helper, "-v", f"{volume}:/source", self.helper_image])
        if not created.ok:
            # Volume missing or empty is fine; the build just gets no extra context.
            logger.debug("Driver: could not seed build context from {}: {}", volume, created.stderr.strip())
            return
        try:
            await self._best_effort("cp", ["cp", f"{helper}:/source/.", f"{build_dir}/"])
        finally:
            await self._best_effort("rm", ["rm", "-f", helper])

    # -- Containers ------------------------------------------------------------

    async def create_container(self, image: str, name: str, volume: str, *, network_enabled: bool = False) -> str:
        """Create (not start) a long-lived container and return its id."""
        args = [
            "create",
            "--name",
            name,
            f"--memory={self.limits.memory}",
            f"--cpus={self.limits.cpus}",
        ]
        if not network_enabled:
            args.append("--network=none")
        args += [
            f"--workdir={self.workdir}",
            "--mount",
            f"source={volume},target={self.workdir}",
            image,
            "sleep",
            "infinity",
        ]
        result = await self._checked("create", args)
        return result.stdout.strip()

    async def start_container(self, name: str) -> None:
        await self._checked("start", ["start", name])

    async def stop_container(self, name: str) -> None:
        await self._best_effort("stop", ["stop", "-t", "5", name])

    async def remove_container(self, name: str) -> None:
        await self._best_effort("rm", ["rm", "-f", name])

    async def is_running(self, name: str) -> bool:
        result = await self._run(["inspect", "-f", "{{.State.Running}}", name])
        return result.ok and result.stdout.strip() == "true"

    # -- Exec & files ----------------------------------------------------------

    async def exec(self, name: str, command: str, *, timeout: float | None = None) -> ExecResult:
        """Run *command* with ``sh -c`` in the container's working directory."""
        return await self._run(
            ["exec", "-w", self.workdir, name, "sh", "-c", command],
            timeout=timeout or self.limits.exec_timeout,
        )

    async def copy_to(self, name: str, local_path: str | Path, container_path: str) -> None:
        await self._checked("cp", ["cp", str(local_path), f"{name}:{container_path}"])

    async def copy_from(self, name: str, container_path: str, local_path: str | Path) -> None:
        await self._checked("cp", ["cp", f"{name}:{container_path}", str(local_path)])

    # -- Process plumbing ------------------------------------------------------

    async def _checked(self, operation: str, args: list[str]) -> ExecResult:
        result = await self._run(args)
        if not result.ok:
            raise ContainerError(operation, result)
        return result

    async def _best_effort(self, operation: str, args: list[str]) -> None:
        result = await self._run(args)
        if not result.ok:
            logger.debug("Driver: docker {} ignored failure: {}", operation, result.stderr.strip())

    async def _run(self, args: list[str], *, timeout: float | None = None) -> ExecResult:
        """Spawn ``docker *args`` with a timeout and a cap on captured output."""
        timeout = timeout or self.limits.exec_timeout
        limit = self.limits.max_output_bytes
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_bin,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return ExecResult(stderr=f"{self.docker_bin}: {exc}", code=EXIT_NOT_EXECUTABLE)

        stdout = bytearray()
        stderr = bytearray()
        overflow = False

        async def pump(stream: asyncio.StreamReader, sink: bytearray) -> None:
            nonlocal overflow
            while chunk := await stream.read(_READ_CHUNK):
                if overflow:
                    continue  # keep draining so the process can exit
                sink.extend(chunk)
                if len(stdout) + len(stderr) > limit:
                    overflow = True
                    _kill(proc)

        try:
            await asyncio.wait_for(
                asyncio.gather(pump(proc.stdout, stdout), pump(proc.stderr, stderr), proc.wait()),
                timeout=timeout,
            )
        except TimeoutError:
            _kill(proc)
            with contextlib.suppress(ProcessLookupError):
                await proc.wait()
            return ExecResult(
                stdout=_decode(stdout),
                stderr=_join(_decode(stderr), f"Command timed out after {timeout:g}s"),
                code=EXIT_TIMEOUT,
            )

        if overflow:
            return ExecResult(
                stdout=_decode(stdout[:limit]),
                stderr=_join(_decode(stderr[:limit]), f"Output exceeded {limit} bytes; command aborted"),
                code=EXIT_OUTPUT_LIMIT,
            )
        return ExecResult(stdout=_decode(stdout), stderr=_decode(stderr), code=proc.returncode or 0)


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def _decode(data: bytes | bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def _join(stderr: str, message: str) -> str:
    return f"{stderr.rstrip()}\n{message}" if stderr.strip() else message
