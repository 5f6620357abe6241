"""Run packaging commands on the host or inside a disposable container.

Builders describe their work as :class:`Step` objects and hand them to an
:class:`Executor`. The host-side Python code (staging, relocation) always
works on host paths; executors translate those into the paths the command
sees, which differ only when the project tree is bind-mounted into a
container.
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path, PurePosixPath

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError
from uuid6 import uuid7

from .cmd_utils import RunResult, run_cmd
from .errors import OutcomeStatus, error_for_status

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "ContainerExecutor",
    "Executor",
    "LocalExecutor",
    "Step",
    "container_name",
    "run_steps",
]

logger = logging.getLogger(__name__)


@dc.dataclass(frozen=True, slots=True)
class Step:
    """A single native command and the failure class it reports."""

    argv: tuple[str, ...]
    kind: OutcomeStatus
    description: str = ""
    cwd: Path | None = None
    env: cabc.Mapping[str, str] | None = None
    secrets: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Return a short human description of the step."""
        return self.description or " ".join(self.argv[:2])


class Executor(typ.Protocol):
    """Something that can run commands against the project tree."""

    def run(
        self,
        argv: cabc.Sequence[str],
        *,
        cwd: Path | None = None,
        env: cabc.Mapping[str, str] | None = None,
        secrets: cabc.Sequence[str] = (),
    ) -> None:
        """Run ``argv`` in the foreground; raise on a non-zero exit."""
        ...

    def probe(self, argv: cabc.Sequence[str], *, cwd: Path | None = None) -> int:
        """Run ``argv`` quietly and return its exit status."""
        ...

    def capture(self, argv: cabc.Sequence[str]) -> str:
        """Run ``argv`` and return its stdout; raise on a non-zero exit."""
        ...

    def read_text(self, path: str) -> str:
        """Return the contents of ``path`` as seen by the commands."""
        ...

    def exec_path(self, host_path: Path) -> str:
        """Translate ``host_path`` into the path the commands see."""
        ...


def _workdir(cwd: Path | None) -> contextlib.AbstractContextManager[object]:
    return local.cwd(str(cwd)) if cwd is not None else contextlib.nullcontext()


class LocalExecutor:
    """Execute commands directly on this machine through plumbum."""

    def _command(self, argv: cabc.Sequence[str]) -> typ.Any:  # noqa: ANN401
        if not argv:
            msg = "cannot run an empty command"
            raise ValueError(msg)
        return local[argv[0]][tuple(argv[1:])]

    def run(
        self,
        argv: cabc.Sequence[str],
        *,
        cwd: Path | None = None,
        env: cabc.Mapping[str, str] | None = None,
        secrets: cabc.Sequence[str] = (),
    ) -> None:
        """Run ``argv`` in the foreground, streaming output to the console."""
        command = self._command(argv)
        with _workdir(cwd):
            run_cmd(command, method="run_fg", env=env, secrets=secrets)

    def probe(self, argv: cabc.Sequence[str], *, cwd: Path | None = None) -> int:
        """Return the exit status of ``argv``; a missing program yields 127."""
        try:
            command = self._command(argv)
        except CommandNotFound:
            logger.info("%s is not installed", argv[0])
            return 127
        with _workdir(cwd):
            result = run_cmd(command, method="run")
        return typ.cast("RunResult", result).returncode

    def capture(self, argv: cabc.Sequence[str]) -> str:
        """Return the stdout of ``argv``."""
        return str(run_cmd(self._command(argv)))

    def read_text(self, path: str) -> str:
        """Read ``path`` from the local filesystem."""
        return Path(path).read_text(encoding="utf-8")

    def exec_path(self, host_path: Path) -> str:
        """Return ``host_path`` unchanged."""
        return host_path.as_posix()


def container_name(distribution: str) -> str:
    """Return a unique name for a disposable container.

    Examples
    --------
    >>> container_name("centos").startswith("centos-")
    True
    """
    return f"{distribution}-{uuid7().hex[-12:]}"


@dc.dataclass(slots=True)
class ContainerExecutor:
    """Execute commands inside a disposable container.

    The project tree at ``host_root`` is bind-mounted at ``mount_point`` and
    ``env`` is exported into the container. :meth:`start` launches it and
    :meth:`remove` force-removes it.
    """

    engine: str
    image: str
    host_root: Path
    mount_point: PurePosixPath = PurePosixPath("/root/super")
    env: dict[str, str] = dc.field(default_factory=dict)
    name: str = ""
    started: bool = dc.field(default=False, init=False)

    def __post_init__(self) -> None:
        if not self.name:
            base = self.image.split(":", 1)[0].rsplit("/", 1)[-1]
            self.name = container_name(base)

    def _engine(self) -> typ.Any:  # noqa: ANN401
        return local[self.engine]

    def start(self) -> None:
        """Start a detached container with the project mounted."""
        args: list[str] = ["run", "-d", "-t"]
        for key, value in self.env.items():
            args.extend(["-e", f"{key}={value}"])
        args.extend(
            [
                "-v",
                f"{self.host_root.as_posix()}:{self.mount_point.as_posix()}",
                "--name",
                self.name,
                "--privileged",
                self.image,
                "/bin/bash",
            ]
        )
        logger.info("Starting container %s from %s", self.name, self.image)
        run_cmd(self._engine()[tuple(args)])
        self.started = True

    def remove(self) -> None:
        """Force-remove the container, tolerating one that never started."""
        if not self.started:
            return
        try:
            run_cmd(self._engine()["rm", "-f", self.name])
        except ProcessExecutionError as exc:
            logger.warning("Could not remove container %s: %s", self.name, exc)
        self.started = False

    def _exec_args(
        self,
        argv: cabc.Sequence[str],
        *,
        cwd: Path | None = None,
        env: cabc.Mapping[str, str] | None = None,
    ) -> tuple[str, ...]:
        args: list[str] = ["exec"]
        if cwd is not None:
            args.extend(["-w", self.exec_path(cwd)])
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(self.name)
        args.extend(argv)
        return tuple(args)

    def run(
        self,
        argv: cabc.Sequence[str],
        *,
        cwd: Path | None = None,
        env: cabc.Mapping[str, str] | None = None,
        secrets: cabc.Sequence[str] = (),
    ) -> None:
        """Run ``argv`` in the container via ``<engine> exec``."""
        command = self._engine()[self._exec_args(argv, cwd=cwd, env=env)]
        run_cmd(command, method="run_fg", secrets=secrets)

    def probe(self, argv: cabc.Sequence[str], *, cwd: Path | None = None) -> int:
        """Return the exit status of ``argv`` inside the container."""
        command = self._engine()[self._exec_args(argv, cwd=cwd)]
        return typ.cast("RunResult", run_cmd(command, method="run")).returncode

    def capture(self, argv: cabc.Sequence[str]) -> str:
        """Return the stdout of ``argv`` run inside the container."""
        return str(run_cmd(self._engine()[self._exec_args(argv)]))

    def read_text(self, path: str) -> str:
        """Return the contents of ``path`` inside the container."""
        return self.capture(["cat", path])

    def exec_path(self, host_path: Path) -> str:
        """Map a path under :attr:`host_root` onto the mount point."""
        relative = host_path.resolve().relative_to(self.host_root.resolve())
        return (self.mount_point / relative.as_posix()).as_posix()


def run_steps(executor: Executor, steps: cabc.Iterable[Step]) -> None:
    """Run ``steps`` in order, stopping at the first failure.

    A failing step raises the :class:`~super_release.errors.ReleaseError`
    subclass matching its ``kind``, carrying the command's exit status.
    """
    for step in steps:
        logger.info("%s", step.label)
        try:
            executor.run(step.argv, cwd=step.cwd, env=step.env, secrets=step.secrets)
        except ProcessExecutionError as exc:
            error_cls = error_for_status(step.kind)
            raise error_cls.command_failed(
                step.argv, exc.retcode, description=step.description
            ) from exc
        except CommandNotFound as exc:
            error_cls = error_for_status(step.kind)
            msg = f"{step.label} failed: {step.argv[0]} is not installed"
            raise error_cls(msg, exit_code=127) from exc
