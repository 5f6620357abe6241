"""Recording executors standing in for the host and for containers."""

from __future__ import annotations

import dataclasses as dc
import shutil
import typing as typ
from pathlib import Path

from plumbum.commands.processes import ProcessExecutionError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

Effect = typ.Callable[[tuple[str, ...], "Path | None"], None]

CENTOS_OS_RELEASE = 'NAME="CentOS Linux"\nID="centos"\nVERSION_ID="7"\n'
FEDORA_OS_RELEASE = "NAME=Fedora\nID=fedora\nVERSION_ID=28\n"
DEBIAN_OS_RELEASE = 'ID=debian\nVERSION_ID="9"\n'


@dc.dataclass(slots=True)
class RecordedCall:
    """A command the code under test asked to run."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: dict[str, str] = dc.field(default_factory=dict)
    secrets: tuple[str, ...] = ()

    @property
    def line(self) -> str:
        """Return the argv joined by spaces."""
        return " ".join(self.argv)


def _matches(argv: cabc.Sequence[str], prefix: str) -> bool:
    return " ".join(argv).startswith(prefix)


@dc.dataclass(slots=True)
class FakeExecutor:
    """Executor double that records commands instead of running them.

    ``failures`` maps a command-line prefix to the exit status it fails
    with; ``effects`` maps a prefix to a callback emulating the command's
    filesystem output. ``mv -f`` and ``test -f`` act on the host
    paths they name unless a failure or exit status is configured.
    """

    os_release: str | None = CENTOS_OS_RELEASE
    machine: str = "x86_64"
    failures: dict[str, int] = dc.field(default_factory=dict)
    effects: dict[str, Effect] = dc.field(default_factory=dict)
    probes: dict[str, int] = dc.field(default_factory=dict)
    calls: list[RecordedCall] = dc.field(default_factory=list)

    def run(
        self,
        argv: cabc.Sequence[str],
        *,
        cwd: Path | None = None,
        env: cabc.Mapping[str, str] | None = None,
        secrets: cabc.Sequence[str] = (),
    ) -> None:
        """Record ``argv`` and apply any configured failure or effect."""
        command = tuple(argv)
        self.calls.append(RecordedCall(command, cwd, dict(env or {}), tuple(secrets)))
        for prefix, retcode in self.failures.items():
            if _matches(command, prefix):
                raise ProcessExecutionError(list(command), retcode, "", "boom")
        for prefix, effect in self.effects.items():
            if _matches(command, prefix):
                effect(command, cwd)
        if command[:2] == ("mv", "-f"):
            shutil.move(command[2], command[3])

    def probe(self, argv: cabc.Sequence[str], *, cwd: Path | None = None) -> int:
        """Record ``argv`` and return its configured exit status."""
        command = tuple(argv)
        self.calls.append(RecordedCall(command, cwd))
        for prefix, code in self.probes.items():
            if _matches(command, prefix):
                return code
        if command[:2] == ("test", "-f"):
            return 0 if Path(command[2]).is_file() else 1
        return 0

    def capture(self, argv: cabc.Sequence[str]) -> str:
        """Answer ``uname -m``; anything else is unexpected."""
        if tuple(argv) == ("uname", "-m"):
            return f"{self.machine}\n"
        msg = f"unexpected capture: {argv!r}"
        raise AssertionError(msg)

    def read_text(self, path: str) -> str:
        """Return the configured ``os-release`` contents."""
        if self.os_release is None:
            msg = f"{path} not found"
            raise FileNotFoundError(msg)
        return self.os_release

    def exec_path(self, host_path: Path) -> str:
        """Return ``host_path`` unchanged."""
        return host_path.as_posix()

    @property
    def lines(self) -> list[str]:
        """Return every recorded command line."""
        return [call.line for call in self.calls]


@dc.dataclass(slots=True)
class FakeContainer(FakeExecutor):
    """A :class:`FakeExecutor` with a container lifecycle."""

    name: str = "fake"
    image: str = ""
    env: dict[str, str] = dc.field(default_factory=dict)
    start_error: Exception | None = None
    started: bool = False
    removed: bool = False

    def start(self) -> None:
        """Start the container, or raise the configured error."""
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def remove(self) -> None:
        """Record removal."""
        self.removed = True


__all__ = [
    "CENTOS_OS_RELEASE",
    "DEBIAN_OS_RELEASE",
    "FEDORA_OS_RELEASE",
    "FakeContainer",
    "FakeExecutor",
    "RecordedCall",
]
