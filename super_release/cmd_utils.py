r"""Utilities for running plumbum command invocations.

:func:`run_cmd` echoes each command before executing it so CI logs show the
exact chain that ran. Values listed in ``secrets`` are replaced with ``***``
in the echoed line; tokens embedded in push URLs never reach the log.

Examples
--------
Default ``call`` strategy, returning stdout::

    >>> from plumbum import local
    >>> run_cmd(local["echo"]["hello"])
    $ echo hello
    'hello\n'

Streaming a long build in the foreground::

    >>> run_cmd(local["cargo"]["build", "--verbose"], method="run_fg")
    $ cargo build --verbose

Masking a token::

    >>> run_cmd(local["git"]["push", url], secrets=[token])
    $ git push https://***@github.com/owner/repo.git
"""

from __future__ import annotations

import collections.abc as cabc
import os
import shlex
import typing as typ

import typer
from plumbum import local

RunMethod = typ.Literal["call", "run", "run_fg"]

REDACTED = "***"


class RunResult(typ.NamedTuple):
    """Structured representation of plumbum ``run`` results."""

    returncode: int
    stdout: str
    stderr: str


@typ.runtime_checkable
class SupportsFormulate(typ.Protocol):
    """Objects that expose a shell representation via ``formulate``."""

    def formulate(self) -> cabc.Sequence[str]:  # pragma: no cover - protocol
        ...


@typ.runtime_checkable
class SupportsWithEnv(SupportsFormulate, typ.Protocol):
    """Commands that support environment overrides via :meth:`with_env`."""

    def with_env(self, **env: str) -> SupportsWithEnv:  # pragma: no cover - protocol
        ...


def _ensure_text(value: str | bytes | None) -> str:
    """Return ``value`` as ``str`` replacing undecodable bytes."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value.decode("utf-8", errors="replace")


def redact(text: str, secrets: cabc.Iterable[str] = ()) -> str:
    """Return ``text`` with every non-empty secret replaced by ``***``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def format_command(cmd: SupportsFormulate, secrets: cabc.Iterable[str] = ()) -> str:
    """Return the shell rendering of ``cmd`` with ``secrets`` masked."""
    return redact(shlex.join(str(part) for part in cmd.formulate()), secrets)


def coerce_run_result(result: RunResult | cabc.Sequence[object]) -> RunResult:
    """Normalise a plumbum ``run`` tuple into a :class:`RunResult`."""
    if isinstance(result, RunResult):
        return result
    try:
        returncode, stdout, stderr = result  # type: ignore[misc]
    except ValueError as exc:
        msg = "plumbum run() results must unpack into (returncode, stdout, stderr)"
        raise TypeError(msg) from exc
    return RunResult(
        int(typ.cast("int", returncode)),
        _ensure_text(typ.cast("str | bytes | None", stdout)),
        _ensure_text(typ.cast("str | bytes | None", stderr)),
    )


def _collect_runtime_env(
    env: cabc.Mapping[str, str] | None,
) -> dict[str, str] | None:
    """Return the environment to apply, or ``None`` when nothing changed."""
    plumbum_env = typ.cast("cabc.Mapping[str, str]", local.env)
    base_env = {key: str(value) for key, value in plumbum_env.items()}
    runtime_env = base_env | {key: str(value) for key, value in os.environ.items()}
    if env is not None:
        return runtime_env | {key: str(value) for key, value in env.items()}
    return None if runtime_env == base_env else runtime_env


def run_cmd(
    cmd: object,
    *,
    method: RunMethod = "call",
    env: cabc.Mapping[str, str] | None = None,
    secrets: cabc.Iterable[str] = (),
    **run_kwargs: object,
) -> object:
    """Echo ``cmd`` and execute it using the plumbum ``method`` strategy.

    ``call`` returns stdout and raises
    :class:`~plumbum.commands.processes.ProcessExecutionError` on a non-zero
    exit. ``run`` never raises for exit codes and returns a
    :class:`RunResult`. ``run_fg`` streams output and raises on failure.
    """
    if not isinstance(cmd, SupportsFormulate):
        msg = "run_cmd requires a plumbum command invocation"
        raise TypeError(msg)

    typer.echo(f"$ {format_command(cmd, tuple(secrets))}")

    runtime_env = _collect_runtime_env(env)
    prepared: typ.Any = cmd
    if runtime_env is not None:
        if not isinstance(cmd, SupportsWithEnv):
            msg = "Command does not support environment overrides"
            raise TypeError(msg)
        prepared = cmd.with_env(**runtime_env)

    if method == "call":
        return prepared(**run_kwargs)
    if method == "run":
        options = dict(run_kwargs)
        options.setdefault("retcode", None)
        return coerce_run_result(prepared.run(**options))
    if method == "run_fg":
        return prepared.run_fg(**run_kwargs)
    msg = f"Unknown run method: {method}"
    raise ValueError(msg)


__all__ = [
    "REDACTED",
    "RunMethod",
    "RunResult",
    "SupportsFormulate",
    "coerce_run_result",
    "format_command",
    "redact",
    "run_cmd",
]
