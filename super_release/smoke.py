"""Run the analyzer over every downloaded sample application."""

from __future__ import annotations

import logging
import typing as typ

import typer

from .errors import BuildError, OutcomeStatus
from .executors import Step, run_steps

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .executors import Executor

__all__ = ["DEFAULT_BINARY", "analyze_downloads", "downloaded_apps"]

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "target/release/super"


def downloaded_apps(downloads: Path) -> list[str]:
    """Return the application ids of the ``*.apk`` files in ``downloads``.

    Raises
    ------
    BuildError
        When ``downloads`` is missing.
    """
    if not downloads.is_dir():
        msg = "downloads folder does not exist or has been renamed"
        raise BuildError(msg)
    return [path.stem for path in sorted(downloads.glob("*.apk"))]


def analyze_downloads(
    executor: Executor, root: Path, binary: str = DEFAULT_BINARY
) -> int:
    """Analyze each downloaded application with ``--force``; return the count."""
    apps = downloaded_apps(root / "downloads")
    program = (root / binary).as_posix() if "/" in binary else binary
    if not apps:
        logger.warning("No .apk files found under %s", root / "downloads")
    for app_id in apps:
        typer.echo(f"Analyzing {app_id}")
        run_steps(
            executor,
            [
                Step(
                    (program, "--force", app_id),
                    OutcomeStatus.BUILD_ERROR,
                    description=f"analysis of {app_id}",
                    cwd=root,
                )
            ],
        )
    return len(apps)
