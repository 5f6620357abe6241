"""Cargo tasks run directly on the CI host.

Each task is a short list of :class:`~super_release.executors.Step` objects
run fail-fast in the project root. Gating happens in :mod:`super_release.ci`;
these functions assume their gates already passed.
"""

from __future__ import annotations

import logging
import typing as typ

from .errors import DependencyError, OutcomeStatus
from .executors import Step, run_steps

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .executors import Executor

__all__ = [
    "build",
    "cargo_step",
    "clippy_available",
    "fmt_check",
    "install_clippy",
    "install_rustfmt",
    "lint",
    "test",
]

logger = logging.getLogger(__name__)


def cargo_step(
    root: Path, *args: str, kind: OutcomeStatus = OutcomeStatus.BUILD_ERROR
) -> Step:
    """Return a step running ``cargo <args>`` in ``root``."""
    return Step(("cargo", *args), kind, description=f"cargo {args[0]}", cwd=root)


def install_rustfmt(executor: Executor, root: Path) -> None:
    """Add the ``rustfmt`` component to the active toolchain."""
    run_steps(
        executor,
        [
            Step(
                ("rustup", "component", "add", "rustfmt"),
                OutcomeStatus.DEPENDENCY_ERROR,
                cwd=root,
            )
        ],
    )


def install_clippy(executor: Executor, root: Path) -> bool:
    """Add the ``clippy`` component; a failure is logged, not raised.

    Nightly toolchains regularly ship without clippy, so the later
    ``clippy_run`` action probes for it instead of relying on this step.
    """
    try:
        run_steps(
            executor,
            [
                Step(
                    ("rustup", "component", "add", "clippy"),
                    OutcomeStatus.DEPENDENCY_ERROR,
                    cwd=root,
                )
            ],
        )
    except DependencyError as exc:
        logger.warning("Could not install clippy: %s", exc)
        return False
    return True


def test(executor: Executor, root: Path, *, ignored: bool = False) -> None:
    """Run the test suite, or only the ``#[ignore]``-d tests."""
    args = ["test", "--verbose"]
    if ignored:
        args.extend(["--", "--ignored"])
    run_steps(executor, [cargo_step(root, *args)])


def build(executor: Executor, root: Path, *, features: str = "") -> None:
    """Build the project, enabling ``features`` when given."""
    args = ["build", "--verbose"]
    if features.strip():
        args.extend(["--features", features.strip()])
    run_steps(executor, [cargo_step(root, *args)])


def fmt_check(executor: Executor, root: Path) -> None:
    """Fail when any source file is not ``rustfmt``-clean."""
    run_steps(executor, [cargo_step(root, "fmt", "--verbose", "--", "--check")])


def clippy_available(executor: Executor, root: Path) -> bool:
    """Return whether ``cargo clippy --version`` succeeds."""
    return executor.probe(("cargo", "clippy", "--version"), cwd=root) == 0


def lint(executor: Executor, root: Path) -> None:
    """Run clippy over the project."""
    run_steps(executor, [cargo_step(root, "clippy", "--verbose")])
