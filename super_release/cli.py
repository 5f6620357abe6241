"""Command-line entry point for the release packaging workflow.

Every option may also be supplied as a ``RELEASE_*`` environment variable,
for example ``RELEASE_CONFIG`` or ``RELEASE_REPORT``. The version tag is read
from ``TAG`` (``build``, ``stage``) or ``TRAVIS_TAG`` (``ci``).

Examples
--------
Dispatch a CI action::

    super-release ci dist_test

Package for CentOS on the current host::

    TAG=0.4.1 super-release build centos
"""

from __future__ import annotations

import logging
import os
import typing as typ
from pathlib import Path

import cyclopts
import typer
from cyclopts import App, Parameter

from .builders import run_build
from .ci import CiContext, dispatch, is_known_action
from .config import load_config, resolve_version
from .errors import ReleaseError
from .executors import LocalExecutor
from .report import write_report
from .smoke import DEFAULT_BINARY, analyze_downloads
from .staging import prepare_source_archive

__all__ = ["app", "configure_logging", "main"]

logger = logging.getLogger(__name__)

app: App = App(
    name="super-release",
    help="Stage, package and publish SUPER releases.",
    config=cyclopts.config.Env("RELEASE_", command=False),
)


def configure_logging(level_name: str | None = None) -> None:
    """Configure the root logger from ``level_name`` or ``RELEASE_LOG_LEVEL``."""
    name = (level_name or os.environ.get("RELEASE_LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelNamesMapping().get(name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(levelname)s %(name)s: %(message)s", force=True
    )


def _tag(tag: str | None) -> str:
    return resolve_version(tag or os.environ.get("TAG"))


@app.command(name="ci")
def ci_command(
    action: str,
    platform: str | None = None,
    /,
    *,
    root: Path | None = None,
    config: Path | None = None,
    report: Path | None = None,
) -> None:
    """Run one gated CI action, optionally for a single PLATFORM.

    Parameters
    ----------
    action
        Dispatcher action, e.g. ``test``, ``dist_test`` or ``deploy``.
    platform
        Distribution restricting the packaging actions.
    root
        Project checkout; defaults to ``TRAVIS_BUILD_DIR`` or the working
        directory.
    config
        Release configuration file.
    report
        Where to write the YAML build report of packaging actions.
    """
    if not is_known_action(action):
        logger.info("Unknown action %r; nothing to do", action)
        return
    context = CiContext.from_env()
    project = root or context.build_dir or Path.cwd()
    release_config = load_config(project, config)
    exit_code = dispatch(
        action,
        platform,
        context=context,
        config=release_config,
        executor=LocalExecutor(),
        report_path=report,
    )
    if exit_code:
        raise SystemExit(exit_code)


@app.command(name="build")
def build_command(
    distribution: str,
    /,
    *,
    tag: str | None = None,
    root: Path | None = None,
    config: Path | None = None,
    skip_dependencies: typ.Annotated[bool, Parameter(negative=())] = False,
    report: Path | None = None,
) -> None:
    """Build the DISTRIBUTION package on this host.

    Parameters
    ----------
    distribution
        One of ``centos``, ``fedora``, ``debian`` or ``ubuntu``.
    tag
        Version tag; defaults to ``TAG``.
    root
        Project checkout; defaults to the working directory.
    config
        Release configuration file.
    skip_dependencies
        Reuse the host's installed toolchain instead of installing it.
    report
        Where to write the YAML build report.
    """
    release_config = load_config(root or Path.cwd(), config)
    distro = release_config.distribution(distribution)
    outcome = run_build(
        distro,
        release_config,
        _tag(tag),
        LocalExecutor(),
        install_dependencies=not skip_dependencies,
    )
    if report is not None:
        write_report(report, [outcome], action="build", root=release_config.root)
    if not outcome.ok:
        typer.secho(
            f"error: {outcome.status}: {outcome.message}",
            fg=typer.colors.RED,
            err=True,
        )
        raise SystemExit(outcome.exit_code)
    typer.echo(f"Built {outcome.artifact}")


@app.command(name="stage")
def stage_command(
    *,
    tag: str | None = None,
    root: Path | None = None,
    config: Path | None = None,
    output: Path | None = None,
) -> None:
    """Write only the source archive ``<version>.tar.gz``.

    Parameters
    ----------
    tag
        Version tag; defaults to ``TAG``.
    root
        Project checkout; defaults to the working directory.
    config
        Release configuration file.
    output
        Directory receiving the archive; defaults to ``<root>/dist``.
    """
    release_config = load_config(root or Path.cwd(), config)
    destination = output or release_config.root / "dist"
    staged = prepare_source_archive(release_config, _tag(tag), destination)
    typer.echo(f"Wrote {staged.archive} ({staged.members} members)")


@app.command(name="analyze-all")
def analyze_all_command(
    *, root: Path | None = None, binary: str = DEFAULT_BINARY
) -> None:
    """Analyze every application in ``downloads/`` with the built binary.

    Parameters
    ----------
    root
        Project checkout; defaults to the working directory.
    binary
        Analyzer executable, relative to ``root`` when it contains a slash.
    """
    count = analyze_downloads(LocalExecutor(), root or Path.cwd(), binary)
    typer.echo(f"Analyzed {count} application(s)")


def main(tokens: list[str] | None = None) -> None:
    """Run the CLI, mapping release errors onto their exit codes."""
    configure_logging()
    try:
        app(tokens)
    except ReleaseError as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise SystemExit(exc.exit_code) from exc


if __name__ == "__main__":
    main()
