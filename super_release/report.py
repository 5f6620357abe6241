"""YAML summary of the builds performed by one run."""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import yaml

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .builders import BuildOutcome

__all__ = ["build_report", "write_report"]

logger = logging.getLogger(__name__)


def _display_path(path: Path, root: Path | None) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def build_report(
    outcomes: cabc.Sequence[BuildOutcome],
    *,
    action: str,
    root: Path | None = None,
) -> dict[str, typ.Any]:
    """Return a plain mapping describing ``outcomes``.

    Artifact paths are shown relative to ``root`` when they lie below it.

    Examples
    --------
    >>> build_report([], action="deploy")
    {'action': 'deploy', 'succeeded': True, 'outcomes': []}
    """
    entries: list[dict[str, typ.Any]] = []
    for outcome in outcomes:
        entry: dict[str, typ.Any] = {
            "distribution": outcome.distribution,
            "version": outcome.version,
            "status": str(outcome.status),
        }
        if outcome.artifact is not None:
            entry["artifact"] = _display_path(outcome.artifact, root)
        if not outcome.ok:
            entry["exit_code"] = outcome.exit_code
            entry["message"] = outcome.message
        entries.append(entry)
    return {
        "action": action,
        "succeeded": all(outcome.ok for outcome in outcomes),
        "outcomes": entries,
    }


def write_report(
    path: Path,
    outcomes: cabc.Sequence[BuildOutcome],
    *,
    action: str,
    root: Path | None = None,
) -> Path:
    """Serialise the report for ``outcomes`` to ``path``."""
    document = build_report(outcomes, action=action, root=root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
    logger.info("Wrote build report to %s", path)
    return path
