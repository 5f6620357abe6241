"""Release staging: a filtered tree copy archived into a source tarball.

The staged tree is ``<package>-<version>`` and the archive holds it as its
single top-level directory, which is the layout ``%autosetup`` and
``fedpkg`` expect for ``Source0: .../<version>.tar.gz``.
"""

from __future__ import annotations

import dataclasses as dc
import gzip
import logging
import os
import shutil
import tarfile
import tempfile
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import ProcessExecutionError

from .cmd_utils import run_cmd
from .errors import ConfigurationError, DependencyError, PackagingError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import ReleaseConfig

__all__ = [
    "StagedSource",
    "archive_name",
    "create_source_archive",
    "prepare_source_archive",
    "repack_upstream_archive",
    "stage_source_tree",
    "staged_dir_name",
]

logger = logging.getLogger(__name__)


@dc.dataclass(frozen=True, slots=True)
class StagedSource:
    """Outcome of :func:`prepare_source_archive`."""

    archive: Path
    top_level: str
    members: int


def staged_dir_name(package: str, version: str) -> str:
    """Return the staged tree name, e.g. ``super-analyzer-0.4.1``."""
    return f"{package}-{version}"


def archive_name(version: str) -> str:
    """Return the source archive file name keyed by the version tag."""
    return f"{version}.tar.gz"


def _initialize_staging_dir(staging_dir: Path) -> None:
    """Remove any leftover copy and create an empty staging directory."""
    if staging_dir.exists():
        shutil.rmtree(staging_dir)
    staging_dir.parent.mkdir(parents=True, exist_ok=True)


def stage_source_tree(
    source_root: Path,
    staging_dir: Path,
    excludes: cabc.Iterable[str],
) -> Path:
    """Copy ``source_root`` into ``staging_dir`` without excluded entries.

    ``excludes`` holds top-level names. ``staging_dir`` is recreated from
    scratch on every call.
    """
    excluded = frozenset(excludes)
    root = source_root.resolve()

    def _ignore(directory: str, names: list[str]) -> list[str]:
        if Path(directory).resolve() != root:
            return []
        return [name for name in names if name in excluded]

    _initialize_staging_dir(staging_dir)
    shutil.copytree(root, staging_dir, symlinks=True, ignore=_ignore)
    logger.info("Staged %s -> %s", root, staging_dir)
    return staging_dir


def _source_date_epoch() -> int | None:
    raw = os.environ.get("SOURCE_DATE_EPOCH", "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"SOURCE_DATE_EPOCH must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from exc


def _iter_tree(root: Path) -> cabc.Iterator[Path]:
    """Yield every path below ``root`` in a stable order."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        current = Path(dirpath)
        for name in sorted([*dirnames, *filenames]):
            yield current / name


def create_source_archive(staged_dir: Path, archive_path: Path) -> int:
    """Write a reproducible ``.tar.gz`` of ``staged_dir`` and count members.

    Members are sorted, owned by ``root:root``, and clamped to
    ``SOURCE_DATE_EPOCH`` when it is set; the gzip header carries no
    timestamp.
    """
    epoch = _source_date_epoch()

    def _normalise(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = info.gid = 0
        info.uname = info.gname = "root"
        info.mtime = int(info.mtime)
        if epoch is not None and info.mtime > epoch:
            info.mtime = epoch
        return info

    archive_path.parent.mkdir(parents=True, exist_ok=True)
    top = staged_dir.name
    members = 0
    with (
        archive_path.open("wb") as raw,
        gzip.GzipFile(filename="", fileobj=raw, mode="wb", mtime=0) as gz,
        tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar,
    ):
        tar.add(staged_dir, arcname=top, recursive=False, filter=_normalise)
        members += 1
        for path in _iter_tree(staged_dir):
            arcname = f"{top}/{path.relative_to(staged_dir).as_posix()}"
            tar.add(path, arcname=arcname, recursive=False, filter=_normalise)
            members += 1
    logger.info("Archived %d member(s) into %s", members, archive_path)
    return members


def prepare_source_archive(
    config: ReleaseConfig,
    version: str,
    destination: Path,
    *,
    work_dir: Path | None = None,
) -> StagedSource:
    """Stage the project, archive it into ``destination`` and drop the copy.

    ``destination`` is the directory that receives ``<version>.tar.gz``. A
    failure leaves the staged tree in ``work_dir`` for inspection; the next
    run replaces it.
    """
    top = staged_dir_name(config.package_name, version)
    staging_parent = work_dir or config.root / "target" / "release-staging"
    staged = stage_source_tree(config.root, staging_parent / top, config.excludes)
    archive = destination / archive_name(version)
    if archive.exists():
        archive.unlink()
    members = create_source_archive(staged, archive)
    shutil.rmtree(staged)
    return StagedSource(archive=archive, top_level=top, members=members)


def _safe_extract(tar: tarfile.TarFile, dest: Path) -> None:
    try:
        tar.extractall(dest, filter="data")
    except tarfile.FilterError as exc:
        msg = f"refusing to extract unsafe archive member: {exc}"
        raise PackagingError(msg) from exc


def repack_upstream_archive(
    config: ReleaseConfig,
    version: str,
    destination: Path,
    *,
    url_template: str | None = None,
) -> StagedSource:
    """Download the upstream release tarball and rename its top directory.

    GitHub archives unpack into ``<repository>-<version>``; packaging expects
    ``<package>-<version>``, so the archive is extracted, renamed and repacked.
    """
    template = url_template or config.upstream_url
    if not template:
        msg = "no upstream_url configured for upstream source archives"
        raise ConfigurationError(msg)
    url = template.format(version=version, package=config.package_name)
    top = staged_dir_name(config.package_name, version)
    archive = destination / archive_name(version)

    with tempfile.TemporaryDirectory(prefix="super-release-") as tmp:
        tmp_path = Path(tmp)
        download = tmp_path / "upstream.tar.gz"
        try:
            run_cmd(local["curl"]["-sSfL", "-o", download.as_posix(), url])
        except ProcessExecutionError as exc:
            msg = f"could not download {url} (exit {exc.retcode})"
            raise DependencyError(msg, exit_code=int(exc.retcode or 1)) from exc

        extracted = tmp_path / "extract"
        extracted.mkdir()
        with tarfile.open(download, mode="r:gz") as tar:
            _safe_extract(tar, extracted)
        roots = [path for path in extracted.iterdir() if path.is_dir()]
        if len(roots) != 1:
            msg = f"expected one top-level directory in {url}, found {len(roots)}"
            raise PackagingError(msg)
        renamed = roots[0].rename(extracted / top)
        if archive.exists():
            archive.unlink()
        members = create_source_archive(renamed, archive)
    return StagedSource(archive=archive, top_level=top, members=members)
