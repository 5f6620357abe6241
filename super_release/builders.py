"""Build one platform-native package and move it into the release collection.

:func:`build_package` is the single routine behind every distribution. The
distribution row decides the package family and native tool; the executor
decides whether the native commands run on this host or in a container.
Staging always runs here, on host paths; relocation runs through the
executor.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import re
import shutil
import typing as typ
from pathlib import Path

from plumbum.commands.processes import ProcessExecutionError

from .cargo_utils import (
    MANIFEST_NAME,
    deb_package_name,
    get_package_field,
    read_manifest,
)
from .distributions import PackageFamily, RpmTool, cargo_shell, deb_arch_for_machine
from .errors import OutcomeStatus, PackagingError, ReleaseError, RelocationError
from .executors import Step, run_steps
from .os_release import OS_RELEASE_PATH, OsRelease, parse_os_release
from .staging import prepare_source_archive, repack_upstream_archive

if typ.TYPE_CHECKING:
    from .config import ReleaseConfig
    from .distributions import Distribution
    from .executors import Executor

__all__ = [
    "BuildOutcome",
    "RpmSpec",
    "build_package",
    "deb_artifact_name",
    "read_rpm_spec",
    "relocate_artifact",
    "rpm_artifact_name",
    "run_build",
]

logger = logging.getLogger(__name__)

_SPEC_FIELD_RE = re.compile(r"^(?P<key>[A-Za-z][A-Za-z0-9]*):\s*(?P<value>.+?)\s*$")
_DIST_MACRO_RE = re.compile(r"%\{\??dist\}")
_SECTION_RE = re.compile(
    r"^%(?:description|package|prep|build|install|check|clean|files|changelog"
    r"|pre|post|preun|postun|pretrans|posttrans|verifyscript)\b"
)


@dc.dataclass(frozen=True, slots=True)
class RpmSpec:
    """The header fields of an RPM spec descriptor that name its output."""

    name: str
    version: str
    release: str


@dc.dataclass(slots=True)
class BuildOutcome:
    """Typed result of one distribution build."""

    distribution: str
    status: OutcomeStatus
    version: str
    artifact: Path | None = None
    message: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        """Return whether the build produced its artifact."""
        return self.status is OutcomeStatus.SUCCESS


def rpm_artifact_name(spec: RpmSpec, dist_tag: str, arch: str) -> str:
    """Return the RPM file name, e.g. ``super-analyzer-0.4.1-1.el7.x86_64.rpm``."""
    return f"{spec.name}-{spec.version}-{spec.release}.{dist_tag}.{arch}.rpm"


def deb_artifact_name(package: str, version: str, distro: str, arch: str) -> str:
    """Return the collected Debian file name embedding the distribution."""
    return f"{package}_{version}_{distro}_{arch}.deb"


def read_rpm_spec(path: Path) -> RpmSpec:
    """Read ``Name``, ``Version`` and ``Release`` from a spec descriptor.

    The preamble ends at the first section marker; macro definitions before
    it are skipped. The ``%{?dist}`` macro is dropped from the release; the
    dist tag is added separately.
    """
    if not path.is_file():
        raise PackagingError.missing_spec(path)
    fields: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if _SECTION_RE.match(line):
            break
        if match := _SPEC_FIELD_RE.match(line):
            fields.setdefault(match["key"].lower(), match["value"])
    values: list[str] = []
    for key in ("name", "version", "release"):
        value = fields.get(key, "")
        if key == "release":
            value = _DIST_MACRO_RE.sub("", value)
        if not value.strip():
            raise PackagingError.missing_field(key.capitalize(), path)
        values.append(value.strip())
    return RpmSpec(*values)


def relocate_artifact(
    executor: Executor, source: Path, release_dir: Path, name: str
) -> Path:
    """Move ``source`` into ``release_dir`` as ``name``, replacing any copy.

    The move runs through ``executor`` because output directories created
    inside a container belong to the container's user.
    """
    if executor.probe(("test", "-f", executor.exec_path(source))) != 0:
        found = sorted(source.parent.glob("*")) if source.parent.is_dir() else []
        raise RelocationError.missing_artifact(source, found)
    release_dir.mkdir(parents=True, exist_ok=True)
    destination = release_dir / name
    if destination.exists():
        logger.info("Replacing existing artifact %s", destination)
    step = Step(
        ("mv", "-f", executor.exec_path(source), executor.exec_path(destination)),
        OutcomeStatus.RELOCATION_ERROR,
        description=f"move {name} into {release_dir.name}",
    )
    run_steps(executor, [step])
    logger.info("Collected %s", destination)
    return destination


def _read_os_release(executor: Executor) -> OsRelease | None:
    try:
        return parse_os_release(executor.read_text(OS_RELEASE_PATH))
    except (OSError, ProcessExecutionError, ReleaseError) as exc:
        logger.warning("Could not read %s: %s", OS_RELEASE_PATH, exc)
        return None


def _machine(executor: Executor) -> str:
    try:
        return executor.capture(["uname", "-m"]).strip()
    except ProcessExecutionError as exc:
        msg = f"could not determine the machine architecture (exit {exc.retcode})"
        raise PackagingError(msg, exit_code=int(exc.retcode or 1)) from exc


def _stage_archive(config: ReleaseConfig, version: str, destination: Path) -> None:
    if config.upstream_url:
        repack_upstream_archive(config, version, destination)
    else:
        prepare_source_archive(config, version, destination)


def _build_rpm(
    distro: Distribution,
    config: ReleaseConfig,
    version: str,
    executor: Executor,
) -> Path:
    os_release = _read_os_release(executor)
    dist_tag = distro.dist_tag(os_release)
    spec = read_rpm_spec(config.spec_path)
    if spec.version != version:
        raise PackagingError.version_mismatch(spec.version, version, config.spec_path)
    arch = _machine(executor)
    workspace = config.rpm_workspace

    if distro.rpm_tool is RpmTool.FEDPKG:
        _stage_archive(config, version, workspace)
        release = distro.tool_release(os_release)
        step = Step(
            ("fedpkg", "-v", "--release", release, "local"),
            OutcomeStatus.PACKAGING_ERROR,
            cwd=workspace,
        )
        output_dir = workspace / arch
    else:
        for sub in ("BUILD", "RPMS", "SOURCES", "SPECS", "SRPMS"):
            (workspace / sub).mkdir(parents=True, exist_ok=True)
        _stage_archive(config, version, workspace / "SOURCES")
        spec_copy = workspace / "SPECS" / config.spec_path.name
        shutil.copy2(config.spec_path, spec_copy)
        topdir = executor.exec_path(workspace)
        step = Step(
            (
                "rpmbuild",
                "-v",
                "-bb",
                "--define",
                f"_topdir {topdir}",
                "--define",
                f"dist .{dist_tag}",
                executor.exec_path(spec_copy),
            ),
            OutcomeStatus.PACKAGING_ERROR,
        )
        output_dir = workspace / "RPMS" / arch

    run_steps(executor, [step])
    name = rpm_artifact_name(spec, dist_tag, arch)
    return relocate_artifact(executor, output_dir / name, config.release_path, name)


def _find_deb(output_dir: Path, package: str, version: str, arch: str) -> Path:
    """Return the single ``.deb`` cargo-deb produced for ``version``.

    Newer cargo-deb releases append a ``-<revision>`` to the version.
    """
    pattern = f"{package}_{version}*_{arch}.deb"
    matches = sorted(output_dir.glob(pattern)) if output_dir.is_dir() else []
    exact = output_dir / f"{package}_{version}_{arch}.deb"
    if exact in matches:
        return exact
    if len(matches) == 1:
        return matches[0]
    if not matches:
        found = sorted(output_dir.glob("*.deb")) if output_dir.is_dir() else []
        raise RelocationError.missing_artifact(exact, found)
    raise RelocationError.ambiguous_artifact(pattern, matches)


def _build_deb(
    distro: Distribution,
    config: ReleaseConfig,
    version: str,
    executor: Executor,
) -> Path:
    manifest_path = config.root / MANIFEST_NAME
    manifest = read_manifest(manifest_path)
    declared = get_package_field(manifest, "version", manifest_path)
    if declared != version:
        raise PackagingError.version_mismatch(declared, version, manifest_path)
    package = deb_package_name(manifest, manifest_path)
    arch = deb_arch_for_machine(_machine(executor))

    run_steps(
        executor,
        [
            Step(
                cargo_shell("deb", "-v"),
                OutcomeStatus.PACKAGING_ERROR,
                description="cargo deb",
                cwd=config.root,
            )
        ],
    )
    built = _find_deb(config.root / "target" / "debian", package, version, arch)
    name = deb_artifact_name(package, version, distro.name, arch)
    return relocate_artifact(executor, built, config.release_path, name)


def build_package(
    distro: Distribution,
    config: ReleaseConfig,
    version: str,
    executor: Executor,
    *,
    install_dependencies: bool = True,
) -> Path:
    """Produce exactly one package for ``distro`` and return its collected path.

    Raises
    ------
    ReleaseError
        The subclass matching the failing phase: dependency installation,
        the native packaging tool, or artifact relocation.
    """
    logger.info("Packaging %s %s for %s", config.package_name, version, distro.name)
    if install_dependencies:
        run_steps(executor, distro.dependency_steps())
    if distro.family is PackageFamily.RPM:
        return _build_rpm(distro, config, version, executor)
    return _build_deb(distro, config, version, executor)


def run_build(
    distro: Distribution,
    config: ReleaseConfig,
    version: str,
    executor: Executor,
    *,
    install_dependencies: bool = True,
) -> BuildOutcome:
    """Run :func:`build_package` and classify the result."""
    try:
        artifact = build_package(
            distro,
            config,
            version,
            executor,
            install_dependencies=install_dependencies,
        )
    except ReleaseError as exc:
        logger.error("%s build failed: %s", distro.name, exc)  # noqa: TRY400
        return BuildOutcome(
            distribution=distro.name,
            status=exc.status,
            version=version,
            message=str(exc),
            exit_code=exc.exit_code,
        )
    return BuildOutcome(
        distribution=distro.name,
        status=OutcomeStatus.SUCCESS,
        version=version,
        artifact=artifact,
    )
