"""Distribution metadata consumed by the single packaging routine.

Every supported distribution is one row of :data:`DISTRIBUTIONS`: its package
family, container image, package manager and build dependencies, and how its
RPM dist tag is derived from ``/etc/os-release``. Nothing else in the project
branches on a distribution name.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import shlex
import typing as typ

from .errors import ConfigurationError, OutcomeStatus
from .executors import Step

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .os_release import OsRelease

__all__ = [
    "DISTRIBUTIONS",
    "Distribution",
    "PackageFamily",
    "RpmTool",
    "cargo_shell",
    "deb_arch_for_machine",
    "get_distribution",
]

RUSTUP_INSTALL = "curl https://sh.rustup.rs -sSf | sh -s -- -y"
CARGO_ENV = '. "$HOME/.cargo/env"'
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageFamily(enum.StrEnum):
    """Native package format produced for a distribution."""

    RPM = "rpm"
    DEB = "deb"

    @property
    def extension(self) -> str:
        """Return the artifact file extension."""
        return self.value


class RpmTool(enum.StrEnum):
    """Native RPM build front-end."""

    RPMBUILD = "rpmbuild"
    FEDPKG = "fedpkg"


_DEB_ARCHES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i686": "i386",
    "i386": "i386",
    "armv7l": "armhf",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def deb_arch_for_machine(machine: str) -> str:
    """Return the Debian architecture label for a ``uname -m`` value.

    Examples
    --------
    >>> deb_arch_for_machine("x86_64")
    'amd64'
    """
    try:
        return _DEB_ARCHES[machine.strip().lower()]
    except KeyError as exc:
        msg = f"unsupported machine architecture: {machine}"
        raise ConfigurationError(msg) from exc


def cargo_shell(*args: str) -> tuple[str, ...]:
    """Return argv running ``cargo`` with the rustup environment sourced."""
    return ("sh", "-c", f"{CARGO_ENV} && cargo {shlex.join(args)}")


def _manager_refresh(manager: str) -> tuple[tuple[str, ...], ...]:
    if manager == "apt-get":
        return (
            ("apt-get", "update", "-y"),
            ("apt-get", "upgrade", "-y"),
            ("apt-get", "dist-upgrade", "-y"),
            ("apt-get", "autoremove", "-y"),
        )
    if manager == "dnf":
        return (("dnf", "upgrade", "--refresh", "-y"), ("dnf", "autoremove", "-y"))
    if manager == "yum":
        return (("yum", "upgrade", "-y"), ("yum", "autoremove", "-y"))
    msg = f"unsupported package manager: {manager}"
    raise ConfigurationError(msg)


@dc.dataclass(frozen=True, slots=True)
class Distribution:
    """Packaging metadata for one Linux distribution."""

    name: str
    family: PackageFamily
    image: str
    package_manager: str
    build_dependencies: tuple[str, ...]
    rpm_tool: RpmTool | None = None
    dist_tag_template: str = ""
    fallback_dist_tag: str = ""
    release_template: str = ""

    @property
    def extension(self) -> str:
        """Return the artifact file extension."""
        return self.family.extension

    def _render(self, template: str, os_release: OsRelease | None) -> str:
        if os_release is None or not os_release.version_id:
            return ""
        return template.format(
            version_id=os_release.version_id,
            major=os_release.major_version,
            id=os_release.id,
        )

    def dist_tag(self, os_release: OsRelease | None) -> str:
        """Return the RPM dist tag (``el7``, ``fc28``) for the running system.

        Falls back to :attr:`fallback_dist_tag` when ``os-release`` carries
        no version.
        """
        if self.family is not PackageFamily.RPM:
            return ""
        tag = self._render(self.dist_tag_template, os_release)
        if tag:
            return tag
        if self.fallback_dist_tag:
            return self.fallback_dist_tag
        msg = f"cannot derive the dist tag for {self.name}: VERSION_ID is unknown"
        raise ConfigurationError(msg)

    def tool_release(self, os_release: OsRelease | None) -> str:
        """Return the ``fedpkg --release`` value, empty when not applicable."""
        if not self.release_template:
            return ""
        release = self._render(self.release_template, os_release)
        if not release:
            msg = f"cannot derive the fedpkg release for {self.name}"
            raise ConfigurationError(msg)
        return release

    def dependency_steps(self) -> list[Step]:
        """Return the commands that prepare a fresh image for packaging."""
        env = APT_ENV if self.package_manager == "apt-get" else None
        commands: list[tuple[str, ...]] = list(
            _manager_refresh(self.package_manager)
        )
        commands.append(
            (self.package_manager, "install", "-y", *self.build_dependencies)
        )
        steps = [
            Step(command, OutcomeStatus.DEPENDENCY_ERROR, env=env)
            for command in commands
        ]
        if self.family is PackageFamily.DEB:
            steps.extend(
                [
                    Step(
                        ("sh", "-c", RUSTUP_INSTALL),
                        OutcomeStatus.DEPENDENCY_ERROR,
                        description="install the Rust toolchain",
                    ),
                    Step(
                        cargo_shell("install", "cargo-deb"),
                        OutcomeStatus.DEPENDENCY_ERROR,
                        description="install cargo-deb",
                    ),
                ]
            )
        return steps

    def with_overrides(self, overrides: cabc.Mapping[str, typ.Any]) -> Distribution:
        """Return a copy with the configuration-file ``overrides`` applied.

        ``dist_tag`` pins the tag instead of deriving it from ``os-release``.
        """
        changes: dict[str, typ.Any] = {}
        for key, value in overrides.items():
            if key == "dist_tag":
                changes["dist_tag_template"] = _require_str(self.name, key, value)
                changes["fallback_dist_tag"] = changes["dist_tag_template"]
            elif key in {"image", "package_manager", "release_template"}:
                changes[key] = _require_str(self.name, key, value)
            elif key == "build_dependencies":
                if not isinstance(value, list) or not all(
                    isinstance(item, str) for item in value
                ):
                    msg = f"distributions.{self.name}.{key} must be a list of strings"
                    raise ConfigurationError(msg)
                changes[key] = tuple(value)
            else:
                msg = f"unknown setting distributions.{self.name}.{key}"
                raise ConfigurationError(msg)
        return dc.replace(self, **changes)


def _require_str(name: str, key: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"distributions.{name}.{key} must be a non-empty string"
        raise ConfigurationError(msg)
    return value.strip()


_APT_DEPENDENCIES = ("curl", "build-essential", "dpkg", "libc-bin", "liblzma-dev")

DISTRIBUTIONS: dict[str, Distribution] = {
    "centos": Distribution(
        name="centos",
        family=PackageFamily.RPM,
        image="centos:7",
        package_manager="yum",
        build_dependencies=(
            "wget",
            "gcc",
            "make",
            "rpm-build",
            "redhat-rpm-config",
        ),
        rpm_tool=RpmTool.RPMBUILD,
        dist_tag_template="el{major}",
        fallback_dist_tag="el7",
    ),
    "fedora": Distribution(
        name="fedora",
        family=PackageFamily.RPM,
        image="fedora:latest",
        package_manager="dnf",
        build_dependencies=("wget", "gcc", "fedora-packager"),
        rpm_tool=RpmTool.FEDPKG,
        dist_tag_template="fc{version_id}",
        release_template="f{version_id}",
    ),
    "debian": Distribution(
        name="debian",
        family=PackageFamily.DEB,
        image="debian:latest",
        package_manager="apt-get",
        build_dependencies=_APT_DEPENDENCIES,
    ),
    "ubuntu": Distribution(
        name="ubuntu",
        family=PackageFamily.DEB,
        image="ubuntu:latest",
        package_manager="apt-get",
        build_dependencies=_APT_DEPENDENCIES,
    ),
}


def get_distribution(
    name: str, table: cabc.Mapping[str, Distribution] | None = None
) -> Distribution:
    """Return the row for ``name`` or raise :class:`ConfigurationError`."""
    rows = DISTRIBUTIONS if table is None else table
    try:
        return rows[name.strip().lower()]
    except KeyError as exc:
        raise ConfigurationError.unknown_distribution(name, rows) from exc
