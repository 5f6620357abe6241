"""Release configuration resolved once at the command-line boundary.

Defaults describe the SUPER analyzer repository layout. A project may place a
``release.toml`` next to its ``Cargo.toml`` to override them::

    [release]
    package_name = "super-analyzer"
    spec_file = "rpmbuild/super.spec"
    release_dir = "releases"
    extra_excludes = ["node_modules"]
    container_engine = "podman"
    docs_branch = "develop"
    upstream_url = "https://example.org/super/archive/{version}.tar.gz"

    [distributions.centos]
    image = "quay.io/centos/centos:stream8"
    dist_tag = "el8"
"""

from __future__ import annotations

import dataclasses as dc
import os
import tomllib
import typing as typ
from pathlib import Path, PurePosixPath

from .cargo_utils import MANIFEST_NAME, ManifestError, deb_package_name, read_manifest
from .distributions import DISTRIBUTIONS, Distribution, get_distribution
from .errors import ConfigurationError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_EXCLUDES",
    "ReleaseConfig",
    "load_config",
    "resolve_version",
]

CONFIG_FILE_NAME = "release.toml"

# Build output, packaging workspace, VCS metadata, distribution output,
# downloaded samples and analysis results.
DEFAULT_EXCLUDES: tuple[str, ...] = (
    "target",
    "rpmbuild",
    ".git",
    "dist",
    "downloads",
    "results",
)

_RELEASE_KEYS = {
    "package_name",
    "spec_file",
    "release_dir",
    "extra_excludes",
    "container_engine",
    "container_root",
    "docs_branch",
    "upstream_url",
    "dist_test",
}


@dc.dataclass(slots=True)
class ReleaseConfig:
    """Everything the builders and dispatcher need besides the version tag."""

    root: Path
    package_name: str
    spec_file: Path = Path("rpmbuild/super.spec")
    release_dir: str = "releases"
    extra_excludes: tuple[str, ...] = ()
    container_engine: str = "docker"
    container_root: PurePosixPath = PurePosixPath("/root/super")
    docs_branch: str = "develop"
    upstream_url: str | None = None
    dist_test: tuple[str, ...] = ("ubuntu", "fedora")
    distributions: dict[str, Distribution] = dc.field(
        default_factory=lambda: dict(DISTRIBUTIONS)
    )

    @property
    def release_path(self) -> Path:
        """Return the release-collection directory."""
        return self.root / self.release_dir

    @property
    def spec_path(self) -> Path:
        """Return the RPM spec descriptor path."""
        return self.root / self.spec_file

    @property
    def rpm_workspace(self) -> Path:
        """Return the packaging workspace holding the spec descriptor."""
        return self.spec_path.parent

    @property
    def excludes(self) -> frozenset[str]:
        """Return the top-level names never copied into a staged tree."""
        release_top = Path(self.release_dir).parts[0] if self.release_dir else ""
        names = {*DEFAULT_EXCLUDES, *self.extra_excludes}
        if release_top and release_top not in {".", ".."}:
            names.add(release_top)
        return frozenset(names)

    def distribution(self, name: str) -> Distribution:
        """Return the configured row for ``name``."""
        return get_distribution(name, self.distributions)


def resolve_version(
    value: str | None, *, fallback: cabc.Callable[[], str] | None = None
) -> str:
    """Normalise a version tag, consulting ``fallback`` when it is blank.

    Examples
    --------
    >>> resolve_version("v0.4.1")
    '0.4.1'
    """
    text = (value or "").strip().removeprefix("v")
    if text:
        return text
    if fallback is not None:
        return fallback()
    raise ConfigurationError.missing_version()


def _load_toml(path: Path) -> dict[str, typ.Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigurationError(msg) from exc


def _default_package_name(root: Path) -> str:
    manifest_path = root / MANIFEST_NAME
    try:
        return deb_package_name(read_manifest(manifest_path), manifest_path)
    except ManifestError as exc:
        msg = (
            f"package_name is not configured and could not be read from "
            f"{manifest_path}: {exc}"
        )
        raise ConfigurationError(msg) from exc


def _string_list(section: dict[str, typ.Any], key: str) -> tuple[str, ...]:
    value = section.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"release.{key} must be a list of strings"
        raise ConfigurationError(msg)
    return tuple(value)


def _optional_str(section: dict[str, typ.Any], key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        msg = f"release.{key} must be a non-empty string"
        raise ConfigurationError(msg)
    return value.strip()


def _apply_distribution_overrides(
    data: dict[str, typ.Any],
) -> dict[str, Distribution]:
    table = dict(DISTRIBUTIONS)
    overrides = data.get("distributions", {})
    if not isinstance(overrides, dict):
        msg = "[distributions] must be a table"
        raise ConfigurationError(msg)
    for name, settings in overrides.items():
        if not isinstance(settings, dict):
            msg = f"[distributions.{name}] must be a table"
            raise ConfigurationError(msg)
        table[name] = get_distribution(name).with_overrides(settings)
    return table


def load_config(
    root: Path,
    config_file: Path | None = None,
    *,
    environ: cabc.Mapping[str, str] | None = None,
) -> ReleaseConfig:
    """Build a :class:`ReleaseConfig` for the project at ``root``.

    Parameters
    ----------
    root
        Project tree that will be staged and packaged.
    config_file
        Explicit configuration path. When omitted, ``RELEASE_CONFIG`` and then
        ``<root>/release.toml`` are consulted; an absent default file is not
        an error.
    environ
        Environment to read ``RELEASE_CONFIG`` and
        ``RELEASE_CONTAINER_ENGINE`` from; defaults to :data:`os.environ`.

    Raises
    ------
    ConfigurationError
        Raised when an explicit configuration file is missing, malformed, or
        names unknown settings.
    """
    env = os.environ if environ is None else environ
    root = root.resolve()
    explicit = config_file or (
        Path(env["RELEASE_CONFIG"]) if env.get("RELEASE_CONFIG") else None
    )
    path = explicit or root / CONFIG_FILE_NAME
    data: dict[str, typ.Any] = {}
    if path.is_file():
        data = _load_toml(path)
    elif explicit is not None:
        msg = f"Configuration file not found at {path}"
        raise ConfigurationError(msg)

    section = data.get("release", {})
    if not isinstance(section, dict):
        msg = "[release] must be a table"
        raise ConfigurationError(msg)
    if unknown := sorted(set(section) - _RELEASE_KEYS):
        msg = f"unknown release setting(s): {', '.join(unknown)}"
        raise ConfigurationError(msg)

    distributions = _apply_distribution_overrides(data)
    dist_test = _string_list(section, "dist_test") or ("ubuntu", "fedora")
    for name in dist_test:
        get_distribution(name, distributions)

    engine = (
        env.get("RELEASE_CONTAINER_ENGINE", "").strip()
        or _optional_str(section, "container_engine")
        or "docker"
    )
    return ReleaseConfig(
        root=root,
        package_name=_optional_str(section, "package_name")
        or _default_package_name(root),
        spec_file=Path(_optional_str(section, "spec_file") or "rpmbuild/super.spec"),
        release_dir=_optional_str(section, "release_dir") or "releases",
        extra_excludes=_string_list(section, "extra_excludes"),
        container_engine=engine,
        container_root=PurePosixPath(
            _optional_str(section, "container_root") or "/root/super"
        ),
        docs_branch=_optional_str(section, "docs_branch") or "develop",
        upstream_url=_optional_str(section, "upstream_url"),
        dist_test=dist_test,
        distributions=distributions,
    )
