r"""Utilities for reading the analyzer's Cargo.toml manifest.

The packaging workflow never builds the analyzer itself, but it needs a few
facts from the manifest: the version (to cross-check the release tag), the
name ``cargo deb`` gives the Debian package, and the crate identifiers used
for test binaries and the rustdoc landing page.

Examples
--------
    >>> from pathlib import Path
    >>> manifest = read_manifest(Path("Cargo.toml"))
    >>> get_package_field(manifest, "version", Path("Cargo.toml"))
    '0.4.1'
    >>> deb_package_name(manifest, Path("Cargo.toml"))
    'super-analyzer'
"""

from __future__ import annotations

import tomllib
import typing as typ
from pathlib import Path  # noqa: TC003

from .errors import PackagingError

MANIFEST_NAME = "Cargo.toml"


class ManifestError(PackagingError):
    """Raised when a Cargo manifest cannot be processed.

    Attributes
    ----------
    path : Path
        The manifest path associated with this error.
    """

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(message)
        self.path = path


def read_manifest(path: Path) -> dict[str, typ.Any]:
    """Load and parse a Cargo.toml manifest file.

    Raises
    ------
    ManifestError
        If the file does not exist or contains invalid TOML.
    """
    if not path.is_file():
        msg = f"Manifest not found: {path}"
        raise ManifestError(path, msg)
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in manifest: {exc}"
        raise ManifestError(path, msg) from exc


def get_package_field(
    manifest: dict[str, typ.Any], field: str, manifest_path: Path
) -> str:
    """Extract a string field from the ``[package]`` table.

    Examples
    --------
    >>> from pathlib import Path
    >>> manifest = {"package": {"name": "super-analyzer", "version": "0.4.1"}}
    >>> get_package_field(manifest, "version", Path("Cargo.toml"))
    '0.4.1'
    """
    package = manifest.get("package")
    if not isinstance(package, dict):
        raise ManifestError(manifest_path, "Manifest missing [package] table")
    value = package.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ManifestError(manifest_path, f"package.{field} is missing or empty")
    return value.strip()


def deb_package_name(manifest: dict[str, typ.Any], manifest_path: Path) -> str:
    """Return the Debian package name ``cargo deb`` will use.

    ``[package.metadata.deb].name`` wins over ``[package].name``.
    """
    package = manifest.get("package")
    metadata = package.get("metadata") if isinstance(package, dict) else None
    deb = metadata.get("deb") if isinstance(metadata, dict) else None
    if isinstance(deb, dict):
        name = deb.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return get_package_field(manifest, "name", manifest_path)


def crate_ident(name: str) -> str:
    """Return the Rust identifier cargo derives from a package name."""
    return name.replace("-", "_")


def lib_name(manifest: dict[str, typ.Any], manifest_path: Path) -> str:
    """Return the library target name, defaulting to the package identifier.

    Examples
    --------
    >>> from pathlib import Path
    >>> manifest = {"package": {"name": "super-analyzer"}, "lib": {"name": "super"}}
    >>> lib_name(manifest, Path("Cargo.toml"))
    'super'
    """
    lib = manifest.get("lib")
    if isinstance(lib, dict):
        name = lib.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return crate_ident(get_package_field(manifest, "name", manifest_path))


def manifest_version(root: Path) -> str:
    """Return ``package.version`` from the manifest at ``root``."""
    path = root / MANIFEST_NAME
    return get_package_field(read_manifest(path), "version", path)


__all__ = [
    "MANIFEST_NAME",
    "ManifestError",
    "crate_ident",
    "deb_package_name",
    "get_package_field",
    "lib_name",
    "manifest_version",
    "read_manifest",
]
