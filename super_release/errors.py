"""Failure classes raised by the release packaging workflow.

Every failure maps onto one :class:`OutcomeStatus` so the dispatcher can
report dependency, build, packaging and relocation problems distinctly while
still exiting with the status of the command that failed.
"""

from __future__ import annotations

import enum
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

__all__ = [
    "BuildError",
    "ConfigurationError",
    "DependencyError",
    "OutcomeStatus",
    "PackagingError",
    "ReleaseError",
    "RelocationError",
    "error_for_status",
]


class OutcomeStatus(enum.StrEnum):
    """Result classes of a single distribution build."""

    SUCCESS = "success"
    DEPENDENCY_ERROR = "dependency-error"
    BUILD_ERROR = "build-error"
    PACKAGING_ERROR = "packaging-error"
    RELOCATION_ERROR = "relocation-error"
    CONFIGURATION_ERROR = "configuration-error"


class ReleaseError(RuntimeError):
    """Base class for failures that abort a release step."""

    status: typ.ClassVar[OutcomeStatus] = OutcomeStatus.BUILD_ERROR

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code or 1

    @classmethod
    def command_failed(
        cls, argv: cabc.Sequence[str], retcode: int | None, *, description: str = ""
    ) -> typ.Self:
        """Return an error for a command that exited with ``retcode``."""
        label = description or " ".join(argv[:2])
        return cls(
            f"{label} failed with exit code {retcode}",
            exit_code=int(retcode or 1),
        )


class DependencyError(ReleaseError):
    """Installing build dependencies failed."""

    status = OutcomeStatus.DEPENDENCY_ERROR


class BuildError(ReleaseError):
    """Compiling or testing the project failed."""

    status = OutcomeStatus.BUILD_ERROR


class PackagingError(ReleaseError):
    """The native packaging tool or its inputs were unusable."""

    status = OutcomeStatus.PACKAGING_ERROR

    @classmethod
    def missing_spec(cls, path: Path) -> PackagingError:
        """Return an error for an absent RPM spec descriptor."""
        return cls(f"spec descriptor not found: {path}")

    @classmethod
    def missing_field(cls, field: str, path: Path) -> PackagingError:
        """Return an error for a spec descriptor lacking ``field``."""
        return cls(f"{field}: is missing from {path}")

    @classmethod
    def version_mismatch(
        cls, declared: str, version: str, source: Path
    ) -> PackagingError:
        """Return an error when ``source`` declares a different version."""
        return cls(
            f"{source} declares version {declared} but the release tag is {version}"
        )


class RelocationError(ReleaseError):
    """The built artifact could not be moved into the release collection."""

    status = OutcomeStatus.RELOCATION_ERROR

    @classmethod
    def missing_artifact(
        cls, expected: Path, found: cabc.Sequence[Path] = ()
    ) -> RelocationError:
        """Return an error for an artifact absent from its expected path."""
        names = ", ".join(path.name for path in found) or "none"
        return cls(f"expected artifact not found: {expected} (found: {names})")

    @classmethod
    def ambiguous_artifact(
        cls, pattern: str, found: cabc.Sequence[Path]
    ) -> RelocationError:
        """Return an error when ``pattern`` matched more than one artifact."""
        names = ", ".join(sorted(path.name for path in found))
        return cls(f"expected exactly one artifact matching {pattern}, found: {names}")


class ConfigurationError(ReleaseError):
    """Inputs needed to run the workflow are missing or invalid."""

    status = OutcomeStatus.CONFIGURATION_ERROR

    def __init__(self, message: str, *, exit_code: int = 2) -> None:
        super().__init__(message, exit_code=exit_code)

    @classmethod
    def missing_version(cls) -> ConfigurationError:
        """Return an error indicating no version tag was supplied."""
        return cls("no version tag supplied; set TAG")

    @classmethod
    def unknown_distribution(
        cls, name: str, known: cabc.Iterable[str]
    ) -> ConfigurationError:
        """Return an error describing an unsupported distribution name."""
        choices = ", ".join(sorted(known))
        return cls(f"unknown distribution '{name}' (expected one of: {choices})")

    @classmethod
    def missing_env(cls, name: str) -> ConfigurationError:
        """Return an error for an unset environment variable."""
        return cls(f"Environment variable '{name}' is not set.")


_ERRORS_BY_STATUS: dict[OutcomeStatus, type[ReleaseError]] = {
    OutcomeStatus.DEPENDENCY_ERROR: DependencyError,
    OutcomeStatus.BUILD_ERROR: BuildError,
    OutcomeStatus.PACKAGING_ERROR: PackagingError,
    OutcomeStatus.RELOCATION_ERROR: RelocationError,
    OutcomeStatus.CONFIGURATION_ERROR: ConfigurationError,
}


def error_for_status(status: OutcomeStatus) -> type[ReleaseError]:
    """Return the exception class raised for failures of ``status``."""
    try:
        return _ERRORS_BY_STATUS[status]
    except KeyError as exc:
        msg = f"{status} does not describe a failure"
        raise ValueError(msg) from exc
