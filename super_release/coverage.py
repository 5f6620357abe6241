"""Collect test coverage with kcov and submit it to Codecov.

kcov is not packaged for the CI images, so it is built from its source
archive in a scratch directory that is discarded afterwards. Every test
binary cargo left under ``target/debug`` is then run under kcov, each into
its own ``target/cov/<binary>`` directory, and the Codecov bash uploader
collects the results.
"""

from __future__ import annotations

import logging
import os
import tempfile
import typing as typ
from pathlib import Path

from .cargo_utils import MANIFEST_NAME, crate_ident, get_package_field, read_manifest
from .errors import BuildError, OutcomeStatus
from .executors import Step, run_steps

if typ.TYPE_CHECKING:
    from .executors import Executor

__all__ = [
    "CODECOV_UPLOADER_URL",
    "KCOV_ARCHIVE_URL",
    "bootstrap_kcov",
    "find_test_binaries",
    "instrument_test_binaries",
    "upload_code_coverage",
    "upload_to_codecov",
]

logger = logging.getLogger(__name__)

KCOV_ARCHIVE_URL = "https://github.com/SimonKagstrom/kcov/archive/master.tar.gz"
CODECOV_UPLOADER_URL = "https://codecov.io/bash"
KCOV_EXCLUDES = "/.cargo,/usr/lib"

_BINARY_DIRS = ("target/debug", "target/debug/deps")


def bootstrap_kcov(executor: Executor, work_dir: Path) -> None:
    """Download, compile and install kcov using ``work_dir`` as scratch."""
    archive = work_dir / "kcov.tar.gz"
    source = work_dir / "kcov-master"
    build_dir = source / "build"
    dependency = OutcomeStatus.DEPENDENCY_ERROR
    run_steps(
        executor,
        [
            Step(
                ("curl", "-sSfL", "-o", archive.as_posix(), KCOV_ARCHIVE_URL),
                dependency,
                description="download kcov",
            ),
            Step(
                ("tar", "xzf", archive.as_posix(), "-C", work_dir.as_posix()),
                dependency,
                description="unpack kcov",
            ),
            Step(
                ("cmake", "-S", source.as_posix(), "-B", build_dir.as_posix()),
                dependency,
                description="configure kcov",
            ),
            Step(
                ("make", "-C", build_dir.as_posix()),
                dependency,
                description="compile kcov",
            ),
            Step(
                ("sudo", "make", "-C", build_dir.as_posix(), "install"),
                dependency,
                description="install kcov",
            ),
        ],
    )


def find_test_binaries(root: Path, crate: str) -> list[Path]:
    """Return the executable test binaries cargo built for ``crate``.

    Dependency-info files (``*.d``) share the binaries' prefix and are
    skipped.
    """
    found: dict[str, Path] = {}
    for relative in _BINARY_DIRS:
        directory = root / relative
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob(f"{crate}*")):
            if path.suffix == ".d" or not path.is_file():
                continue
            if not os.access(path, os.X_OK):
                continue
            found.setdefault(path.name, path)
    return [found[name] for name in sorted(found)]


def instrument_test_binaries(executor: Executor, root: Path, crate: str) -> int:
    """Run every test binary of ``crate`` under kcov and return the count."""
    binaries = find_test_binaries(root, crate)
    if not binaries:
        msg = f"no test binaries for {crate} under target/debug; run cargo test first"
        raise BuildError(msg)
    steps: list[Step] = []
    for binary in binaries:
        out_dir = root / "target" / "cov" / binary.name
        out_dir.mkdir(parents=True, exist_ok=True)
        steps.append(
            Step(
                (
                    "kcov",
                    f"--exclude-pattern={KCOV_EXCLUDES}",
                    "--verify",
                    out_dir.relative_to(root).as_posix(),
                    binary.relative_to(root).as_posix(),
                ),
                OutcomeStatus.BUILD_ERROR,
                description=f"kcov {binary.name}",
                cwd=root,
            )
        )
    run_steps(executor, steps)
    return len(binaries)


def upload_to_codecov(
    executor: Executor, root: Path, work_dir: Path, *, token: str = ""
) -> None:
    """Fetch the Codecov bash uploader and submit the collected reports."""
    uploader = work_dir / "codecov.sh"
    env = {"CODECOV_TOKEN": token} if token else None
    run_steps(
        executor,
        [
            Step(
                ("curl", "-sSfL", "-o", uploader.as_posix(), CODECOV_UPLOADER_URL),
                OutcomeStatus.DEPENDENCY_ERROR,
                description="download the Codecov uploader",
            ),
            Step(
                ("bash", uploader.as_posix()),
                OutcomeStatus.BUILD_ERROR,
                description="upload coverage to Codecov",
                cwd=root,
                env=env,
                secrets=(token,) if token else (),
            ),
        ],
    )


def upload_code_coverage(executor: Executor, root: Path, *, token: str = "") -> None:
    """Bootstrap kcov, instrument the test binaries and upload the results."""
    manifest_path = root / MANIFEST_NAME
    crate = crate_ident(
        get_package_field(read_manifest(manifest_path), "name", manifest_path)
    )
    with tempfile.TemporaryDirectory(prefix="kcov-") as tmp:
        work_dir = Path(tmp)
        bootstrap_kcov(executor, work_dir)
        count = instrument_test_binaries(executor, root, crate)
        upload_to_codecov(executor, root, work_dir, token=token)
    logger.info("Uploaded code coverage for %d test binar(y/ies)", count)
