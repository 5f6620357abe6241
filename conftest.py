"""Pytest configuration for the release packaging tests."""

from __future__ import annotations

import collections.abc as cabc
import sys
import typing as typ
from pathlib import Path

import pytest

CMD_MOX_UNSUPPORTED = pytest.mark.skipif(
    sys.platform == "win32", reason="cmd-mox does not support Windows"
)

SPEC_TEXT = """\
Name:    super-analyzer
Version: 0.4.1
Release: 1%{?dist}
Summary: Secure, Unified, Powerful and Extensible Rust Android Analyzer.
License: GPLv3+

Source0: https://github.com/SUPERAndroidAnalyzer/super/archive/%{version}.tar.gz

%description
Secure, Unified, Powerful and Extensible Rust Android Analyzer.

%prep
%autosetup
"""

MANIFEST_TEXT = """\
[package]
name = "super-analyzer"
version = "0.4.1"

[lib]
name = "super"
path = "src/lib.rs"
"""


class CmdDouble(typ.Protocol):
    """Contract for cmd-mox doubles that record expectations and behaviour."""

    call_count: int

    def with_args(self, *args: str) -> typ.Self:
        """Set the expected argv for the double."""
        ...

    def returns(
        self,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        **_: object,
    ) -> typ.Self:
        """Provide canned output for the command invocation."""
        ...

    def runs(
        self, handler: cabc.Callable[[object], tuple[str, str, int]]
    ) -> typ.Self:
        """Execute a handler when the double is invoked."""
        ...


class CmdMoxEnvironment(typ.Protocol):
    """Subset of :class:`cmd_mox.EnvironmentManager` used in tests."""

    shim_dir: Path | None
    socket_path: Path | None


class CmdMox(typ.Protocol):
    """Typed façade for the cmd-mox pytest fixture used in tests."""

    environment: CmdMoxEnvironment

    def stub(self, command: str) -> CmdDouble:
        """Register a stubbed command double."""
        ...

    def replay(self) -> None:
        """Activate the recorded doubles."""
        ...

    def verify(self) -> None:
        """Assert that recorded expectations were satisfied."""
        ...


def write_project(root: Path, *, version: str = "0.4.1") -> Path:
    """Create a minimal analyzer checkout under ``root``."""
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "src" / "lib.rs").write_text("pub fn analyze() {}\n", encoding="utf-8")
    (root / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    (root / "Cargo.toml").write_text(
        MANIFEST_TEXT.replace("0.4.1", version), encoding="utf-8"
    )
    (root / "rpmbuild").mkdir(exist_ok=True)
    (root / "rpmbuild" / "super.spec").write_text(
        SPEC_TEXT.replace("0.4.1", version), encoding="utf-8"
    )
    for excluded in ("target/debug", ".git", "dist", "downloads", "results"):
        directory = root / excluded
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "marker").write_text("excluded\n", encoding="utf-8")
    return root


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Return a fresh analyzer checkout."""
    return write_project(tmp_path / "super")


@pytest.fixture(autouse=True)
def _clear_release_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's release settings out of the tests."""
    for name in (
        "TAG",
        "RELEASE_CONFIG",
        "RELEASE_CONTAINER_ENGINE",
        "RELEASE_REPORT",
        "RELEASE_LOG_LEVEL",
        "SOURCE_DATE_EPOCH",
    ):
        monkeypatch.delenv(name, raising=False)


if sys.platform != "win32":  # pragma: win32 no cover - windows lacks cmd-mox
    pytest_plugins = ("cmd_mox.pytest_plugin",)
else:

    @pytest.fixture
    def cmd_mox() -> typ.NoReturn:  # pragma: win32 no cover
        """Skip tests that rely on cmd-mox on Windows."""
        pytest.skip("cmd-mox does not support Windows")
        unreachable = "unreachable"
        raise RuntimeError(unreachable)
