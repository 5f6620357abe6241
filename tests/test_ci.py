"""Tests for :mod:`super_release.ci`."""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import pytest
import yaml
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from super_release.ci import (
    ACTIONS,
    CiContext,
    dispatch,
    make_container_factory,
)
from super_release.config import load_config
from super_release.errors import ConfigurationError
from super_release.executors import ContainerExecutor
from test_support.fake_executor import (
    DEBIAN_OS_RELEASE,
    FEDORA_OS_RELEASE,
    FakeContainer,
    FakeExecutor,
)

if typ.TYPE_CHECKING:
    from super_release.config import ReleaseConfig
    from super_release.distributions import Distribution

LINUX_STABLE = CiContext(os_name="linux", toolchain="stable")
CARGO_DEB = 'sh -c . "$HOME/.cargo/env" && cargo deb'


def _write_output(
    relative: str, name: str
) -> typ.Callable[[tuple[str, ...], Path | None], None]:
    def _effect(_argv: tuple[str, ...], cwd: Path | None) -> None:
        assert cwd is not None
        output = cwd / relative
        output.mkdir(parents=True, exist_ok=True)
        (output / name).write_bytes(b"payload")

    return _effect


def _rpmbuild_output(
    name: str,
) -> typ.Callable[[tuple[str, ...], Path | None], None]:
    def _effect(argv: tuple[str, ...], _cwd: Path | None) -> None:
        topdir = Path(argv[argv.index("--define") + 1].removeprefix("_topdir "))
        _write_output("RPMS/x86_64", name)(argv, topdir)

    return _effect


class ContainerRecorder:
    """Container factory handing out pre-configured fake containers."""

    def __init__(self, **overrides: dict[str, object]) -> None:
        self.overrides = overrides
        self.created: list[FakeContainer] = []

    def __call__(self, distro: Distribution, version: str) -> FakeContainer:
        """Return a fake container able to package ``distro``."""
        settings: dict[str, typ.Any] = {
            "ubuntu": {
                "os_release": DEBIAN_OS_RELEASE,
                "effects": {
                    CARGO_DEB: _write_output(
                        "target/debian", f"super-analyzer_{version}_amd64.deb"
                    )
                },
            },
            "debian": {
                "os_release": DEBIAN_OS_RELEASE,
                "effects": {
                    CARGO_DEB: _write_output(
                        "target/debian", f"super-analyzer_{version}_amd64.deb"
                    )
                },
            },
            "fedora": {
                "os_release": FEDORA_OS_RELEASE,
                "effects": {
                    "fedpkg": _write_output(
                        "x86_64", f"super-analyzer-{version}-1.fc28.x86_64.rpm"
                    )
                },
            },
        }.get(distro.name, {})
        settings.update(self.overrides.get(distro.name, {}))
        container = FakeContainer(
            name=f"{distro.name}-test",
            image=distro.image,
            env={"TAG": version},
            **settings,
        )
        self.created.append(container)
        return container


@pytest.fixture
def config(project_root: Path) -> ReleaseConfig:
    """Return the configuration of the sample checkout."""
    return load_config(project_root, environ={})


class TestDispatchGates:
    """Gating and unknown actions."""

    def test_unknown_action_is_a_successful_no_op(
        self, config: ReleaseConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Unrecognised actions run nothing and succeed."""
        executor = FakeExecutor()

        with caplog.at_level(logging.INFO):
            code = dispatch(
                "frobnicate", context=LINUX_STABLE, config=config, executor=executor
            )

        assert code == 0
        assert executor.calls == []
        assert "Unknown action 'frobnicate'" in caplog.text

    def test_test_ignored_requires_a_tag(
        self, config: ReleaseConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Without a release tag the ignored tests are skipped."""
        executor = FakeExecutor()

        with caplog.at_level(logging.INFO):
            code = dispatch(
                "test_ignored", context=CiContext(), config=config, executor=executor
            )

        assert code == 0
        assert executor.calls == []
        assert "release tag present gate not met" in caplog.text

    def test_test_ignored_with_tag(self, config: ReleaseConfig) -> None:
        """A tagged build runs the ignored tests."""
        executor = FakeExecutor()

        code = dispatch(
            "test_ignored",
            context=CiContext(tag="0.4.1"),
            config=config,
            executor=executor,
        )

        assert code == 0
        assert executor.lines == ["cargo test --verbose -- --ignored"]
        assert executor.calls[0].cwd == config.root

    @pytest.mark.parametrize(
        "context",
        [
            CiContext(os_name="osx", toolchain="stable"),
            CiContext(os_name="linux", toolchain="nightly"),
        ],
        ids=["osx", "nightly"],
    )
    def test_fmt_run_requires_linux_stable(
        self, config: ReleaseConfig, context: CiContext
    ) -> None:
        """Formatting is only checked on the Linux stable job."""
        executor = FakeExecutor()

        code = dispatch("fmt_run", context=context, config=config, executor=executor)

        assert code == 0
        assert executor.calls == []

    def test_action_gates(self) -> None:
        """The gate table matches the CI matrix."""
        gates = {name: [g.name for g in a.gates] for name, a in ACTIONS.items()}

        assert gates["test"] == []
        assert gates["clippy_run"] == ["nightly toolchain"]
        assert gates["deploy"] == ["release tag present"]
        assert gates["upload_documentation"] == [
            "linux host",
            "stable toolchain",
            "not a pull request",
            "documentation branch",
        ]


class TestHostActions:
    """Actions that run cargo on the CI host."""

    def test_failing_command_exit_status_propagates(
        self, config: ReleaseConfig
    ) -> None:
        """The first failing command decides the exit status."""
        executor = FakeExecutor(failures={"cargo test": 101})

        code = dispatch("test", context=CiContext(), config=config, executor=executor)

        assert code == 101
        assert executor.lines == ["cargo test --verbose"]

    def test_build_passes_features(self, config: ReleaseConfig) -> None:
        """FEATURES are forwarded to cargo build."""
        executor = FakeExecutor()

        dispatch(
            "build",
            context=CiContext(features="unstable"),
            config=config,
            executor=executor,
        )

        assert executor.lines == ["cargo build --verbose --features unstable"]

    def test_fmt_run_checks_formatting(self, config: ReleaseConfig) -> None:
        """rustfmt runs in check mode."""
        executor = FakeExecutor()

        dispatch("fmt_run", context=LINUX_STABLE, config=config, executor=executor)

        assert executor.lines == ["cargo fmt --verbose -- --check"]

    @pytest.mark.parametrize(
        ("context", "expected"),
        [
            (LINUX_STABLE, ["rustup component add rustfmt"]),
            (
                CiContext(os_name="linux", toolchain="nightly"),
                ["rustup component add clippy"],
            ),
            (CiContext(os_name="osx", toolchain="beta"), []),
        ],
        ids=["linux-stable", "nightly", "osx-beta"],
    )
    def test_install_deps_follows_toolchain(
        self, config: ReleaseConfig, context: CiContext, expected: list[str]
    ) -> None:
        """Each tool is installed only where its later action runs."""
        executor = FakeExecutor()

        code = dispatch(
            "install_deps", context=context, config=config, executor=executor
        )

        assert code == 0
        assert executor.lines == expected

    def test_clippy_install_failure_is_tolerated(
        self, config: ReleaseConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A nightly without clippy does not fail install_deps."""
        executor = FakeExecutor(failures={"rustup component add clippy": 1})

        with caplog.at_level(logging.WARNING):
            code = dispatch(
                "install_deps",
                context=CiContext(toolchain="nightly"),
                config=config,
                executor=executor,
            )

        assert code == 0
        assert "Could not install clippy" in caplog.text

    @pytest.mark.parametrize(
        ("probe", "expected"),
        [
            (0, ["cargo clippy --version", "cargo clippy --verbose"]),
            (101, ["cargo clippy --version"]),
        ],
        ids=["available", "missing"],
    )
    def test_clippy_run_probes_first(
        self, config: ReleaseConfig, probe: int, expected: list[str]
    ) -> None:
        """clippy only runs when the toolchain provides it."""
        executor = FakeExecutor(probes={"cargo clippy --version": probe})

        code = dispatch(
            "clippy_run",
            context=CiContext(toolchain="nightly"),
            config=config,
            executor=executor,
        )

        assert code == 0
        assert executor.lines == expected

    @pytest.mark.parametrize(
        ("context", "ran"),
        [
            (
                CiContext(os_name="linux", toolchain="stable", branch="develop"),
                True,
            ),
            (
                CiContext(os_name="linux", toolchain="stable", branch="feature"),
                False,
            ),
            (
                CiContext(
                    os_name="linux",
                    toolchain="stable",
                    branch="develop",
                    pull_request=True,
                ),
                False,
            ),
        ],
        ids=["develop", "other-branch", "pull-request"],
    )
    def test_documentation_gate(
        self, config: ReleaseConfig, context: CiContext, *, ran: bool
    ) -> None:
        """Docs are published only from non-PR builds of the docs branch."""
        executor = FakeExecutor()
        context = CiContext(
            os_name=context.os_name,
            toolchain=context.toolchain,
            branch=context.branch,
            pull_request=context.pull_request,
            gh_token="secret-token",
            repo_slug="SUPERAndroidAnalyzer/super",
        )

        code = dispatch(
            "upload_documentation", context=context, config=config, executor=executor
        )

        assert code == 0
        assert bool(executor.calls) is ran

    def test_documentation_without_token_is_a_configuration_error(
        self, config: ReleaseConfig
    ) -> None:
        """Publishing without GH_TOKEN exits with the configuration status."""
        executor = FakeExecutor()
        context = CiContext(os_name="linux", toolchain="stable", branch="develop")

        code = dispatch(
            "upload_documentation", context=context, config=config, executor=executor
        )

        assert code == 2
        assert executor.calls == []


class TestPackagingActions:
    """Container-backed packaging actions."""

    def test_setup_docker_pulls_dist_test_images(self, config: ReleaseConfig) -> None:
        """Images for the packaging smoke test are pulled up front."""
        executor = FakeExecutor()

        code = dispatch(
            "setup_docker", context=LINUX_STABLE, config=config, executor=executor
        )

        assert code == 0
        assert executor.lines == [
            "docker pull ubuntu:latest",
            "docker pull fedora:latest",
        ]
        assert config.release_path.is_dir()

    def test_dist_test_packages_each_platform(
        self, config: ReleaseConfig, tmp_path: Path
    ) -> None:
        """Every dist_test distribution yields one artifact and a report entry."""
        recorder = ContainerRecorder()
        report = tmp_path / "report.yml"

        code = dispatch(
            "dist_test",
            context=LINUX_STABLE,
            config=config,
            executor=FakeExecutor(),
            container_factory=recorder,
            report_path=report,
        )

        assert code == 0
        assert sorted(p.name for p in config.release_path.iterdir()) == [
            "super-analyzer-0.4.1-1.fc28.x86_64.rpm",
            "super-analyzer_0.4.1_ubuntu_amd64.deb",
        ]
        assert [c.name for c in recorder.created] == ["ubuntu-test", "fedora-test"]
        assert all(c.started and c.removed for c in recorder.created)
        document = yaml.safe_load(report.read_text(encoding="utf-8"))
        assert document["action"] == "dist_test"
        assert document["succeeded"] is True
        assert [o["distribution"] for o in document["outcomes"]] == [
            "ubuntu",
            "fedora",
        ]
        assert document["outcomes"][0]["artifact"] == (
            "releases/super-analyzer_0.4.1_ubuntu_amd64.deb"
        )

    def test_dist_test_single_platform(self, config: ReleaseConfig) -> None:
        """A platform argument restricts packaging to that distribution."""
        recorder = ContainerRecorder()

        code = dispatch(
            "dist_test",
            "fedora",
            context=LINUX_STABLE,
            config=config,
            executor=FakeExecutor(),
            container_factory=recorder,
        )

        assert code == 0
        assert [c.name for c in recorder.created] == ["fedora-test"]

    def test_unknown_platform_is_a_configuration_error(
        self, config: ReleaseConfig
    ) -> None:
        """Naming an unsupported distribution exits with status 2."""
        recorder = ContainerRecorder()

        code = dispatch(
            "dist_test",
            "gentoo",
            context=LINUX_STABLE,
            config=config,
            executor=FakeExecutor(),
            container_factory=recorder,
        )

        assert code == 2
        assert recorder.created == []

    def test_packaging_failure_stops_later_platforms(
        self, config: ReleaseConfig, tmp_path: Path
    ) -> None:
        """A failed build is reported and the next distribution never starts."""
        recorder = ContainerRecorder(ubuntu={"failures": {CARGO_DEB: 3}})
        report = tmp_path / "report.yml"

        code = dispatch(
            "dist_test",
            context=LINUX_STABLE,
            config=config,
            executor=FakeExecutor(),
            container_factory=recorder,
            report_path=report,
        )

        assert code == 3
        assert [c.name for c in recorder.created] == ["ubuntu-test"]
        assert recorder.created[0].removed
        document = yaml.safe_load(report.read_text(encoding="utf-8"))
        assert document["succeeded"] is False
        assert document["outcomes"] == [
            {
                "distribution": "ubuntu",
                "version": "0.4.1",
                "status": "packaging-error",
                "exit_code": 3,
                "message": document["outcomes"][0]["message"],
            }
        ]

    @pytest.mark.parametrize(
        ("error", "exit_code"),
        [
            (ProcessExecutionError(["docker", "run"], 125, "", "no image"), 125),
            (CommandNotFound("docker", []), 127),
        ],
        ids=["engine-error", "engine-missing"],
    )
    def test_container_start_failure_is_a_dependency_error(
        self,
        config: ReleaseConfig,
        tmp_path: Path,
        error: Exception,
        exit_code: int,
    ) -> None:
        """A container that cannot start is classified as a dependency error."""
        recorder = ContainerRecorder(ubuntu={"start_error": error})
        report = tmp_path / "report.yml"

        code = dispatch(
            "dist_test",
            context=LINUX_STABLE,
            config=config,
            executor=FakeExecutor(),
            container_factory=recorder,
            report_path=report,
        )

        assert code == exit_code
        assert recorder.created[0].calls == []
        document = yaml.safe_load(report.read_text(encoding="utf-8"))
        assert document["outcomes"][0]["status"] == "dependency-error"

    @pytest.mark.parametrize("action", ["deploy", "before_deploy"])
    def test_deploy_packages_every_distribution(
        self, config: ReleaseConfig, tmp_path: Path, action: str
    ) -> None:
        """A tagged deploy pulls and packages all four distributions."""
        rpm = "super-analyzer-0.5.0-1.el7.x86_64.rpm"
        recorder = ContainerRecorder(
            centos={"effects": {"rpmbuild": _rpmbuild_output(rpm)}}
        )
        for manifest in ("Cargo.toml", "rpmbuild/super.spec"):
            path = config.root / manifest
            path.write_text(
                path.read_text(encoding="utf-8").replace("0.4.1", "0.5.0"),
                encoding="utf-8",
            )
        executor = FakeExecutor()
        report = tmp_path / "deploy.yml"

        code = dispatch(
            action,
            context=CiContext(tag="v0.5.0"),
            config=config,
            executor=executor,
            container_factory=recorder,
            report_path=report,
        )

        assert code == 0
        assert executor.lines == [
            "docker pull centos:7",
            "docker pull fedora:latest",
            "docker pull debian:latest",
            "docker pull ubuntu:latest",
        ]
        assert [c.env["TAG"] for c in recorder.created] == ["0.5.0"] * 4
        assert sorted(p.name for p in config.release_path.iterdir()) == [
            "super-analyzer-0.5.0-1.el7.x86_64.rpm",
            "super-analyzer-0.5.0-1.fc28.x86_64.rpm",
            "super-analyzer_0.5.0_debian_amd64.deb",
            "super-analyzer_0.5.0_ubuntu_amd64.deb",
        ]
        document = yaml.safe_load(report.read_text(encoding="utf-8"))
        assert document["action"] == "deploy"

    def test_deploy_image_pull_failure(self, config: ReleaseConfig) -> None:
        """A failed pull aborts the deploy before any container starts."""
        recorder = ContainerRecorder()
        executor = FakeExecutor(failures={"docker pull fedora": 1})

        code = dispatch(
            "deploy",
            context=CiContext(tag="0.4.1"),
            config=config,
            executor=executor,
            container_factory=recorder,
        )

        assert code == 1
        assert recorder.created == []


def test_container_factory_uses_configuration(config: ReleaseConfig) -> None:
    """Containers mount the checkout and carry the version as TAG."""
    factory = make_container_factory(config)

    container = factory(config.distribution("fedora"), "0.4.1")

    assert isinstance(container, ContainerExecutor)
    assert container.image == "fedora:latest"
    assert container.env == {"TAG": "0.4.1"}
    assert container.host_root == config.root
    assert container.name.startswith("fedora-")


class TestCiContext:
    """Tests for :meth:`CiContext.from_env`."""

    def test_reads_travis_variables(self) -> None:
        """Travis-style variables populate the context."""
        context = CiContext.from_env(
            {
                "TRAVIS_OS_NAME": "Linux",
                "TRAVIS_RUST_VERSION": "stable",
                "TRAVIS_PULL_REQUEST": "42",
                "TRAVIS_BRANCH": "develop",
                "TRAVIS_TAG": "0.4.1",
                "TRAVIS_BUILD_DIR": "/home/travis/build/super",
                "TRAVIS_REPO_SLUG": "SUPERAndroidAnalyzer/super",
                "GH_TOKEN": "token",
                "FEATURES": "unstable",
            }
        )

        assert context.os_name == "linux"
        assert context.pull_request is True
        assert context.has_tag
        assert context.build_dir == Path("/home/travis/build/super")
        assert context.features == "unstable"
        assert "token" not in repr(context)

    def test_empty_environment(self) -> None:
        """Missing variables leave the defaults in place."""
        context = CiContext.from_env({})

        assert context == CiContext()
        assert not context.has_tag

    def test_invalid_pull_request_value(self) -> None:
        """An unparseable TRAVIS_PULL_REQUEST is a configuration error."""
        with pytest.raises(ConfigurationError, match="TRAVIS_PULL_REQUEST"):
            CiContext.from_env({"TRAVIS_PULL_REQUEST": "maybe"})
