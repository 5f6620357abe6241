"""CI helper dispatcher: one entry point for every CI job step.

Each action is gated on named predicates over the CI context. An action
whose gates do not all pass logs the first failing gate and succeeds
without side effects; an unknown action does the same. The first failing
command aborts the action and its exit status becomes the dispatcher's.

Examples
--------
Run the ``dist_test`` packaging check for Fedora only::

    super-release ci dist_test fedora
"""

from __future__ import annotations

import dataclasses as dc
import logging
import os
import typing as typ
from pathlib import Path

from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from . import coverage, docs, tasks
from .bool_utils import is_pull_request
from .builders import BuildOutcome, run_build
from .cargo_utils import manifest_version
from .config import resolve_version
from .errors import (
    ConfigurationError,
    OutcomeStatus,
    ReleaseError,
    error_for_status,
)
from .executors import ContainerExecutor, Executor, Step, container_name, run_steps
from .report import write_report

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import ReleaseConfig
    from .distributions import Distribution

__all__ = [
    "ACTIONS",
    "ALIASES",
    "Action",
    "ActionRun",
    "CiContext",
    "Gate",
    "dispatch",
    "is_known_action",
    "make_container_factory",
    "package_in_containers",
]

logger = logging.getLogger(__name__)


class Container(Executor, typ.Protocol):
    """An executor backed by a container that must be started and removed."""

    name: str

    def start(self) -> None:
        """Launch the container."""
        ...

    def remove(self) -> None:
        """Force-remove the container."""
        ...


ContainerFactory = typ.Callable[["Distribution", str], Container]


@dc.dataclass(frozen=True, slots=True)
class CiContext:
    """CI facts read once from the environment."""

    os_name: str = ""
    toolchain: str = ""
    pull_request: bool = False
    branch: str = ""
    tag: str = ""
    build_dir: Path | None = None
    repo_slug: str = ""
    gh_token: str = dc.field(default="", repr=False)
    codecov_token: str = dc.field(default="", repr=False)
    features: str = ""

    @classmethod
    def from_env(cls, environ: cabc.Mapping[str, str] | None = None) -> CiContext:
        """Build a context from Travis-style environment variables."""
        env = os.environ if environ is None else environ

        def _get(name: str) -> str:
            return env.get(name, "").strip()

        try:
            pull_request = is_pull_request(env.get("TRAVIS_PULL_REQUEST"))
        except ValueError as exc:
            msg = f"TRAVIS_PULL_REQUEST: {exc}"
            raise ConfigurationError(msg) from exc
        build_dir = _get("TRAVIS_BUILD_DIR")
        return cls(
            os_name=_get("TRAVIS_OS_NAME").lower(),
            toolchain=_get("TRAVIS_RUST_VERSION").lower(),
            pull_request=pull_request,
            branch=_get("TRAVIS_BRANCH"),
            tag=_get("TRAVIS_TAG"),
            build_dir=Path(build_dir) if build_dir else None,
            repo_slug=_get("TRAVIS_REPO_SLUG"),
            gh_token=_get("GH_TOKEN"),
            codecov_token=_get("CODECOV_TOKEN"),
            features=_get("FEATURES"),
        )

    @property
    def has_tag(self) -> bool:
        """Return whether this build is for a release tag."""
        return bool(self.tag)


@dc.dataclass(frozen=True, slots=True)
class Gate:
    """A named precondition an action requires."""

    name: str
    check: cabc.Callable[[CiContext, ReleaseConfig], bool]

    def passes(self, context: CiContext, config: ReleaseConfig) -> bool:
        """Return whether the gate admits this build."""
        return self.check(context, config)


LINUX = Gate("linux host", lambda ctx, _cfg: ctx.os_name == "linux")
STABLE = Gate("stable toolchain", lambda ctx, _cfg: ctx.toolchain == "stable")
NIGHTLY = Gate("nightly toolchain", lambda ctx, _cfg: ctx.toolchain == "nightly")
TAGGED = Gate("release tag present", lambda ctx, _cfg: ctx.has_tag)
NOT_PULL_REQUEST = Gate("not a pull request", lambda ctx, _cfg: not ctx.pull_request)
DOCS_BRANCH = Gate(
    "documentation branch", lambda ctx, cfg: ctx.branch == cfg.docs_branch
)


def failed_gate(
    gates: cabc.Iterable[Gate], context: CiContext, config: ReleaseConfig
) -> Gate | None:
    """Return the first gate in ``gates`` that does not pass."""
    for gate in gates:
        if not gate.passes(context, config):
            return gate
    return None


@dc.dataclass(slots=True)
class ActionRun:
    """Everything an action handler may touch."""

    action: str
    context: CiContext
    config: ReleaseConfig
    executor: Executor
    container_factory: ContainerFactory
    platform: str | None = None
    outcomes: list[BuildOutcome] = dc.field(default_factory=list)

    @property
    def root(self) -> Path:
        """Return the project checkout the action works on."""
        return self.config.root

    def gates_pass(self, purpose: str, *gates: Gate) -> bool:
        """Return whether ``gates`` pass, logging the one that does not."""
        gate = failed_gate(gates, self.context, self.config)
        if gate is None:
            return True
        logger.info("Skipping %s: %s gate not met", purpose, gate.name)
        return False


@dc.dataclass(frozen=True, slots=True)
class Action:
    """A dispatcher action: its gates and the task run once they pass."""

    name: str
    handler: cabc.Callable[[ActionRun], None]
    gates: tuple[Gate, ...] = ()


def _platforms(run: ActionRun, defaults: cabc.Iterable[str]) -> list[Distribution]:
    if run.platform:
        return [run.config.distribution(run.platform)]
    return [run.config.distribution(name) for name in defaults]


def _pull_images(run: ActionRun, distros: cabc.Iterable[Distribution]) -> None:
    engine = run.config.container_engine
    run_steps(
        run.executor,
        [
            Step(
                (engine, "pull", distro.image),
                OutcomeStatus.DEPENDENCY_ERROR,
                description=f"pull {distro.image}",
            )
            for distro in distros
        ],
    )


def make_container_factory(config: ReleaseConfig) -> ContainerFactory:
    """Return a factory creating one disposable container per distribution."""

    def _factory(distro: Distribution, version: str) -> Container:
        return ContainerExecutor(
            engine=config.container_engine,
            image=distro.image,
            host_root=config.root,
            mount_point=config.container_root,
            env={"TAG": version},
            name=container_name(distro.name),
        )

    return _factory


def _package_in_container(
    distro: Distribution,
    config: ReleaseConfig,
    version: str,
    container_factory: ContainerFactory,
) -> BuildOutcome:
    container = container_factory(distro, version)
    try:
        container.start()
    except (ProcessExecutionError, CommandNotFound) as exc:
        if isinstance(exc, CommandNotFound):
            exit_code = 127
        else:
            exit_code = int(exc.retcode or 1)
        message = f"could not start a {distro.name} container: {exc}"
        logger.error("%s", message)  # noqa: TRY400
        return BuildOutcome(
            distribution=distro.name,
            status=OutcomeStatus.DEPENDENCY_ERROR,
            version=version,
            message=message,
            exit_code=exit_code,
        )
    try:
        return run_build(distro, config, version, container)
    finally:
        container.remove()


def package_in_containers(
    distros: cabc.Iterable[Distribution],
    config: ReleaseConfig,
    version: str,
    container_factory: ContainerFactory,
) -> list[BuildOutcome]:
    """Package each distribution in its own container, stopping at a failure."""
    outcomes: list[BuildOutcome] = []
    for distro in distros:
        outcome = _package_in_container(distro, config, version, container_factory)
        outcomes.append(outcome)
        if not outcome.ok:
            break
    return outcomes


def _raise_for_outcome(outcome: BuildOutcome) -> None:
    if outcome.ok:
        return
    raise error_for_status(outcome.status)(
        outcome.message, exit_code=outcome.exit_code
    )


def _install_deps(run: ActionRun) -> None:
    if run.gates_pass("rustfmt installation", LINUX, STABLE):
        tasks.install_rustfmt(run.executor, run.root)
    if run.gates_pass("clippy installation", NIGHTLY):
        tasks.install_clippy(run.executor, run.root)


def _test(run: ActionRun) -> None:
    tasks.test(run.executor, run.root)


def _test_ignored(run: ActionRun) -> None:
    tasks.test(run.executor, run.root, ignored=True)


def _build(run: ActionRun) -> None:
    tasks.build(run.executor, run.root, features=run.context.features)


def _fmt_run(run: ActionRun) -> None:
    tasks.fmt_check(run.executor, run.root)


def _clippy_run(run: ActionRun) -> None:
    if not tasks.clippy_available(run.executor, run.root):
        logger.info("Skipping clippy_run: clippy is not available")
        return
    tasks.lint(run.executor, run.root)


def _upload_code_coverage(run: ActionRun) -> None:
    coverage.upload_code_coverage(
        run.executor, run.root, token=run.context.codecov_token
    )


def _upload_documentation(run: ActionRun) -> None:
    docs.upload_documentation(
        run.executor,
        run.root,
        token=run.context.gh_token,
        repo_slug=run.context.repo_slug,
    )


def _setup_docker(run: ActionRun) -> None:
    run.config.release_path.mkdir(parents=True, exist_ok=True)
    _pull_images(run, _platforms(run, run.config.dist_test))


def _run_packaging(run: ActionRun, distros: list[Distribution], version: str) -> None:
    run.config.release_path.mkdir(parents=True, exist_ok=True)
    run.outcomes.extend(
        package_in_containers(distros, run.config, version, run.container_factory)
    )
    if run.outcomes:
        _raise_for_outcome(run.outcomes[-1])


def _dist_test(run: ActionRun) -> None:
    distros = _platforms(run, run.config.dist_test)
    version = resolve_version(
        run.context.tag, fallback=lambda: manifest_version(run.root)
    )
    _run_packaging(run, distros, version)


def _deploy(run: ActionRun) -> None:
    distros = _platforms(run, run.config.distributions)
    version = resolve_version(run.context.tag)
    _pull_images(run, distros)
    _run_packaging(run, distros, version)


ACTIONS: dict[str, Action] = {
    action.name: action
    for action in (
        Action("install_deps", _install_deps),
        Action("test", _test),
        Action("test_ignored", _test_ignored, (TAGGED,)),
        Action("build", _build),
        Action("fmt_run", _fmt_run, (LINUX, STABLE)),
        Action("clippy_run", _clippy_run, (NIGHTLY,)),
        Action("upload_code_coverage", _upload_code_coverage, (LINUX, STABLE)),
        Action(
            "upload_documentation",
            _upload_documentation,
            (LINUX, STABLE, NOT_PULL_REQUEST, DOCS_BRANCH),
        ),
        Action("setup_docker", _setup_docker, (LINUX, STABLE)),
        Action("dist_test", _dist_test, (LINUX, STABLE)),
        Action("deploy", _deploy, (TAGGED,)),
    )
}

ALIASES = {"before_deploy": "deploy"}


def is_known_action(action: str) -> bool:
    """Return whether ``action`` names an action or one of its aliases."""
    return ALIASES.get(action, action) in ACTIONS


def dispatch(
    action: str,
    platform: str | None = None,
    *,
    context: CiContext,
    config: ReleaseConfig,
    executor: Executor,
    container_factory: ContainerFactory | None = None,
    report_path: Path | None = None,
) -> int:
    """Run ``action`` if its gates pass and return the exit status.

    Parameters
    ----------
    action
        Action name; unknown names are accepted and do nothing.
    platform
        Restricts ``setup_docker``, ``dist_test`` and ``deploy`` to one
        distribution.
    context
        CI facts, normally :meth:`CiContext.from_env`.
    config
        Project configuration. Its root should be the CI build directory.
    executor
        Runs host-side commands.
    container_factory
        Creates the per-distribution containers; defaults to
        :func:`make_container_factory`.
    report_path
        When set, a YAML build report is written there after packaging
        actions, whether or not they succeeded.

    Returns
    -------
    int
        ``0`` when the action succeeded, was skipped or is unknown; otherwise
        the exit status of the first failing command.
    """
    if not is_known_action(action):
        logger.info("Unknown action %r; nothing to do", action)
        return 0
    name = ALIASES.get(action, action)
    entry = ACTIONS[name]
    run = ActionRun(
        action=name,
        context=context,
        config=config,
        executor=executor,
        container_factory=container_factory or make_container_factory(config),
        platform=platform or None,
    )
    if not run.gates_pass(name, *entry.gates):
        return 0

    logger.info("Running %s", name)
    try:
        entry.handler(run)
    except ReleaseError as exc:
        logger.error("%s failed: %s", name, exc)  # noqa: TRY400
        return exc.exit_code
    finally:
        if report_path is not None and run.outcomes:
            write_report(report_path, run.outcomes, action=name, root=config.root)
    return 0

