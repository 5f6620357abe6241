"""Publish rustdoc output to GitHub Pages with ghp-import."""

from __future__ import annotations

import logging
import tempfile
import typing as typ
from pathlib import Path

from .cargo_utils import MANIFEST_NAME, lib_name, read_manifest
from .errors import ConfigurationError, OutcomeStatus
from .executors import Step, run_steps

if typ.TYPE_CHECKING:
    from .executors import Executor

__all__ = [
    "GHP_IMPORT_REPOSITORY",
    "pages_remote",
    "redirect_page",
    "upload_documentation",
    "write_redirect_page",
]

logger = logging.getLogger(__name__)

GHP_IMPORT_REPOSITORY = "https://github.com/davisp/ghp-import.git"
COMMIT_MESSAGE = "Documentation upload"


def redirect_page(library: str) -> str:
    """Return the ``index.html`` that forwards to the crate's documentation.

    Examples
    --------
    >>> redirect_page("super")
    '<meta http-equiv=refresh content=0;url=super/index.html>\\n'
    """
    return f"<meta http-equiv=refresh content=0;url={library}/index.html>\n"


def pages_remote(token: str, repo_slug: str) -> str:
    """Return the authenticated push URL for ``repo_slug``."""
    return f"https://{token}@github.com/{repo_slug}.git"


def write_redirect_page(doc_dir: Path, library: str) -> Path:
    """Write the landing page into ``doc_dir`` and return its path."""
    doc_dir.mkdir(parents=True, exist_ok=True)
    index = doc_dir / "index.html"
    index.write_text(redirect_page(library), encoding="utf-8")
    return index


def upload_documentation(
    executor: Executor, root: Path, *, token: str, repo_slug: str
) -> None:
    """Generate rustdoc for the crate and force-push it to ``gh-pages``.

    Raises
    ------
    ConfigurationError
        When the push token or repository slug is missing.
    """
    if not token:
        raise ConfigurationError.missing_env("GH_TOKEN")
    if not repo_slug:
        raise ConfigurationError.missing_env("TRAVIS_REPO_SLUG")

    manifest_path = root / MANIFEST_NAME
    library = lib_name(read_manifest(manifest_path), manifest_path)
    run_steps(
        executor,
        [
            Step(
                ("cargo", "rustdoc", "--", "--document-private-items"),
                OutcomeStatus.BUILD_ERROR,
                description="cargo rustdoc",
                cwd=root,
            )
        ],
    )
    doc_dir = root / "target" / "doc"
    write_redirect_page(doc_dir, library)

    with tempfile.TemporaryDirectory(prefix="ghp-import-") as tmp:
        checkout = Path(tmp) / "ghp-import"
        run_steps(
            executor,
            [
                Step(
                    ("git", "clone", GHP_IMPORT_REPOSITORY, checkout.as_posix()),
                    OutcomeStatus.DEPENDENCY_ERROR,
                    description="fetch ghp-import",
                ),
                Step(
                    (
                        "python3",
                        (checkout / "ghp_import.py").as_posix(),
                        "-n",
                        "-p",
                        "-f",
                        "-m",
                        COMMIT_MESSAGE,
                        "-r",
                        pages_remote(token, repo_slug),
                        doc_dir.relative_to(root).as_posix(),
                    ),
                    OutcomeStatus.BUILD_ERROR,
                    description="publish documentation",
                    cwd=root,
                    secrets=(token,),
                ),
            ],
        )
    logger.info("Uploaded documentation for %s", library)
