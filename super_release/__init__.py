"""Multi-distribution release packaging for the SUPER Android Analyzer."""

from __future__ import annotations

from .builders import BuildOutcome, build_package, run_build
from .ci import CiContext, dispatch
from .config import ReleaseConfig, load_config
from .errors import OutcomeStatus, ReleaseError
from .staging import prepare_source_archive

__all__ = [
    "BuildOutcome",
    "CiContext",
    "OutcomeStatus",
    "ReleaseConfig",
    "ReleaseError",
    "build_package",
    "dispatch",
    "load_config",
    "prepare_source_archive",
    "run_build",
]

__version__ = "0.1.0"
