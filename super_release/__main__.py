"""Allow ``python -m super_release``."""

from __future__ import annotations

from .cli import main

main()
