"""rerunner: re-run a script every time it changes."""

from __future__ import annotations

import importlib.metadata

_PACKAGE_NAME = "rerunner"


def get_current_version() -> str:
    """Return the installed version of rerunner."""
    try:
        return importlib.metadata.version(_PACKAGE_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"
