from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# Installs Logger.trace before any transport logs raw traffic.
from elmdiag import logging as _logging  # noqa: F401


def __getattr__(name: str) -> str:
    if name != "__version__":
        raise AttributeError(name)
    try:
        return version("elmdiag")
    except PackageNotFoundError:
        return "0.0.0"
