"""Top-level package for the simfleet device fleet monitor."""

from importlib import metadata

from .app.monitor import main, run

try:
    __version__ = metadata.version("simfleet")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


__all__ = ["__version__", "main", "run"]
