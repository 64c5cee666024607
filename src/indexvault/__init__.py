"""Top-level package for indexvault."""

from importlib import metadata

__all__ = ["__version__"]

try:
    __version__ = metadata.version("indexvault")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.1.0"
