"""RepoDash — async fetch coordination for a repository health dashboard."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__: str = version("repodash")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
