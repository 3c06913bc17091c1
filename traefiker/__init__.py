"""Traefiker: manage Traefik-routed services in a docker-compose file."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("traefiker")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "0.1.0"

__all__ = ["__version__"]
