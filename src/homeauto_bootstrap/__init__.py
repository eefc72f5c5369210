"""homeauto-bootstrap - Idempotent provisioning for a home-automation host."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("homeauto-bootstrap")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts without metadata

__all__ = ["__version__"]
