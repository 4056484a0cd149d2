"""Top-level package for murmur."""

__version__ = "0.3.0"

from . import config, service, storage, transcriber  # noqa: E402

__all__ = ["config", "service", "storage", "transcriber", "__version__"]
