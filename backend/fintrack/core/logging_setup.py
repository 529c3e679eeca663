"""Process-wide logging configuration for the API, worker and CLI entry points."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls only adjust the level."""
    resolved = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=resolved,
            format=LOG_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    root.setLevel(resolved)
