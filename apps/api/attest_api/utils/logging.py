"""Logging setup shared by the API, CLI and worker."""

import logging
import sys

JSON_FORMAT = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}'
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", fmt: str = "json", stream=None) -> None:
    """Configure root logging.

    CLI commands log to stderr so the final JSON summary line on stdout stays
    machine-parseable.
    """
    logging.basicConfig(
        level=level,
        format=JSON_FORMAT if fmt == "json" else TEXT_FORMAT,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        force=True,
    )
