"""Logging configuration for the badge issuer."""

import logging
import sys


class ContainerFormatter(logging.Formatter):
    """Single-line formatter.

    WARNING and above get [filename:lineno] appended; tracebacks are included
    when the record carries exc_info.
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(fmt=self._BASE_FMT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


def setup_logging(level_name: str) -> None:
    """Send all log records to stderr at the given level (debug/info/warning/error)."""
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # PIL logs every chunk it parses at DEBUG
    logging.getLogger('PIL').setLevel(max(level, logging.INFO))
