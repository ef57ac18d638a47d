"""
Logging configuration for mediashelf.

Library modules only create loggers; handlers are attached here, by the
CLI (``--verbose``) and by an open Catalog (operations log).
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "mediashelf-ops.log"


def verbose_requested() -> bool:
    """True when MEDIASHELF_VERBOSE is set to a truthy value."""
    return os.environ.get("MEDIASHELF_VERBOSE", "").lower() in ("1", "true", "yes", "on")


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("mediashelf").setLevel(logging.DEBUG)


def configure_ops_log(store_path):
    """Attach a persistent operations log for a catalog store.

    Writes to {store_path}/mediashelf-ops.log using a rotating file handler
    (1MB max, 3 backups). Every mutation logs one INFO line there.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    package_logger = logging.getLogger("mediashelf")
    package_logger.addHandler(handler)
    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    if handler is None:
        return
    logging.getLogger("mediashelf").removeHandler(handler)
    handler.close()
