"""
Logging configuration for the journal.

Quiet by default: warnings go to stderr, debug output only on request.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "cryptjournal"


def configure_quiet_mode(quiet: bool = True):
    """
    Show only warnings and errors from the journal on stderr.

    Args:
        quiet: If True, suppress Python warnings and info-level chatter.
    """
    if quiet:
        warnings.filterwarnings("ignore")

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in pkg_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        pkg_logger.addHandler(handler)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    # Re-enable warnings
    warnings.filterwarnings("default")

    # Configure root logger for debug output
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

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)


def configure_ops_log(config_dir):
    """Configure a persistent operations log.

    Writes to {config_dir}/journal-ops.log using a rotating file handler
    (1MB max, 3 backups). Records ids and outcomes, never entry content.
    Returns the handler so it can be removed on close().
    """
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    log_path = config_dir / "journal-ops.log"
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

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.addHandler(handler)
    # Ensure the package logger allows INFO through even in quiet mode
    if pkg_logger.level == logging.NOTSET or pkg_logger.level > logging.INFO:
        pkg_logger.setLevel(logging.INFO)

    return handler
