"""Logging setup for nixforge.

Modules use the standard pattern:

    import logging
    logger = logging.getLogger(__name__)

and the entry points call `setup_logging()` once. Everything goes to a
rotating file because writing to stderr would corrupt the TUI.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Max log file size: 5MB, keep 2 backups
_MAX_LOG_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> Path:
    """Configure file logging for the whole process.

    The root logger is set to WARNING to avoid noise from third-party libs.
    nixforge's own loggers are set to INFO, or DEBUG when verbose.

    Returns:
        The log file path in use.
    """
    if log_file is None:
        from ..config.settings import log_file_path

        log_file = log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        handler = RotatingFileHandler(
            log_file, maxBytes=_MAX_LOG_BYTES, backupCount=_BACKUP_COUNT
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.WARNING)

    level_name = os.environ.get("NIXFORGE_LOG_LEVEL", "INFO").upper()
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)
    logging.getLogger("nixforge").setLevel(level)

    return log_file
