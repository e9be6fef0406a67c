"""
Logging setup for the weighment service.

Console output always; a size-rotated file (plus a separate error file)
when a log directory is configured.
"""

import logging
import logging.handlers
import os
import sys
from typing import Optional

LOG_MAX_BYTES: int = 10 * 1024 * 1024
LOG_BACKUP_COUNT: int = 5

_DETAILED_FMT = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
_CONSOLE_FMT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the root logger once. Later calls only adjust the level."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return root

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(_CONSOLE_FMT, _DATEFMT))
    root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        detailed = logging.Formatter(_DETAILED_FMT, _DATEFMT)

        main_file = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "weighment.log"),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        main_file.setFormatter(detailed)
        root.addHandler(main_file)

        error_file = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "weighment_error.log"),
            maxBytes=LOG_MAX_BYTES // 2,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(detailed)
        root.addHandler(error_file)

    # uvicorn access lines are noise next to transaction logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _configured = True
    return root
