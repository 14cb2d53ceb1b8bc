"""
Logging setup shared by the command-line entry points.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, List

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'

# Handlers installed by setup_logging, removed again on the next call
_installed_handlers = []


def setup_logging(log_level: str = 'INFO', log_file: Optional[str] = None,
                  quiet_libs: Optional[List[str]] = None, max_bytes: int = 10_000_000,
                  backup_count: int = 3):
    """
    Configure the root logger (idempotent).

    Args:
        log_level: 'DEBUG', 'INFO', 'WARNING', 'ERROR' or 'CRITICAL'
        log_file: Optional path of a rotating log file
        quiet_libs: Library loggers lowered to WARNING
        max_bytes: Rotation size of the log file
        backup_count: Rotated files kept

    Returns:
        list: Handlers that were installed
    """
    level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    _installed_handlers.append(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        root.addHandler(handler)

    for lib in quiet_libs or ['matplotlib', 'PIL']:
        logging.getLogger(lib).setLevel(logging.WARNING)
    logging.captureWarnings(True)

    return list(_installed_handlers)
