import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

# Third-party loggers that are too chatty at DEBUG.
_NOISY_LOGGERS = ("urllib3", "requests")


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> Optional[Path]:
    """Configure root logger with console and optional file handlers.

    Args:
        level: Log level name (INFO, DEBUG, ...). Unknown names fall back to INFO.
        log_dir: If provided, create a timestamped log file in this directory.

    Returns:
        Path of the log file, or None when logging to console only.
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    level_name = (level or "INFO").upper()
    if not isinstance(logging.getLevelName(level_name), int):
        level_name = "INFO"

    root = logging.getLogger()
    root.setLevel(level_name)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not log_dir:
        return None

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d__%H_%M_%S")
        log_file = log_dir / f"range-sync_{timestamp}.log"
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    except PermissionError as exc:
        root.error(
            "File logging disabled (permission error writing to %s). "
            "Ensure the directory is writable for uid=%s gid=%s. Error: %s",
            str(log_dir),
            os.getuid(),
            os.getgid(),
            exc,
        )
        return None
    except OSError as exc:
        root.error("File logging disabled (OS error creating log file under %s): %s", str(log_dir), exc)
        return None

    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.info("Logging to file: %s", log_file)
    return log_file
