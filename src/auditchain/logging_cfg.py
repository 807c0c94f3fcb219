"""Logging setup shared by the CLI and embedding services."""

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(level: str | int = "INFO", log_file: Path | None = None) -> None:
    """Configure the root logger to log to stderr and, optionally, a file."""
    level_num = (
        getattr(logging, str(level).upper(), logging.INFO) if isinstance(level, str) else level
    )

    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)

    logging.basicConfig(level=level_num, format=LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logging.getLogger().addHandler(fh)
