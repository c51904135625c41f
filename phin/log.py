# phin/log.py
import logging
import sys
from pathlib import Path
from typing import Optional, Union


class ShortNameFormatter(logging.Formatter):
    """Formatter that drops the package prefix from logger names."""

    def __init__(self, prefix: str = "phin", fmt: Optional[str] = None):
        self.prefix = prefix
        if fmt is None:
            fmt = "[%(levelname)s] %(shortname)s: %(message)s"
        super().__init__(fmt)

    def format(self, record):
        name = getattr(record, "name", "")
        if self.prefix and name.startswith(self.prefix + "."):
            record.shortname = name[len(self.prefix) + 1:]
        else:
            record.shortname = name or "unknown"
        return super().format(record)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    file_level: Union[int, str] = logging.DEBUG,
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the ``phin`` logger.

    Args:
        level: console level, name or number
        log_file: optional path; parent directories are created
        file_level: level for the file handler

    Returns:
        the configured ``phin`` logger
    """
    logger = logging.getLogger("phin")
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_as_level(level))
    console.setFormatter(ShortNameFormatter())
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, mode="a", encoding="utf-8")
        fh.setLevel(_as_level(file_level))
        fh.setFormatter(ShortNameFormatter())
        logger.addHandler(fh)

    logger.propagate = False
    return logger


def _as_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level {level!r}")
    return value
