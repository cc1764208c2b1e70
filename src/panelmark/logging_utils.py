"""Logging setup shared by the panelmark CLI and embedding hosts."""

from __future__ import annotations

import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "panelmark"


def resolve_level(log_level: int | str) -> int:
    """Turn a level name such as ``"debug"`` into its numeric value."""
    if isinstance(log_level, int):
        return log_level
    return getattr(logging, str(log_level).upper(), logging.INFO)


def configure_logging(
    log_level: int | str,
    log_file: Optional[str] = None,
    trace_mode: bool = False,
    root: bool = True,
) -> logging.Logger:
    """Install console (and optional file) handlers.

    Parameters
    ----------
    log_level : int | str
        Numeric logging level or string name (e.g., "INFO").
    log_file : str, optional
        Optional path to a log file for teeing log output.
    trace_mode : bool, default False
        When true, emit timestamps and logger names for debugging traces.
    root : bool, default True
        Configure the root logger (CLI use). When False only the ``panelmark``
        logger is configured, leaving a host application's handlers alone.

    Returns
    -------
    logging.Logger
        The configured logger instance.

    """
    resolved_level = resolve_level(log_level)

    logger = logging.getLogger() if root else logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolved_level)
    logger.handlers.clear()
    if not root:
        logger.propagate = False

    format_str = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s" if trace_mode else "%(levelname)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S" if trace_mode else None
    formatter = logging.Formatter(format_str, datefmt=date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(resolved_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(resolved_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            logger.info("Logging to file: %s", log_file)
        except OSError as exc:  # pragma: no cover - handled at runtime
            logger.warning("Could not create log file %s: %s", log_file, exc)

    return logger
