"""
Logging configuration for pyvdyp.

All package loggers live under the ``pyvdyp`` namespace so a single call to
:func:`setup_logging` controls the whole engine. Console output goes through
rich when requested.
"""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

__all__ = [
    'PACKAGE_LOGGER',
    'get_logger',
    'setup_logging',
    'log_stage',
    'log_growth_summary',
]

PACKAGE_LOGGER = 'pyvdyp'

_PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str) -> logging.Logger:
    """Get a logger within the pyvdyp namespace.

    Args:
        name: Module name, usually ``__name__``

    Returns:
        Logger instance
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + '.'):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(level: str = 'INFO', rich_output: bool = True,
                  log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package logger.

    Existing handlers on the package logger are closed and replaced, so
    calling this more than once is safe.

    Args:
        level: Logging level name ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        rich_output: Use a rich console handler instead of a plain stream handler
        log_file: Optional file that receives a plain-text copy of the log

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    for old_handler in list(logger.handlers):
        logger.removeHandler(old_handler)
        old_handler.close()

    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True), show_path=False, rich_tracebacks=True
        )
        handler.setFormatter(logging.Formatter('%(message)s'))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    logger.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
        logger.addHandler(file_handler)

    return logger


def log_stage(logger: logging.Logger, polygon: str, step: str) -> None:
    """Log entry into a pipeline stage at DEBUG level."""
    logger.debug("%s: executing %s", polygon, step)


def log_growth_summary(logger: logging.Logger, polygon: str, year: int,
                       dominant_height_growth: float, basal_area_growth: float) -> None:
    """Log a one-line summary of a grown year.

    Args:
        logger: Logger to write to
        polygon: Polygon description
        year: Year that was produced
        dominant_height_growth: Primary species dominant height growth (m)
        basal_area_growth: Primary layer basal area growth (m2/ha)
    """
    logger.info(
        "%s: grew to %d (dominant height +%.3f m, basal area +%.3f m2/ha)",
        polygon, year, dominant_height_growth, basal_area_growth
    )
