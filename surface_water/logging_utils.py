"""
Logging setup for the surface water pipeline.

All package modules log through ``logging.getLogger(__name__)``, so they sit
under the ``surface_water`` namespace and are configured in one place here.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = 'surface_water'

FORMATS = {
    'standard': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'detailed': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    'simple': '%(levelname)s: %(message)s',
}


def setup_logging(
    level: Union[str, int] = 'INFO',
    log_file: Optional[Union[str, Path]] = None,
    format_style: str = 'standard'
) -> logging.Logger:
    """
    Configure console (and optionally file) logging for the package.

    Parameters
    ----------
    level : str or int
        Logging level name or constant
    log_file : str or Path, optional
        Also write records to this file
    format_style : str
        One of 'standard', 'detailed', 'simple'

    Returns
    -------
    logging.Logger
        The package root logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Avoid duplicate handlers when called repeatedly (e.g. in notebooks)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)

    formatter = logging.Formatter(
        FORMATS.get(format_style, FORMATS['standard']),
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(component_name: str) -> logging.Logger:
    """Return the logger for a named pipeline component."""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{component_name}')
