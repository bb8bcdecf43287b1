'''
Application logger shared by every module.

Level and name come from settings; TEST_MODE lowers noise to warnings
unless LOG_LEVEL is set explicitly.
'''
import logging
import sys

from .config import settings


def _resolve_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.WARNING if settings.TEST_MODE else logging.INFO


def setup_logger(name: str = 'edupay-ledger'):
    """
    Configures and returns the application logger. Safe to call more than
    once; the stdout handler is only attached the first time.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level())
    logger.propagate = False

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(module)s:%(lineno)d - %(levelname)s\n - %(message)s'
        ))
        logger.addHandler(handler)

    return logger

log = setup_logger()
