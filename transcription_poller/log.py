import sys

from loguru import logger


def setup_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a stderr sink at the given level"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
