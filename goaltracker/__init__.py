"""Goal tracker gamification core"""
import logging

from goaltracker.config import LOG_LEVEL

__version__ = "0.1.0"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging for applications embedding the engine"""
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, level.upper(), logging.INFO)
    )
