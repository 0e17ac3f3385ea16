"""Utility modules for Content Publisher"""

from .logger import get_logger, setup_logging
from .mixins import LoggerMixin

__all__ = [
    "LoggerMixin",
    "get_logger",
    "setup_logging",
]
