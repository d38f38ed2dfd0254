"""
Utilities Module
=================

Helper utilities for configuration and logging.
"""

from utils.config_loader import load_config, ConfigError
from utils.logging_utils import setup_logging, get_logger

__all__ = [
    "load_config",
    "ConfigError",
    "setup_logging",
    "get_logger",
]
