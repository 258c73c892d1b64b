"""Configuration and logging helpers."""

from eventprocessor.utils.config import BalancerSettings, Config, get_config, reset_config
from eventprocessor.utils.logging import configure_logging, get_logger

__all__ = [
    "BalancerSettings",
    "Config",
    "configure_logging",
    "get_config",
    "get_logger",
    "reset_config",
]
