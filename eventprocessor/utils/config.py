"""
Configuration management for the event processor.

Handles loading and merging configuration from:
- Built-in defaults
- An optional YAML configuration file
- Environment variables
"""

import copy
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from eventprocessor.exceptions import BalancerConfigurationError

DEFAULT_CONFIG: Dict[str, Any] = {
    "balancer": {
        "instance_id": None,
        "expiration_seconds": 30,
        "interval_seconds": 10,
    },
    "logging": {
        "level": "INFO",
        "format": "json",
    },
}


class Config:
    """Configuration manager for the event processor."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to a YAML configuration file. Defaults only if None.
        """
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)

        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._merge_config(file_config)

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        self._config = self._deep_merge(self._config, new_config)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if instance_id := os.getenv("EVENTPROCESSOR_INSTANCE_ID"):
            self.set("balancer.instance_id", instance_id)

        if expiration := os.getenv("OWNERSHIP_EXPIRATION_SECONDS"):
            self.set("balancer.expiration_seconds", float(expiration))

        if interval := os.getenv("BALANCE_INTERVAL_SECONDS"):
            self.set("balancer.interval_seconds", float(interval))

        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)

        if log_format := os.getenv("LOG_FORMAT"):
            self.set("logging.format", log_format)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "balancer.interval_seconds")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)


@dataclass(frozen=True)
class BalancerSettings:
    """
    Settings for one load balancing instance.

    Attributes:
        instance_id: Identity this instance claims partitions under
        expiration_seconds: Age after which an ownership record is stale
        interval_seconds: Delay between scheduled balance cycles
    """
    instance_id: str
    expiration_seconds: float = 30
    interval_seconds: float = 10

    def __post_init__(self):
        if not self.instance_id:
            raise BalancerConfigurationError("instance_id must not be empty")
        if self.expiration_seconds <= 0 or self.interval_seconds <= 0:
            raise BalancerConfigurationError(
                "expiration_seconds and interval_seconds must be positive"
            )
        # Owners must renew before their records go stale.
        if self.interval_seconds >= self.expiration_seconds:
            raise BalancerConfigurationError(
                f"interval_seconds ({self.interval_seconds}) must be shorter than "
                f"expiration_seconds ({self.expiration_seconds})"
            )

    @classmethod
    def from_config(cls, config: Config) -> "BalancerSettings":
        """
        Build settings from a Config, generating an instance id if none is set.

        Args:
            config: Loaded configuration

        Returns:
            Balancer settings
        """
        instance_id = config.get("balancer.instance_id") or str(uuid.uuid4())
        return cls(
            instance_id=instance_id,
            expiration_seconds=config.get("balancer.expiration_seconds", 30),
            interval_seconds=config.get("balancer.interval_seconds", 10),
        )


_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get the process-wide configuration instance.

    Args:
        config_file: Optional configuration file path

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset process-wide configuration (mainly for testing)."""
    global _config
    _config = None
