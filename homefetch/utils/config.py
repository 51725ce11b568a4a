"""
Configuration management for the homepage fetcher.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


DEFAULT_USER_AGENT = "crowley bot 1.0"


class ConfigError(ValueError):
    """Raised for invalid configuration."""
    pass


@dataclass
class FetcherConfig:
    """Configuration for the HTTP fetcher."""
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0
    connect_timeout: float = 30.0
    fail_on_http_error: bool = False
    max_body_bytes: Optional[int] = None


@dataclass
class StorageConfig:
    """Configuration for the sharded store."""
    root: str = "./out"
    dir_mode: int = 0o700
    file_mode: int = 0o600
    compresslevel: int = 9
    fsync: bool = True


@dataclass
class PoolConfig:
    """Configuration for the worker pool."""
    n_workers: int = 50


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Main configuration class."""
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(section_cls, name: str, data: Optional[Dict[str, Any]]):
    if data is None:
        return section_cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")

    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section '{name}': {', '.join(sorted(unknown))}")
    return section_cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from a YAML file, or the defaults when no file is given."""
        config_data: Dict[str, Any] = {}

        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r') as file:
                try:
                    config_data = yaml.safe_load(file) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

            if not isinstance(config_data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {self.config_path}")

        self._config = self.from_dict(config_data)
        self._validate_config()
        return self._config

    @staticmethod
    def from_dict(config_data: Dict[str, Any]) -> Config:
        """Build a Config from parsed YAML data."""
        sections = {
            'fetcher': FetcherConfig,
            'storage': StorageConfig,
            'pool': PoolConfig,
            'logging': LoggingConfig,
            'monitoring': MonitoringConfig,
        }
        unknown = set(config_data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        return Config(**{
            name: _build_section(section_cls, name, config_data.get(name))
            for name, section_cls in sections.items()
        })

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigError("Configuration not loaded")
        validate_config(self._config)

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def validate_config(config: Config):
    """Validate configuration values, raising ConfigError on the first problem."""
    try:
        _check_values(config)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e


def _check_values(config: Config):
    if config.pool.n_workers < 1:
        raise ConfigError("n_workers must be at least 1")

    if config.fetcher.request_timeout <= 0:
        raise ConfigError("request_timeout must be positive")

    if config.fetcher.connect_timeout <= 0:
        raise ConfigError("connect_timeout must be positive")

    if config.fetcher.max_body_bytes is not None and config.fetcher.max_body_bytes < 1:
        raise ConfigError("max_body_bytes must be positive")

    if not config.fetcher.user_agent:
        raise ConfigError("user_agent must not be empty")

    if not config.storage.root:
        raise ConfigError("storage root must be set")

    if not 0 <= config.storage.compresslevel <= 9:
        raise ConfigError("compresslevel must be between 0 and 9")

    if not isinstance(getattr(logging, str(config.logging.level).upper(), None), int):
        raise ConfigError(f"Unknown log level: {config.logging.level}")


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """Load configuration from file, falling back to defaults when no path is given."""
    return ConfigManager(config_path).load_config()
