"""
DocExtract Configuration Management

This module provides configuration management for DocExtract. Defaults are
loaded from the packaged ``default_config.yaml`` and overlaid with the user
file at ``~/.docextract/config.yaml`` when present.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default_config.yaml'


class DocExtractConfig:
    """
    Manages engine-wide configuration for DocExtract

    A shared instance is available through ``get_instance()``; components
    accept an explicit instance so callers and tests can run side by side
    with different settings.
    """

    _instance: Optional['DocExtractConfig'] = None

    def __init__(self, overrides: Optional[Dict[str, Any]] = None, load_user_config: bool = True):
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            self.config: Dict[str, Any] = yaml.safe_load(f) or {}

        self.config_file = Path.home() / '.docextract' / 'config.yaml'
        if load_user_config and self.config_file.exists():
            self._load_config()

        if overrides:
            self._update_config_recursive(self.config, overrides)

    @classmethod
    def get_instance(cls) -> 'DocExtractConfig':
        """Return the process-wide configuration, creating it on first use"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @classmethod
    def from_file(cls, config_path: str) -> 'DocExtractConfig':
        """Load configuration from file

        Args:
            config_path: Path to a YAML file whose values override the defaults

        Returns:
            DocExtractConfig instance
        """
        instance = cls(load_user_config=False)
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration from {config_path}: {str(e)}")
            raise
        instance._update_config_recursive(instance.config, file_config)
        instance._validate_config()
        return instance

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def _load_config(self) -> None:
        """Load configuration from the user file"""
        try:
            with open(self.config_file, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RuntimeError(f"Invalid YAML in configuration file: {str(e)}")

        if file_config:
            self._update_config_recursive(self.config, file_config)
            logger.info(f"Configuration loaded from {self.config_file}")
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate configuration structure and values"""
        if not isinstance(self.config, dict):
            raise RuntimeError("Configuration must be a dictionary")

        for section in ('database', 'logging', 'learning', 'rules', 'pipeline'):
            if section not in self.config:
                raise RuntimeError(f"Missing required configuration section: {section}")

        db_type = self.config['database'].get('type')
        if db_type not in ('sqlite', 'postgresql'):
            raise RuntimeError(f"Unsupported database type: {db_type}")

        threshold = self.get('rules.acceptance_threshold', 1.0)
        if not 0.0 < float(threshold) <= 1.0:
            raise RuntimeError("rules.acceptance_threshold must be in (0, 1]")

        alpha = self.get('rules.ewma_alpha', 0.1)
        if not 0.0 < float(alpha) <= 1.0:
            raise RuntimeError("rules.ewma_alpha must be in (0, 1]")

    def save(self) -> None:
        """Save configuration to the user file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(self.config, f)
            logger.info(f"Configuration saved to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save configuration: {str(e)}")
            raise

    def _update_config_recursive(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Update configuration recursively"""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_config_recursive(base[key], value)
            else:
                base[key] = value

    def get_database_config(self) -> Dict[str, Any]:
        return self.config.get('database', {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config.get('logging', {})

    def validate(self) -> bool:
        """Validate configuration"""
        try:
            self._validate_config()
            return True
        except RuntimeError as e:
            logger.error(f"Configuration validation failed: {str(e)}")
            return False

    def get_all(self) -> Dict[str, Any]:
        """Get a deep copy of all configuration"""
        return copy.deepcopy(self.config)

    def update(self, config: Dict[str, Any]) -> None:
        """Merge new values into the configuration (in memory only)"""
        self._update_config_recursive(self.config, config)


def setup_logging(config: Optional[DocExtractConfig] = None) -> None:
    """Configure root logging from the ``logging`` section"""
    config = config or DocExtractConfig.get_instance()
    log_config = config.get_logging_config()

    level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if log_config.get('file'):
        log_path = Path(log_config['file'])
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=level,
        format=log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
        handlers=handlers,
    )
