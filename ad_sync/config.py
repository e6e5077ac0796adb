"""
Configuration loading and management for AD Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'directory.bind_password': 'AD_BIND_PASSWORD',
        'directory.bind_dn': 'AD_BIND_DN',
        'directory.server_url': 'AD_SERVER_URL',
    }

    REQUIRED_DIRECTORY_FIELDS = ['server_url', 'bind_dn', 'bind_password', 'root']

    VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        directory_config = self.config.get('directory')
        if not isinstance(directory_config, dict):
            errors.append("Missing required section: directory")
            directory_config = {}

        for field in self.REQUIRED_DIRECTORY_FIELDS:
            if not directory_config.get(field):
                errors.append(f"Missing required directory field: {field}")

        root = directory_config.get('root')
        if root and 'dc=' not in str(root).lower():
            errors.append(f"Directory root must contain dc= components: {root}")

        containers = directory_config.get('containers', [])
        if containers is not None and not isinstance(containers, list):
            errors.append("directory.containers must be a list")
        else:
            for i, container in enumerate(containers or []):
                if not isinstance(container, str) or not container.strip():
                    errors.append(f"directory.containers[{i}] must be a non-empty string")
                elif not container.strip().lower().startswith(('ou=', 'cn=')):
                    errors.append(f"directory.containers[{i}] must start with ou= or cn=: {container}")

        for field in ('min_uid', 'min_gid', 'page_size'):
            value = directory_config.get(field)
            if value is not None and (not isinstance(value, int) or value < 0):
                errors.append(f"directory.{field} must be a non-negative integer")

        logging_config = self.config.get('logging') or {}
        level = logging_config.get('level')
        if level and str(level).upper() not in self.VALID_LOG_LEVELS:
            errors.append(f"Invalid logging level: {level}")

        error_config = self.config.get('error_handling') or {}
        for field in ('max_retries', 'retry_wait_seconds'):
            value = error_config.get(field)
            if value is not None and (not isinstance(value, (int, float)) or value < 0):
                errors.append(f"error_handling.{field} must be a non-negative number")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory_defaults = {
            'containers': [],
            'min_uid': 1000,
            'min_gid': 1000,
            'verify_ssl': True,
            'start_tls': False,
            'connection_timeout': 10,
            'receive_timeout': 10,
            'page_size': 1000
        }
        directory_config = self.config.setdefault('directory', {})
        for key, value in directory_defaults.items():
            if directory_config.get(key) is None:
                directory_config[key] = value

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING'
        }
        logging_config = self.config.get('logging') or {}
        self.config['logging'] = logging_config
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.get('error_handling') or {}
        self.config['error_handling'] = error_config
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # The connector reads retry settings from its own section.
        directory_config.setdefault('error_handling', error_config)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
