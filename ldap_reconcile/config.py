"""
Configuration loading and management for LDAP Reconcile.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults. Directory sources may be declared inline or in
separate YAML files, one source per file.
"""

import os
import re
import yaml
import logging
from typing import Dict, Any, List, Optional

from ldap_reconcile.models import DirectorySourceConfig, RunOptions

logger = logging.getLogger(__name__)

OPTION_NAMES = ('dump_only', 'all_attributes', 'report_all', 'no_apply', 'no_update')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'store.auth.password': 'STORE_PASSWORD',
        'store.auth.token': 'STORE_TOKEN',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None,
                 extra_directory_files: Optional[List[str]] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
            extra_directory_files: Additional directory source files (one source each)
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH') or 'config.yaml'
        self.extra_directory_files = list(extra_directory_files or [])
        self.config = {}

    def load(self, dump_only: bool = False) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Args:
            dump_only: Skip the user store requirements

        Returns:
            Parsed and validated configuration dictionary; ``directories`` holds
            the merged list of source mappings

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        self.config = self._read_yaml(self.config_path) or {}
        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._load_directory_files()
        self._apply_env_overrides()
        dump_only = dump_only or bool((self.config.get('options') or {}).get('dump_only'))
        self._validate(dump_only)
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _read_yaml(self, path: str) -> Any:
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {path}: {e}")

    def _load_directory_files(self):
        """Append the sources declared in separate files to ``directories``."""
        directories = list(self.config.get('directories') or [])
        base_dir = os.path.dirname(os.path.abspath(self.config_path))

        for path in list(self.config.get('directory_files') or []) + self.extra_directory_files:
            if not os.path.isabs(path) and not os.path.exists(path):
                path = os.path.join(base_dir, path)
            logger.info(f"Loading LDAP configuration from file: '{path}'")
            source = self._read_yaml(path)
            if not isinstance(source, dict):
                raise ConfigurationError(f"Directory configuration must be a mapping: {path}")
            source.setdefault('name', os.path.splitext(os.path.basename(path))[0])
            directories.append(source)

        self.config['directories'] = directories

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

        # Per-source bind passwords, e.g. CORP_AD_BIND_PASSWORD
        for i, source in enumerate(self.config.get('directories', [])):
            source_name = source.get('name') or f'directory_{i}'
            env_var = re.sub(r'[^A-Z0-9]', '_', source_name.upper()) + '_BIND_PASSWORD'
            env_value = os.getenv(env_var)
            if env_value:
                source['bind_password'] = env_value
                logger.debug(f"Applied environment override for {source_name} bind password")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self, dump_only: bool):
        """Validate required configuration fields."""
        errors = []

        directories = self.config.get('directories', [])
        if not directories:
            errors.append("At least one directory source must be configured")

        for i, source in enumerate(directories):
            prefix = f"directories[{i}]"
            for field in ('server', 'base_dn'):
                if not source.get(field):
                    errors.append(f"Missing required field {prefix}.{field}")
            if source.get('bind_user') and not source.get('bind_password'):
                errors.append(f"Missing bind_password for {prefix}")
            try:
                if int(source.get('page_size', 500)) <= 0:
                    errors.append(f"page_size must be positive for {prefix}")
            except (TypeError, ValueError):
                errors.append(f"page_size must be an integer for {prefix}")

        if not dump_only:
            store = self.config.get('store') or {}
            for field in ('module', 'base_url'):
                if not store.get(field):
                    errors.append(f"Missing required field store.{field}")

        local_users = self.config.get('local_users', [])
        if local_users and not isinstance(local_users, list):
            errors.append("local_users must be a list")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)

        store_config = self.config.setdefault('store', {})
        store_config.setdefault('name', store_config.get('module', 'store'))
        store_config.setdefault('verify_ssl', True)

        options = self.config.setdefault('options', {})
        for name in OPTION_NAMES:
            options.setdefault(name, False)

        self.config['local_users'] = list(self.config.get('local_users') or [])


def load_config(config_path: Optional[str] = None,
                extra_directory_files: Optional[List[str]] = None,
                dump_only: bool = False) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file
        extra_directory_files: Additional directory source files
        dump_only: Skip the user store requirements

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path, extra_directory_files)
    return loader.load(dump_only=dump_only)


def build_sources(config: Dict[str, Any]) -> List[DirectorySourceConfig]:
    """Turn the ``directories`` section into immutable source configurations."""
    try:
        return [DirectorySourceConfig.from_dict(source) for source in config.get('directories', [])]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid directory source: {e}")


def build_run_options(config: Dict[str, Any], **overrides) -> RunOptions:
    """
    Merge the ``options`` section with command line switches.

    Switches can only turn modes on; ``local_users`` entries are appended.
    """
    options = config.get('options') or {}
    flags = {name: bool(options.get(name) or overrides.get(name)) for name in OPTION_NAMES}
    local_users = list(config.get('local_users') or []) + list(overrides.get('local_users') or [])
    return RunOptions(local_users=tuple(local_users), **flags)
