"""
Configuration loading and management for LDAP object reconciliation.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults, and turns the declared objects into
``DeclaredObject`` values.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

from ldap_reconcile.entry import DeclaredObject
from ldap_reconcile.errors import EncodingError
from ldap_reconcile.normalizer import attribute_set, encode_values, is_scalar

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'ldap.bind_dn': 'LDAP_BIND_DN',
        'ldap.server_url': 'LDAP_SERVER_URL',
    }

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
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

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
            if key not in current:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap', {})
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        objects = self.config.get('objects', [])
        if not objects:
            errors.append("At least one object must be declared")

        for i, obj in enumerate(objects):
            prefix = f"objects[{i}]"
            if not isinstance(obj, dict):
                errors.append(f"{prefix} must be a mapping")
                continue
            if not obj.get('dn'):
                errors.append(f"Missing required field {prefix}.dn")
            if not obj.get('object_classes'):
                errors.append(f"Missing required field {prefix}.object_classes")

            attributes = obj.get('attributes', {})
            if isinstance(attributes, list):
                for j, item in enumerate(attributes):
                    if not isinstance(item, dict) or len(item) != 1:
                        errors.append(f"{prefix}.attributes[{j}] must be a mapping with exactly one key")
                    elif not all(is_scalar(value) for value in item.values()):
                        errors.append(f"{prefix}.attributes[{j}] must hold a single value, "
                                      f"use one list entry per value")
            elif not isinstance(attributes, dict):
                errors.append(f"{prefix}.attributes must be a mapping or a list of single-key mappings")

            skip = obj.get('skip_attributes', [])
            if not isinstance(skip, list):
                errors.append(f"{prefix}.skip_attributes must be a list")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'connection_timeout': 10,
            'receive_timeout': 10,
            'start_tls': False,
            'verify_ssl': True,
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        # Only opening the connection is retried
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
        }
        error_config = ldap_config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        for obj in self.config.get('objects', []):
            obj.setdefault('attributes', {})
            obj.setdefault('skip_attributes', [])


def _map_value(name: str, value: Any) -> str:
    """YAML lists become JSON array literals; scalars become strings."""
    if isinstance(value, list):
        return encode_values([str(v) for v in value])
    return str(value)


def declared_object(obj: Dict[str, Any]) -> DeclaredObject:
    """
    Build a DeclaredObject from one validated ``objects`` entry.

    A mapping of attributes is map mode; a list of single-key mappings is set mode.

    Raises:
        ConfigurationError: If the attributes cannot be converted
    """
    attributes = obj.get('attributes', {})
    try:
        if isinstance(attributes, list):
            declared = attribute_set(attributes)
        else:
            declared = {name: _map_value(name, value) for name, value in attributes.items()}
    except (ValueError, EncodingError) as e:
        raise ConfigurationError(f"Invalid attributes for {obj.get('dn')!r}: {e}")

    return DeclaredObject(
        dn=obj['dn'],
        object_classes=[str(c) for c in obj['object_classes']],
        attributes=declared,
        skip_attributes=[str(s) for s in obj.get('skip_attributes', [])],
    )


def declared_objects(config: Dict[str, Any]) -> List[DeclaredObject]:
    return [declared_object(obj) for obj in config.get('objects', [])]


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
