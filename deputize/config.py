"""
Configuration loading and management for deputize.

This module handles loading configuration from YAML files, with validation
and defaults. Credentials never live in this file; see deputize.secrets.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Required fields per sink module
    REQUIRED_SINK_FIELDS = {
        'ldap_sink': ['server_url', 'base_dn', 'mod_user_dn', 'on_call_group'],
        'gitlab_sink': ['base_url', 'group'],
        'slack_sink': ['channels'],
    }

    SINK_DEFAULTS = {
        'enabled': True,
        'skip_unknown_users': False,
        'allow_empty': False,
        'timeout': 30,
        'verify_ssl': True,
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses DEPUTIZE_CONFIG env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('DEPUTIZE_CONFIG', DEFAULT_CONFIG_PATH)
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration in {self.config_path} must be a mapping")

        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def load_dict(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate an already parsed configuration and apply defaults."""
        self.config = config
        self._validate()
        self._apply_defaults()
        return self.config

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        pagerduty = (self.config.get('source') or {}).get('pagerduty') or {}
        if not pagerduty.get('enabled', False):
            errors.append("PagerDuty must be enabled as the on-call source")
        if not pagerduty.get('on_call_schedules'):
            errors.append("No PagerDuty on_call_schedules configured")
        elif isinstance(pagerduty['on_call_schedules'], str):
            errors.append("source.pagerduty.on_call_schedules must be a list")

        sinks = self.config.get('sinks') or []
        if not isinstance(sinks, list):
            errors.append("sinks must be a list")
            sinks = []
        enabled = [s for s in sinks if s.get('enabled', True)]
        if not enabled:
            errors.append("At least one sink must be enabled")

        names = set()
        for i, sink in enumerate(sinks):
            sink_prefix = f"sinks[{i}]"
            for field in ['name', 'module']:
                if not sink.get(field):
                    errors.append(f"Missing required field {sink_prefix}.{field}")

            name = sink.get('name')
            if name in names:
                errors.append(f"Duplicate sink name '{name}'")
            names.add(name)

            if not sink.get('enabled', True):
                continue

            for field in self.REQUIRED_SINK_FIELDS.get(sink.get('module'), []):
                if not sink.get(field):
                    errors.append(f"Missing required field {sink_prefix}.{field}")

            if 'schedules' in sink and not sink['schedules']:
                errors.append(f"{sink_prefix}.schedules must not be empty when set")

        max_workers = self.config.get('reconcile', {}).get('max_workers', 1)
        if not isinstance(max_workers, int) or max_workers < 1:
            errors.append("reconcile.max_workers must be a positive integer")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        pagerduty = self.config['source']['pagerduty']
        pagerduty.setdefault('with_oauth', False)
        pagerduty.setdefault('window_seconds', 1)

        reconcile_config = self.config.setdefault('reconcile', {})
        reconcile_config.setdefault('max_workers', 1)
        reconcile_config.setdefault('dry_run', False)

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Error handling defaults
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # Notification defaults
        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_change': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)

        for sink in self.config.get('sinks', []):
            for key, value in self.SINK_DEFAULTS.items():
                sink.setdefault(key, value)


def enabled_sinks(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Sink configuration entries that are enabled."""
    return [sink for sink in config.get('sinks', []) if sink.get('enabled', True)]


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
