"""
Logging setup and configuration for deputize.

This module provides centralized logging configuration with file rotation,
retention, container-friendly console output and scrubbing of credentials
from every log record.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any
from datetime import datetime, timedelta


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'token', 'secret', 'authorization', 'private-token',
        'pdauthtoken', 'gitlabauthtoken', 'slackauthtoken', 'ldapmoduserpassword'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = record.getMessage() if record.args else str(record.msg)

            for keyword in self.SENSITIVE_KEYWORDS:
                # key=value
                msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
                # "key": "value"
                msg = re.sub(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', r'\1****\2', msg,
                             flags=re.IGNORECASE)

            # Authorization: Bearer xyz / Token token=xyz
            msg = re.sub(r'(Bearer\s+)[^\s,}\]\'"]+', r'\1****', msg, flags=re.IGNORECASE)
            msg = re.sub(r'(Token\s+token=)[^\s,}\]\'"]+', r'\1****', msg, flags=re.IGNORECASE)

            record.msg = msg
            record.args = ()

        return True


class LoggingManager:
    """
    Manages logging configuration for deputize.

    Provides file-based logging with rotation, retention policies, and
    container-friendly console output.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = str(logging_config.get('level', 'INFO')).upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = str(logging_config.get('console_level', 'WARNING')).upper()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        # log_dir: null keeps everything on the console, as in a container
        if self.log_dir:
            self._ensure_log_directory()
            file_handler = self._create_file_handler(rotation)
            file_handler.setLevel(getattr(logging, log_level, logging.INFO))
            file_handler.setFormatter(detailed_formatter)
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create log directory {self.log_dir}: {e}")
                print("Falling back to current directory for logs")
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create appropriate file handler based on rotation setting.

        Args:
            rotation: Rotation setting ('daily', 'midnight', or 'none')

        Returns:
            Configured logging handler
        """
        log_file = os.path.join(self.log_dir, 'deputize.log')

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Clean up log files older than retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in glob.glob(os.path.join(self.log_dir, 'deputize.log.*')):
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def reset(self) -> None:
        """Forget previous configuration so setup_logging can run again."""
        self.configured = False


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class AuditLogger:
    """Logger for membership changes, kept apart for audit trails."""

    def __init__(self):
        self.logger = logging.getLogger('deputize.audit')

    def log_membership_change(self, sink: str, action: str, identity: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Membership change {status}: {action} identity={identity} sink={sink}")

    def log_run(self, roster_size: int, sinks: int, dry_run: bool):
        self.logger.info(f"Reconciliation started: roster={roster_size} sinks={sinks} dry_run={dry_run}")


audit_logger = AuditLogger()
