"""
Logging setup and configuration for LDAP Reconcile.

This module provides logging configuration with file rotation, retention
policies, console output and scrubbing of credentials from log messages. The
verbosity chosen on the command line is passed in explicitly.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, Optional
from datetime import datetime, timedelta

LOG_FILE_NAME = 'reconcile.log'


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'bindpass', 'smtp_password', 'token', 'secret',
        'credential', 'pwd', 'authorization', 'api_key', 'access_token'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            # key=value
            for keyword in self.SENSITIVE_KEYWORDS:
                pattern = rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)'
                msg = re.sub(pattern, r'\1****\2', msg, flags=re.IGNORECASE)

            # 'key': 'value' and "key": "value"
            for keyword in self.SENSITIVE_KEYWORDS:
                pattern = rf'([\'"]{keyword}[\'"]\s*:\s*[\'"])[^\'"]*([\'"])'
                msg = re.sub(pattern, r'\1****\2', msg, flags=re.IGNORECASE)

            msg = re.sub(r'(Authorization:\s*(?:Bearer|Basic)\s+)[^\s,}}\]]+', r'\1****', msg,
                         flags=re.IGNORECASE)

            record.msg = msg

        return True


def resolve_level(level_name: str, verbosity: int = 0) -> int:
    """
    Shift a base level by the command line verbosity.

    Each positive step lowers the threshold by one level (INFO -> DEBUG),
    each negative step raises it. The result stays within DEBUG..CRITICAL.
    """
    base = getattr(logging, str(level_name).upper(), logging.INFO)
    if not isinstance(base, int):
        base = logging.INFO
    level = base - 10 * verbosity
    return max(logging.DEBUG, min(logging.CRITICAL, level))


class LoggingManager:
    """
    Configures the root logger for one run.

    Provides file-based logging with rotation and retention, plus console
    output for operators.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, verbosity: int = 0):
        logging_config = config or {}
        self.verbosity = verbosity
        self.level = resolve_level(logging_config.get('level', 'INFO'), verbosity)
        self.console_level = resolve_level(logging_config.get('console_level', 'INFO'), verbosity)
        self.log_dir = logging_config.get('log_dir', 'logs')
        self.rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        self.console_enabled = logging_config.get('console_output', True)
        self.file_enabled = bool(self.log_dir)

    def apply(self) -> logging.Logger:
        """
        Install handlers on the root logger, replacing existing ones.

        Returns:
            The root logger
        """
        root_logger = logging.getLogger()
        root_logger.setLevel(min(self.level, self.console_level))
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        if self.file_enabled:
            self._ensure_log_directory()
            detailed_formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler = self._create_file_handler()
            file_handler.setLevel(self.level)
            file_handler.setFormatter(detailed_formatter)
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)
            self._cleanup_old_logs()

        if self.console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.console_level)
            console_handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        logging.getLogger(__name__).debug(
            f"Logging configured: level={logging.getLevelName(self.level)}, dir={self.log_dir}, "
            f"retention={self.retention_days} days, verbosity={self.verbosity}"
        )
        return root_logger

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            print(f"Warning: Could not create log directory {self.log_dir}: {e}")
            print("Falling back to current directory for logs")
            self.log_dir = '.'

    def _create_file_handler(self) -> logging.Handler:
        """Create a daily rotating handler, or a plain one when rotation is off."""
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if str(self.rotation).lower() in ['daily', 'midnight']:
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
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)
        for log_file in glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')):
            if log_file.endswith(LOG_FILE_NAME):
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(log_file)) < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")


def setup_logging(config: Optional[Dict[str, Any]] = None, verbosity: int = 0) -> LoggingManager:
    """
    Configure logging for a run.

    Args:
        config: Logging configuration dictionary
        verbosity: Number of -v switches minus number of -q switches

    Returns:
        The manager that configured the root logger
    """
    manager = LoggingManager(config, verbosity)
    manager.apply()
    return manager
