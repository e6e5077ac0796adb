"""
Logging setup and configuration for AD Sync.

This module provides centralized logging configuration with file rotation,
retention policies and console output, and makes sure passwords bound for
the directory never reach a log file.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any
from datetime import datetime, timedelta

LOG_FILE_NAME = 'ad-sync.log'


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'unicodePwd', 'unixUserPassword', 'userPassword',
        'token', 'secret', 'credential', 'pwd', 'authorization', 'bearer'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            # Interpolate first so secrets passed as arguments are scrubbed too.
            try:
                msg = record.getMessage()
            except (TypeError, ValueError):
                msg = str(record.msg)

            for keyword in self.SENSITIVE_KEYWORDS:
                # key=value
                msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)', r'\1****\2', msg, flags=re.IGNORECASE)
                # 'key': 'value' and "key": "value" (dict reprs and JSON)
                msg = re.sub(rf'([\'"]{keyword}[\'"]\s*:\s*)(b?[\'"])[^\'"]*([\'"])', r'\1\2****\3', msg,
                             flags=re.IGNORECASE)
                # "key": value
                msg = re.sub(rf'([\'"]{keyword}[\'"]\s*:\s*)([^\'",}}\s\[]+)(\s*[,}}\]])', r'\1****\3', msg,
                             flags=re.IGNORECASE)

            msg = re.sub(r'(Authorization:\s*(?:Bearer|Basic)\s+)[^\s,}\]]+(\s|,|$)', r'\1****\2', msg,
                         flags=re.IGNORECASE)

            record.msg = msg
            record.args = None

        return True


class LoggingManager:
    """
    Manages logging configuration for AD Sync.

    Provides file-based logging with rotation, retention policies, and
    console output.
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

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'WARNING').upper()

        self._ensure_log_directory()

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

        # ldap3 is chatty at DEBUG and may echo bind requests.
        logging.getLogger('ldap3').setLevel(logging.WARNING)

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
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

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
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in glob.glob(os.path.join(self.log_dir, f'{LOG_FILE_NAME}.*')):
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
                    print(f"Removed old log file: {log_file}")
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> list:
        """
        Get list of current log files.

        Returns:
            List of log file paths
        """
        if not self.log_dir:
            return []

        return sorted(glob.glob(os.path.join(self.log_dir, f'{LOG_FILE_NAME}*')))

    def get_log_stats(self) -> Dict[str, Any]:
        """
        Get statistics about current logging setup.

        Returns:
            Dictionary with logging statistics
        """
        log_files = self.get_log_files()
        total_size = 0

        for log_file in log_files:
            try:
                total_size += os.path.getsize(log_file)
            except OSError:
                pass

        return {
            'configured': self.configured,
            'log_directory': self.log_dir,
            'retention_days': self.retention_days,
            'log_files_count': len(log_files),
            'total_size_bytes': total_size,
            'total_size_mb': round(total_size / (1024 * 1024), 2)
        }


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


def get_logging_stats() -> Dict[str, Any]:
    """
    Get logging statistics.

    Returns:
        Dictionary with logging statistics
    """
    return _logging_manager.get_log_stats()
