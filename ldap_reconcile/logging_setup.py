"""
Logging setup for LDAP object reconciliation.

Records go to ``app.log`` in the configured directory, rotated at midnight
and pruned after ``retention_days``, and optionally to the console. Both
handlers mask credentials and password attribute values.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List, Pattern, Tuple
from datetime import datetime, timedelta

LOG_FILE = 'app.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub credentials and password attributes from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'secret', 'token', 'credential', 'pwd',
    ]

    # Directory attributes whose values are secrets
    SENSITIVE_ATTRIBUTES = [
        'unicodePwd', 'userPassword', 'sambaNTPassword', 'sambaLMPassword',
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        self.patterns: List[Tuple[Pattern, str]] = []
        for keyword in self.SENSITIVE_KEYWORDS:
            self.patterns += [
                (rf'({keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)', r'\1****\2'),
                (rf'("{keyword}"\s*:\s*")[^"]*(")', r'\1****\2'),
                (rf"('{keyword}'\s*:\s*')[^']*(')", r'\1****\2'),
            ]
        for attribute in self.SENSITIVE_ATTRIBUTES:
            self.patterns += [
                # value lists, as in delta log lines
                (rf'(\b{attribute}\b\s*)\[[^\]]*\]', r'\1[****]'),
                (rf'(\b{attribute}=)[^\s,]+', r'\1****'),
            ]
        self.patterns = [(re.compile(p, re.IGNORECASE), repl) for p, repl in self.patterns]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self.patterns:
                msg = pattern.sub(replacement, msg)
            record.msg = msg
        return True


class LoggingManager:
    """Configures the root logger once per process."""

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: The ``logging`` configuration section
        """
        if self.configured:
            return

        config = config or {}
        level = _level(config.get('level', 'INFO'), logging.INFO)
        self.log_dir = config.get('log_dir', 'logs')
        self.retention_days = config.get('retention_days', 7)
        console_enabled = config.get('console_output', True)

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()
        handlers = [(self._create_file_handler(), level, FILE_FORMAT)]
        if console_enabled:
            console_level = _level(config.get('console_level', 'WARNING'), logging.WARNING)
            handlers.append((logging.StreamHandler(), console_level, CONSOLE_FORMAT))

        for handler, handler_level, fmt in handlers:
            handler.setLevel(handler_level)
            handler.setFormatter(logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S'))
            handler.addFilter(sensitive_filter)
            root_logger.addHandler(handler)

        self._cleanup_old_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging configured: level={logging.getLevelName(level)}, dir={self.log_dir}, "
            f"retention={self.retention_days} days, console={console_enabled}")

    def _ensure_log_directory(self) -> None:
        """Create the log directory, falling back to the current directory."""
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            print(f"Warning: Could not create log directory {self.log_dir}: {e}")
            self.log_dir = '.'

    def _create_file_handler(self) -> logging.Handler:
        handler = logging.handlers.TimedRotatingFileHandler(
            filename=os.path.join(self.log_dir, LOG_FILE),
            when='midnight',
            backupCount=self.retention_days,
            encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if self.retention_days <= 0:
            return

        cutoff = datetime.now() - timedelta(days=self.retention_days)
        current = os.path.join(self.log_dir, LOG_FILE)
        for path in glob.glob(current + '.*'):
            try:
                if datetime.fromtimestamp(os.path.getmtime(path)) < cutoff:
                    os.remove(path)
            except OSError as e:
                print(f"Warning: Could not remove old log file {path}: {e}")

    def reset(self) -> None:
        """Drop all root handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    _logging_manager.reset()
