"""
Centralized logging configuration for Pallet Labels.

This module provides the logging system shared by the web app and the
workflow code:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output
- Context-aware logging (request_id, task_id, label)

Every pallet scan is one request; the request id and the scanned task id are
attached to all records written while the request runs, so a single
"Ware ausbuchen" can be followed through signature check, Todoist close and
completion log write.

Log file location: [Logging] LogDir in config.ini (default ~/.pallet_labels/logs)
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO", "tool": "pallet_labels",
     "request_id": "9f2c1a7e", "task_id": "8412345678", "label": "BEFR0124",
     "module": "completion_workflow", "function": "complete", "line": 181,
     "message": "Task 8412345678 closed and recorded"}
"""

# Standard library imports
import logging
import json
import os
from datetime import date, datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar


# Context variables for structured logging
_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
_task_id: ContextVar[Optional[str]] = ContextVar('task_id', default=None)
_label: ContextVar[Optional[str]] = ContextVar('label', default=None)

DEFAULT_LOG_DIR = Path(os.path.expanduser("~")) / ".pallet_labels" / "logs"


class StructuredJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level
    - tool: Always "pallet_labels"
    - request_id: Current HTTP request (if set)
    - task_id: Todoist task being processed (if set)
    - label: Commission label being processed (if set)
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'pallet_labels',
            'request_id': _request_id.get(),
            'task_id': _task_id.get(),
            'label': _label.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class DailyRotatingFileHandler(RotatingFileHandler):
    """
    Size-rotating handler that writes to <log_dir>/YYYY-MM-DD.log.

    A long-running server crosses midnight: the first record of a new day
    switches to that day's file and removes logs older than retention_days.
    """

    def __init__(self, log_dir: Path, max_bytes: int, backup_count: int = 30,
                 retention_days: int = 30):
        self.log_dir = Path(log_dir)
        self.retention_days = retention_days
        self.current_day = self._today()
        super().__init__(self._path_for(self.current_day), maxBytes=max_bytes,
                         backupCount=backup_count, encoding='utf-8')

    @staticmethod
    def _today() -> date:
        return datetime.now().date()

    def _path_for(self, day: date) -> Path:
        return self.log_dir / f"{day:%Y-%m-%d}.log"

    def emit(self, record: logging.LogRecord) -> None:
        today = self._today()
        if today != self.current_day:
            self._switch_day(today)
        super().emit(record)

    def _switch_day(self, day: date) -> None:
        # The stream is reopened on the new path by the next emit
        if self.stream:
            self.stream.close()
            self.stream = None
        self.current_day = day
        self.baseFilename = os.path.abspath(self._path_for(day))
        AppLogger._cleanup_old_logs(self.log_dir, self.retention_days)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first get_logger() call, regardless
    of how many modules import the logger.

    The logging system is configured from config.ini with these settings:
    - LogDir: Directory for daily log files
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep

    Attributes:
        _instance: Singleton logger instance (class-level)
        _initialized: Whether logging has been configured (class-level)
    """

    _instance: Optional[logging.Logger] = None
    _initialized: bool = False

    @classmethod
    def get_logger(cls, name: str = 'PalletLabels') -> logging.Logger:
        """
        Get or create application logger with lazy initialization.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
            logger.info("Starting operation")

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance for the specified name
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures:
        1. Log directory and daily file path
        2. Log level (from config or default to INFO)
        3. JSON file handler with rotation
        4. Human-readable console handler
        5. Old log cleanup (removes logs older than retention days)
        """
        config = cls._load_config()

        # === LOG DIRECTORY SETUP ===
        log_dir = Path(config.get('Logging', 'LogDir', fallback=str(DEFAULT_LOG_DIR)))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            # mkdir succeeds on existing read-only directories, so probe for write access
            if not os.access(log_dir, os.W_OK):
                raise PermissionError(f"No write access to {log_dir}")
        except Exception as e:
            log_dir = DEFAULT_LOG_DIR
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not access configured logs directory. Using local: {log_dir}. Error: {e}")

        # === LOG LEVEL CONFIGURATION ===
        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        # === FILE ROTATION CONFIGURATION ===
        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()

        # Format: timestamp | module | level | function:line | message
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        file_handler = DailyRotatingFileHandler(
            log_dir,
            max_bytes=max_log_size,
            backup_count=30,
            retention_days=retention_days,
        )
        log_file = Path(file_handler.baseFilename)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        # === CLEANUP OLD LOGS ===
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('PalletLabels')
        logger.info("=" * 80)
        logger.info("Pallet Labels Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config() -> configparser.ConfigParser:
        """
        Load logging configuration from config.ini.

        The path is taken from the PALLET_LABELS_CONFIG environment variable,
        falling back to ./config.ini. A missing file is not an error; the
        fallback defaults are used (INFO level, 10MB size, 30 days retention).

        Configuration options:
            [Logging]
            LogDir = /var/log/pallet_labels
            LogLevel = INFO
            MaxLogSizeMB = 10
            LogRetentionDays = 30
        """
        config = configparser.ConfigParser()
        config_path = Path(os.environ.get('PALLET_LABELS_CONFIG', 'config.ini'))

        if config_path.exists():
            config.read(config_path, encoding='utf-8')

        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs
                            0 or negative = disable cleanup (keep all logs)
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)

                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('PalletLabels').debug(f"Deleted old log: {log_file.name}")

        except Exception as e:
            # Non-fatal: a locked or vanished file must not stop the server
            logging.getLogger('PalletLabels').warning(f"Failed to cleanup old logs: {e}")


def get_logger(name: str = 'PalletLabels') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting process")
    """
    return AppLogger.get_logger(name)


def set_request_context(request_id: Optional[str]) -> None:
    """Set the current HTTP request id for structured logging context."""
    _request_id.set(request_id)


def set_task_context(task_id: Optional[str]) -> None:
    """
    Set the Todoist task id that subsequent log entries refer to.

    Example:
        >>> set_task_context("8412345678")
        >>> logger.info("Closing task")  # Will include task_id="8412345678"
    """
    _task_id.set(None if task_id is None else str(task_id))


def set_label_context(label: Optional[str]) -> None:
    """Set the commission label that subsequent log entries refer to."""
    _label.set(label)


def clear_logging_context() -> None:
    """Clear all logging context (request_id, task_id, label)."""
    _request_id.set(None)
    _task_id.set(None)
    _label.set(None)
