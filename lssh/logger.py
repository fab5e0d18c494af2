"""
Logging module for lssh.
Provides structured logging (structlog) with a rich console handler on
stderr, an optional rotating log file, and host-scoped loggers.
"""

import os
import logging
import logging.handlers
import threading
from typing import Optional
from datetime import datetime
import structlog
from rich.console import Console
from rich.logging import RichHandler

# Author: Vamsi

LOGGER_NAME = "lssh"


class StructuredLogger:
    """Structured logger with console and file output."""

    def __init__(self,
                 level: str = "warning",
                 log_file: str = "",
                 log_format: str = "text",
                 enable_console: bool = True):
        """
        Initialize structured logger.

        :param level: Log level (debug, info, warning, error, critical)
        :param log_file: Log file path; empty disables file output
        :param log_format: Log format (json, text)
        :param enable_console: Enable console output on stderr
        """
        self.level = self._parse_level(level)
        self.log_file = log_file
        self.log_format = log_format
        self.enable_console = enable_console

        # stdout carries remote command output, so logs go to stderr
        self.console = Console(stderr=True)

        self._setup_logging()

    def _parse_level(self, level: str) -> int:
        """
        Parse log level string to logging level.

        :param level: Log level string
        :return: Logging level constant
        """
        level_map = {
            'debug': logging.DEBUG,
            'info': logging.INFO,
            'warn': logging.WARNING,
            'warning': logging.WARNING,
            'error': logging.ERROR,
            'fatal': logging.CRITICAL,
            'critical': logging.CRITICAL
        }
        return level_map.get(level.lower(), logging.WARNING)

    def _setup_logging(self):
        """Setup logging configuration."""
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]

        if self.log_format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=False))

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )

        stdlib_logger = logging.getLogger(LOGGER_NAME)
        stdlib_logger.setLevel(self.level)
        stdlib_logger.propagate = False
        stdlib_logger.handlers.clear()

        if self.enable_console:
            console_handler = RichHandler(
                console=self.console,
                show_time=False,
                show_path=False,
                markup=False,
                rich_tracebacks=True
            )
            console_handler.setLevel(self.level)
            stdlib_logger.addHandler(console_handler)

        if self.log_file:
            log_dir = os.path.dirname(self.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(self.level)
            file_handler.setFormatter(logging.Formatter('%(message)s'))
            stdlib_logger.addHandler(file_handler)

        self.logger = structlog.get_logger(LOGGER_NAME)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self.logger.error(message, **kwargs)

    def log_command_result(self, host: str, command: str, exit_code: int,
                           duration: float):
        """
        Log command execution result.

        :param host: Host name
        :param command: Executed command
        :param exit_code: Command exit code
        :param duration: Command duration
        """
        log = self.info if exit_code == 0 else self.warning
        log("Command executed",
            host=host, command=command, exit_code=exit_code,
            duration=round(duration, 3))

    def log_connection_event(self, host: str, event: str, **kwargs):
        """
        Log connection event.

        :param host: Host name
        :param event: Event type (connect, stale, reconnect, failure)
        :param **kwargs: Additional event data
        """
        log = self.warning if event in ('stale', 'failure') else self.info
        log(f"Connection {event}", host=host, event_type=event, **kwargs)


class HostLogger:
    """Host-specific logger with per-host counters."""

    def __init__(self, host: str, parent_logger: StructuredLogger):
        """
        Initialize host logger.

        :param host: Host name
        :param parent_logger: Parent logger instance
        """
        self.host = host
        self.parent_logger = parent_logger

        self.command_count = 0
        self.failed_commands = 0
        self.connection_failures = 0
        self.reconnects = 0
        self.last_command_time: Optional[datetime] = None

        self.lock = threading.RLock()

    def log_command(self, command: str, exit_code: int, duration: float):
        """
        Log command execution.

        :param command: Executed command
        :param exit_code: Command exit code
        :param duration: Command duration
        """
        with self.lock:
            self.command_count += 1
            if exit_code != 0:
                self.failed_commands += 1
            self.last_command_time = datetime.now()

        self.parent_logger.log_command_result(self.host, command, exit_code, duration)

    def log_connection(self, event: str, **kwargs):
        """
        Log connection event.

        :param event: Event type
        :param **kwargs: Additional event data
        """
        with self.lock:
            if event == 'failure':
                self.connection_failures += 1
            elif event == 'reconnect':
                self.reconnects += 1

        self.parent_logger.log_connection_event(self.host, event, **kwargs)

    def debug(self, message: str, **kwargs):
        self.parent_logger.debug(message, host=self.host, **kwargs)

    def warning(self, message: str, **kwargs):
        self.parent_logger.warning(message, host=self.host, **kwargs)


_default_logger: Optional[StructuredLogger] = None
_default_lock = threading.Lock()


def get_logger() -> StructuredLogger:
    """Return the process-wide logger, creating a console-only one if needed."""
    global _default_logger
    with _default_lock:
        if _default_logger is None:
            _default_logger = StructuredLogger()
        return _default_logger


def set_logger(logger: StructuredLogger) -> None:
    """Install the process-wide logger."""
    global _default_logger
    with _default_lock:
        _default_logger = logger
