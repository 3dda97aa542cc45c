"""
TWAMM Logging System
====================

A thread-safe logging utility for the virtual-order engine. Engine modules
log through the standard `logging` library with `logging.getLogger(__name__)`;
this module decides where those records go, rendering them with `rich` on the
console and to a rotating file.

Configuration is lazy: nothing is attached to the root logger until
`configure()` or `get_logger()` is called, so importing the engine as a
library leaves the host application's logging alone.

Usage:
    >>> from twamm.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Pool created")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "twamm.log"

TWAMM_THEME = Theme(
    {
        "twamm.block":          "bold cyan",
        "twamm.direction":      "bold white",
        "twamm.error_code":     "bold red",
        "twamm.level_critical": "bold red reverse",
        "twamm.level_debug":    "bold dim",
        "twamm.level_error":    "bold red",
        "twamm.level_info":     "bold green",
        "twamm.level_warning":  "bold yellow",
        "twamm.logger_name":    "magenta",
        "twamm.order":          "bold magenta",
        "twamm.pool_id":        "yellow",
        "twamm.timestamp":      "bold cyan",
    }
)


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    Attributes:
        _instance (LogManager): The singleton instance.
        _lock (threading.Lock): Thread lock for atomic initialization.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()


    def __new__(cls) -> "LogManager":
        """Creates or returns the existing singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance


    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True


    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Validates a logging format string by formatting a dummy record.

        Returns:
            str: The validated format string, or the default `LOG_FORMAT` if validation fails.
        """
        if not log_format:
            return str(LOG_FORMAT.default())
        log_format = str(log_format)
        try:
            formatter = logging.Formatter(fmt=log_format)
            record = logging.LogRecord(
                name="test", level=logging.INFO, pathname="", lineno=0,
                msg="test", args=(), exc_info=None,
            )
            formatted_output = formatter.format(record)
        except (ValueError, KeyError, TypeError) as e:
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - twamm.logger - "
                f"Invalid log format: {e}. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())

        # Unprocessed specifiers mean a '%' was missing in front of a key
        if re.search(r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]", formatted_output):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - twamm.logger - "
                f"Malformed log format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())
        return log_format


    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """
        Validates a date format string against standard strftime directives.

        Returns:
            str: The validated date format string, or default if validation fails.
        """
        if not date_format:
            return str(LOG_DATE_FORMAT.default())

        date_format = str(date_format)

        # Directives and plain separators only
        date_format_pattern = re.compile(
            r"^(?=.*%[A-Za-z])(?:%%|%[A-Za-z]|[0-9 \t:\-\/\.,TZ+])+$"
        )
        if not date_format_pattern.match(date_format):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - twamm.logger - "
                f"Invalid date format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_DATE_FORMAT.default())

        return date_format


    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True,
        force: bool = False,
    ) -> None:
        """
        Configures the root logger with console and file handlers.

        Args:
            log_level (Optional[str]): Logging level (DEBUG, INFO, etc.). Defaults to env var.
            log_file (Optional[Path]): Path to log file. Defaults to `logs/twamm.log`.
            console_output (bool): Enable console logging. Defaults to True.
            file_output (bool): Enable rotating file logging. Defaults to True.
            force (bool): Replace an existing configuration.
        """
        with self._lock:
            if self._configured and not force:
                return

            level_str = log_level or str(LOG_LEVEL)
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)
            for handler in list(root_logger.handlers):
                root_logger.removeHandler(handler)
                handler.close()

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = self.validate_date_format(LOG_DATE_FORMAT)

            # UTC everywhere
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    console = Console(theme=TWAMM_THEME, highlight=False, stderr=True)
                    handler = RichHandler(
                        console=console,
                        highlighter=TwammLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                else:
                    handler = logging.StreamHandler(sys.stderr)
                handler.setLevel(numeric_level)
                handler.setFormatter(formatter)
                root_logger.addHandler(handler)

            if file_output:
                log_file_path = Path(log_file) if log_file else LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True


    def get_logger(self, name: str) -> logging.Logger:
        """
        Retrieves a logger, configuring the logging system on first use.
        """
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


    @property
    def is_configured(self) -> bool:
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    A formatter that strips ANSI escape sequences and non-printable control
    characters from log output.

    Addresses, token names and scenario labels are caller-supplied text and
    end up verbatim in log messages.
    """

    # ANSI CSI sequences (colors, cursor moves) and single ESC chars
    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars (0x00-0x1F) excluding Tab and Newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")


    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text


    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class TwammLogHighlighter(RegexHighlighter):
    """
    Rich highlighter for engine logs: error codes, pool ids, order ids,
    block numbers and order directions.
    """

    base_style = "twamm."
    highlights = [
        r"(?P<block>\bblocks?\s+\d+\b)",
        r"(?P<direction>\b(ZERO_TO_ONE|ONE_TO_ZERO)\b)",
        r"(?P<error_code>\bTWM#\d{3}(\s+[A-Z_]+)?)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<order>\border\s+#?\d+\b)",
        r"(?P<pool_id>\b[0-9a-f]{16}\b)",
        r"(?P<timestamp>^(.*?)UTC)",
    ]


_manager = LogManager()

def configure(**kwargs) -> None:
    """Configure the logging system; see `LogManager.configure`."""
    _manager.configure(**kwargs)

def get_logger(name: str) -> logging.Logger:
    """
    Public accessor of the logging system.
    Delegates to the Singleton LogManager, ensuring configuration is applied.
    """
    return _manager.get_logger(name)
