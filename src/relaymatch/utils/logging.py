"""
Logging utilities for relaymatch.

A thin layer over :mod:`logging` that adds four user-facing verbosity levels,
colored single-line output and a tqdm based progress tracker for the CLI.
"""

import logging
import os
import sys
from enum import Enum

from tqdm import tqdm


class LogLevel(Enum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


_PY_LEVELS = {
    LogLevel.QUIET: logging.ERROR,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


class Colors:
    """ANSI color codes for terminal output."""

    GRAY = "\033[90m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


class Symbols:
    CHECK = "✓"
    CROSS = "✗"
    GEAR = "⚙"
    WARNING = "⚠"
    TRUCK = "🚚"


class SimpleFormatter(logging.Formatter):
    """Color the whole message according to its level."""

    COLORS = {
        "DEBUG": Colors.GRAY,
        "INFO": Colors.CYAN,
        "WARNING": Colors.YELLOW,
        "ERROR": Colors.RED,
        "CRITICAL": Colors.RED + Colors.BOLD,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        return f"{color}{record.getMessage()}{Colors.RESET}"


class RelayMatchLogger:
    """Process-wide logger registry honoring the current :class:`LogLevel`."""

    _current_level = LogLevel.NORMAL
    _loggers: dict[str, logging.Logger] = {}

    @classmethod
    def set_level(cls, level: LogLevel) -> None:
        cls._current_level = level
        for logger in cls._loggers.values():
            cls._configure_logger_level(logger, level)

    @classmethod
    def get_level(cls) -> LogLevel:
        return cls._current_level

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            cls._configure_logger_level(logger, cls._current_level)
            cls._loggers[name] = logger
        return cls._loggers[name]

    @staticmethod
    def _configure_logger_level(logger, level: LogLevel) -> None:
        # Child processes inherit the effective level through the environment
        env_level = os.getenv("RELAYMATCH_EFFECTIVE_LOG_LEVEL")
        if env_level:
            try:
                level = LogLevel[env_level.upper()]
            except KeyError:
                pass
        logger.setLevel(_PY_LEVELS[level])

    @classmethod
    def progress(cls, message: str, symbol: str = Symbols.GEAR) -> None:
        if cls._current_level.value >= LogLevel.NORMAL.value:
            cls.get_logger("relaymatch.progress").info(
                f"{Colors.BLUE}{symbol} {message}{Colors.RESET}"
            )

    @classmethod
    def success(cls, message: str, symbol: str = Symbols.CHECK) -> None:
        if cls._current_level.value >= LogLevel.NORMAL.value:
            cls.get_logger("relaymatch.success").info(
                f"{Colors.GREEN}{symbol} {message}{Colors.RESET}"
            )

    @classmethod
    def detail(cls, message: str, indent: str = "  ") -> None:
        if cls._current_level.value >= LogLevel.VERBOSE.value:
            cls.get_logger("relaymatch.detail").info(f"{indent} {message}")

    @classmethod
    def warning(cls, message: str, symbol: str = Symbols.WARNING) -> None:
        if cls._current_level.value >= LogLevel.NORMAL.value:
            cls.get_logger("relaymatch.warning").warning(f"{symbol} {message}")

    @classmethod
    def error(cls, message: str, symbol: str = Symbols.CROSS) -> None:
        cls.get_logger("relaymatch.error").error(f"{symbol} {message}")

    @classmethod
    def debug(cls, message: str, logger_name: str = "relaymatch.debug") -> None:
        if cls._current_level.value >= LogLevel.DEBUG.value:
            cls.get_logger(logger_name).debug(message)


def suppress_third_party_logs() -> None:
    for name in ("pulp", "joblib", "numba", "matplotlib", "urllib3", "sklearn"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(level: LogLevel | None = None) -> None:
    """Configure the root handler; ``RELAYMATCH_LOG_LEVEL`` wins when no level is given."""
    if level is None:
        env_value = os.getenv("RELAYMATCH_LOG_LEVEL", "normal").upper()
        level = LogLevel.__members__.get(env_value, LogLevel.NORMAL)

    os.environ["RELAYMATCH_EFFECTIVE_LOG_LEVEL"] = level.name

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SimpleFormatter())
    root.addHandler(handler)
    root.setLevel(_PY_LEVELS[level])

    RelayMatchLogger.set_level(level)
    suppress_third_party_logs()


class ProgressTracker:
    """Step-wise progress bar, silent in QUIET mode."""

    def __init__(self, steps: list[str]):
        self.steps = steps
        self.current = 0
        if RelayMatchLogger.get_level() == LogLevel.QUIET:
            self.pbar = None
        else:
            self.pbar = tqdm(
                total=len(steps),
                desc=f"{Colors.BLUE}{Symbols.TRUCK} Matching{Colors.RESET}",
                bar_format="{desc}: {percentage:3.0f}%|{bar:30}| {n_fmt}/{total_fmt}",
            )

    def advance(self, message: str | None = None, status: str = "success") -> None:
        if self.pbar is None:
            self.current += 1
            return
        if message:
            color = Colors.GREEN if status == "success" else Colors.YELLOW
            self.pbar.write(f"{color}{Symbols.CHECK} {message}{Colors.RESET}")
        self.pbar.update(1)
        self.current += 1

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.write(f"{Colors.GREEN}{Symbols.CHECK} Matching completed{Colors.RESET}")
            self.pbar.close()


def log_progress(message: str) -> None:
    RelayMatchLogger.progress(message, Symbols.GEAR)


def log_success(message: str) -> None:
    RelayMatchLogger.success(message, Symbols.CHECK)


def log_detail(message: str) -> None:
    RelayMatchLogger.detail(message, "  ")


def log_warning(message: str) -> None:
    RelayMatchLogger.warning(message, Symbols.WARNING)


def log_error(message: str) -> None:
    RelayMatchLogger.error(message, Symbols.CROSS)


def log_debug(message: str, logger_name: str = "relaymatch.debug") -> None:
    RelayMatchLogger.debug(message, logger_name)


def log_info(message: str) -> None:
    RelayMatchLogger.get_logger("relaymatch.info").info(message)
