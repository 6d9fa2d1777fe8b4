"""Centralized logging factory for consistent logger setup across apiflow.

Usage:
    # Explicit initialization (optional - auto-initializes on first use)
    LoggingFactory.initialize(level=logging.INFO, log_file=Path("logs/apiflow.log"))

    # Get a logger for your module
    logger = LoggingFactory.get_logger(__name__)

Library modules never call this; they use ``logging.getLogger(__name__)``
and leave handler setup to the application (the CLI, or the embedding program).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Union

if TYPE_CHECKING:
    from ..config import Config

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class LoggingFactory:
    """Factory for configuring the logging system once per process.

    Class Attributes:
        _initialized: Flag to ensure single initialization
        _handlers: Handlers installed on the root logger by this factory
    """

    _initialized = False
    _handlers: list = []

    @classmethod
    def initialize(
        cls,
        level: Union[int, str] = logging.INFO,
        format_string: Optional[str] = None,
        log_file: Optional[Union[str, Path]] = None,
        console: bool = True,
        handlers: Optional[Iterable[logging.Handler]] = None,
    ) -> None:
        """Initialize the logging system once for the entire application.

        Subsequent calls are ignored until reset() is called.

        Args:
            level: Root logging level (number or name such as "DEBUG")
            format_string: Log message format. Defaults to DEFAULT_FORMAT.
            log_file: Optional file to append log records to
            console: Attach a stderr StreamHandler when no handlers are given
            handlers: Pre-built handlers (e.g. rich's RichHandler) to use
                instead of the stderr handler
        """
        if cls._initialized:
            return

        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO

        formatter = logging.Formatter(format_string or DEFAULT_FORMAT)
        installed = []

        if handlers is not None:
            installed.extend(handlers)
        elif console:
            stream = logging.StreamHandler()
            stream.setFormatter(formatter)
            installed.append(stream)

        if log_file:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path)
            file_handler.setFormatter(formatter)
            installed.append(file_handler)

        root = logging.getLogger()
        root.setLevel(level)
        for handler in installed:
            root.addHandler(handler)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._handlers = installed
        cls._initialized = True

    @classmethod
    def initialize_from_config(
        cls, config: "Config", handlers: Optional[Iterable[logging.Handler]] = None
    ) -> None:
        """Initialize from LOG_LEVEL, LOG_FORMAT, LOG_FILE and LOG_TO_CONSOLE."""
        cls.initialize(
            level=config.log_level,
            format_string=config.log_format,
            log_file=config.log_file,
            console=config.log_to_console,
            handlers=handlers,
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger, initializing the logging system with defaults if needed."""
        if not cls._initialized:
            cls.initialize()
        return logging.getLogger(name)

    @classmethod
    def configure_verbose(cls, verbose: bool = False) -> None:
        """Switch the root and ``apiflow`` loggers between INFO and DEBUG."""
        level = logging.DEBUG if verbose else logging.INFO
        logging.getLogger().setLevel(level)
        logging.getLogger("apiflow").setLevel(level)

    @classmethod
    def reset(cls) -> None:
        """Remove the handlers this factory installed and allow re-initialization."""
        root = logging.getLogger()
        for handler in cls._handlers:
            root.removeHandler(handler)
            handler.close()
        cls._handlers = []
        cls._initialized = False


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger for the given module name."""
    return LoggingFactory.get_logger(name)
