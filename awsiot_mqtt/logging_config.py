"""
Logging configuration for the awsiot_mqtt package.

Every module logs through ``get_logger('<module>')`` so that the whole package
hangs off the ``awsiot_mqtt`` logger and can be tuned per module.
"""

import copy
import logging
import sys
from typing import Optional, TextIO

ROOT_LOGGER = 'awsiot_mqtt'
LOG_FORMAT = '%(levelname)s [%(name)s] [%(threadName)s] %(message)s'


class LoggingManager:
    """Installs and replaces the package's console handler."""

    _handler: Optional[logging.Handler] = None

    class ColoredFormatter(logging.Formatter):
        """Formatter that colors the level name with ANSI escapes."""

        COLORS = {
            'DEBUG': '\033[36m',
            'INFO': '\033[32m',
            'WARNING': '\033[33m',
            'ERROR': '\033[31m',
            'CRITICAL': '\033[35m',
        }
        RESET = '\033[0m'

        def __init__(self, fmt=None, use_color=True):
            super().__init__(fmt)
            self.use_color = use_color

        def format(self, record):
            if self.use_color and record.levelname in self.COLORS:
                # Records are shared between handlers; color a copy only.
                record = copy.copy(record)
                record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            return super().format(record)

    @classmethod
    def setup(cls, level: str = 'WARNING', module_levels: Optional[dict] = None,
              use_color: bool = False, stream: Optional[TextIO] = None):
        """
        Route package log records to ``stream``.

        A second call swaps out the handler from the first one instead of
        stacking another. ``level='NONE'`` silences the package entirely.

        Args:
            level: Package-wide level name, or NONE
            module_levels: Per-module overrides, e.g. {'connection': 'DEBUG'}
            use_color: Color level names for a terminal
            stream: Where to write (stderr when omitted)
        """
        package_logger = logging.getLogger(ROOT_LOGGER)

        if cls._handler is not None:
            package_logger.removeHandler(cls._handler)
            cls._handler = None

        if level.upper() == 'NONE':
            package_logger.setLevel(logging.CRITICAL + 1)
            return

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(cls.ColoredFormatter(LOG_FORMAT, use_color=use_color))
        package_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
        package_logger.addHandler(handler)
        cls._handler = handler

        for module, module_level in (module_levels or {}).items():
            cls.get_logger(module).setLevel(getattr(logging, module_level.upper(), logging.WARNING))

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """Logger for one package module, named ``awsiot_mqtt.<name>``."""
        return logging.getLogger(f'{ROOT_LOGGER}.{name}')


def setup_logging(level: str = 'WARNING', module_levels: Optional[dict] = None,
                  use_color: bool = False, stream: Optional[TextIO] = None):
    """Shortcut for LoggingManager.setup()."""
    LoggingManager.setup(level, module_levels, use_color, stream)


def get_logger(name: str) -> logging.Logger:
    """Shortcut for LoggingManager.get_logger()."""
    return LoggingManager.get_logger(name)
