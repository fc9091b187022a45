"""
Logging configuration.

Configures the standard library root logger for the CLI process.
"""

import logging
import sys

from .loader import LoggingConfig


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config: LoggingConfig) -> None:
    """Configure handlers and level for the process.

    Logs go to stderr so they never mix with command output on stdout.
    """
    handlers = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
