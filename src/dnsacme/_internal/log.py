"""Logging utilities for the dnsacme command line client.

Use `setup_logging` once the command line was parsed. It configures a
terminal logger at the verbosity the user asked for and, if a log file
was given, a rotating file handler receiving every debug message,
including the full request/response exchange with the server.

"""
import logging
import logging.handlers
import os
import sys
from typing import IO
from typing import Optional

from dnsacme import errors
from dnsacme._internal import constants

# Logging format
CLI_FMT = "%(message)s"
FILE_FMT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"

ANSI_SGR_RED = "\033[31m"
ANSI_SGR_RESET = "\033[0m"

logger = logging.getLogger(__name__)


def setup_logging(verbose_count: int = 0, log_file: Optional[str] = None,
                  max_log_backups: int = 10, stream: Optional[IO] = None) -> None:
    """Setup terminal logging and, optionally, file logging.

    :param int verbose_count: Number of ``-v`` flags; each one lowers the
        terminal level by 10.
    :param str log_file: Path of the debug log, if any.
    :param int max_log_backups: Rotated log files to keep.

    :raises .Error: if the log file cannot be opened.

    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # send all records to handlers

    stream_handler = ColoredStreamHandler(stream)
    stream_handler.setFormatter(logging.Formatter(CLI_FMT))
    level = max(logging.DEBUG, constants.DEFAULT_LOGGING_LEVEL - verbose_count * 10)
    stream_handler.setLevel(level)
    root_logger.addHandler(stream_handler)

    if log_file is not None:
        root_logger.addHandler(setup_log_file_handler(log_file, max_log_backups, FILE_FMT))
    logger.debug('Root logging level set at %d', level)


def setup_log_file_handler(log_file: str, max_log_backups: int, fmt: str) -> logging.Handler:
    """Setup file debug logging.

    :param str log_file: path to the log file
    :param int max_log_backups: number of rotated files to keep
    :param str fmt: logging format string

    :returns: file handler
    :rtype: logging.Handler

    """
    try:
        handler = PrivateRotatingFileHandler(
            log_file, maxBytes=2 ** 20, backupCount=max_log_backups)
    except IOError as error:
        raise errors.Error('Unable to open log file {0}: {1}'.format(log_file, error))
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=fmt))
    return handler


class PrivateRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler whose files only the owner can read.

    The debug log holds full request and response bodies.

    """
    def _open(self) -> IO:
        fd = os.open(self.baseFilename, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o600)
        return os.fdopen(fd, self.mode, encoding=self.encoding, errors=self.errors)


class ColoredStreamHandler(logging.StreamHandler):
    """Sends colored logging output to a stream.

    If the specified stream is not a tty, the class works like the
    standard `logging.StreamHandler`. Default red_level is
    `logging.WARNING`.

    :ivar bool colored: True if output should be colored
    :ivar bool red_level: The level at which to output

    """
    def __init__(self, stream: Optional[IO] = None) -> None:
        super().__init__(stream)
        self.colored = (sys.stderr.isatty() if stream is None else
                        stream.isatty())
        self.red_level = logging.WARNING

    def format(self, record: logging.LogRecord) -> str:
        """Formats the string representation of record.

        :param logging.LogRecord record: Record to be formatted
        :returns: Formatted, string representation of record
        :rtype: str

        """
        out = super().format(record)
        if self.colored and record.levelno >= self.red_level:
            return ''.join((ANSI_SGR_RED, out, ANSI_SGR_RESET))
        return out
