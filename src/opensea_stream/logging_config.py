"""
Logging configuration for the OpenSea stream client.

The client itself only creates module loggers; applications (and the
bundled monitor program) call ``configure_logging`` once at startup. The
``websockets`` library logs every frame at DEBUG level, so its loggers are
held at WARNING and raw frame dumps are filtered out.
"""
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

NOISY_LOGGERS = (
    "websockets",
    "websockets.client",
    "websockets.protocol",
    "asyncio",
)


def configure_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    enable_file_logging: bool = False,
    enable_console_logging: bool = True,
) -> None:
    """
    Configure console and optional file logging.

    Args:
        log_level: Level for the console handler and the ``opensea_stream`` loggers.
        log_file: Path of the log file. If None and enable_file_logging=True,
                 writes logs/opensea_stream_YYYYMMDD.log
        enable_file_logging: Whether to log to file (captures DEBUG).
        enable_console_logging: Whether to log to stdout.

    Example:
        >>> from opensea_stream.logging_config import configure_logging
        >>> configure_logging(log_level="DEBUG")
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"unknown log level {log_level!r}")

    handlers = []

    if enable_console_logging:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
            )
        )
        handlers.append(console_handler)

    if enable_file_logging:
        if log_file is None:
            log_dir = Path("logs")
            log_dir.mkdir(exist_ok=True)
            log_file = log_dir / f"opensea_stream_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
            )
        )
        handlers.append(file_handler)

    # Root at DEBUG when a file handler is present; handlers do the filtering.
    root_level = logging.DEBUG if enable_file_logging else level
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    binary_filter = BinaryMessageFilter()
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.WARNING)
        noisy.addFilter(binary_filter)

    app_level = logging.DEBUG if enable_file_logging else level
    logging.getLogger('opensea_stream').setLevel(app_level)
    logging.getLogger('__main__').setLevel(app_level)

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured: level=%s file=%s", log_level.upper(), log_file)


class BinaryMessageFilter(logging.Filter):
    """
    Drop records that dump raw WebSocket frames.

    ``websockets`` writes lines such as ``< TEXT '{"topic":...' [512 bytes]``
    and ``> BINARY 1f 8b ...`` at DEBUG level; these carry full event payloads
    (and, on connect, the token-bearing URL).
    """

    MARKERS = ('< BINARY', '> BINARY', '< TEXT', '> TEXT')

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if any(marker in message for marker in self.MARKERS):
            return False
        if '?token=' in message:
            return False
        return True
