"""
Structured JSON logging for the agent.

The logger returned by setup_logging() is the agent's logging handle: it is
created once at start-up, handed to every component that logs, and released
with teardown_logging() when the process exits.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional


AGENT_LOGGER_NAME = 'metrics_agent'

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per record.

    Output format:
    {
        "timestamp": "2026-02-08T20:30:00.123456Z",
        "level": "INFO",
        "logger": "metrics_agent",
        "message": "Snapshot updated",
        "context": {...}  # Optional, from extra={'context': {...}}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if getattr(record, 'context', None):
            log_data['context'] = record.context

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        # Source location in debug mode
        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


def _formatter(use_json: bool) -> logging.Formatter:
    return JSONFormatter() if use_json else logging.Formatter(PLAIN_FORMAT)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_json: bool = True,
    name: str = AGENT_LOGGER_NAME
) -> logging.Logger:
    """
    Create the agent's logger.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file path for a file handler
        use_json: Use JSON formatter (default: True)
        name: Logger name

    Returns:
        Configured logger instance

    Raises:
        OSError: If the log file cannot be opened
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Avoid stacking handlers when called more than once
    teardown_logging(logger)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(_formatter(use_json))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(_formatter(use_json))
        logger.addHandler(file_handler)

    return logger


def teardown_logging(logger: logging.Logger) -> None:
    """Flush, close and detach every handler of ``logger``"""
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)
