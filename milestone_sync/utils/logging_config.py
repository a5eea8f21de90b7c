"""Logging configuration for milestone-sync with structured JSON output."""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from typing import Optional


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped in UTC.

    Fields passed through ``log_with_fields`` are merged at the top level
    but never replace the timestamp, level, logger or message keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = dict(getattr(record, 'extra_fields', None) or {})
        log_data.update({
            'timestamp': created.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        })

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


TEXT_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_logging(
    level: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
    fmt: Optional[str] = None
) -> logging.Logger:
    """Setup milestone-sync logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        handler: Custom handler (stdout by default)
        fmt: "json" (default) or "text"

    Returns:
        Configured logger instance
    """
    log_level = level or os.environ.get('MILESTONE_SYNC_LOG_LEVEL', 'INFO')
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    fmt = fmt or os.environ.get('MILESTONE_SYNC_LOG_FORMAT', 'json')

    logger = logging.getLogger('milestone_sync')
    logger.setLevel(log_level)

    # Remove existing handlers
    logger.handlers = []

    if fmt == 'text':
        formatter = logging.Formatter(TEXT_FORMAT)
    else:
        formatter = JSONFormatter()

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def log_with_fields(
    logger: logging.Logger,
    level: str,
    message: str,
    **fields
):
    """Log ``message`` with structured fields attached.

    Unknown level names log at INFO. The record points at the caller,
    not at this helper.

    Args:
        logger: Logger instance
        level: Level name ("debug", "warning", ...)
        message: Log message
        **fields: Extra fields rendered by JSONFormatter
    """
    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int):
        levelno = logging.INFO
    extra = {'extra_fields': fields} if fields else None
    logger.log(levelno, message, extra=extra, stacklevel=2)
