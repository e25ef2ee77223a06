"""Structured Logger with JSON Formatting.

Provides structured logging with JSON output for machine-readable logs.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from churnguard_server.lib.distributed_tracing import get_correlation_id

# Never written to logs (API keys identify a tenant and must stay secret)
SENSITIVE_KEYS = ('api_key', 'apiKey', 'token', 'password', 'client_secret', 'access_token')

# Context fields promoted from `extra` into the JSON document
CONTEXT_FIELDS = (
    'client_id',
    'user_id',
    'event_type',
    'duration_ms',
    'endpoint',
    'status_code',
    'risk_score',
    'source',
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f') + 'Z'


def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in SENSITIVE_KEYS}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            'timestamp': _timestamp(),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'request_id': get_correlation_id(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        context = getattr(record, 'context', None)
        if context:
            log_data.update(_redact(context))

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """Structured logger with JSON formatting.

    Keyword arguments become fields of the JSON line:

        logger = StructuredLogger(__name__)
        logger.info('Event recorded', client_id=client_id, event_type='click')
        logger.error('Database error', exc_info=True)
    """

    def __init__(self, name: str):
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
        """
        self.logger = logging.getLogger(name)

        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.logger.setLevel(getattr(logging, log_level, logging.INFO))

        # Avoid duplicate handlers when a module is re-imported
        self.logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        self.logger.addHandler(handler)

        # Propagate so pytest's caplog and host applications still see records
        self.logger.propagate = True

    def _extra(self, extra: Dict[str, Any]) -> Dict[str, Any]:
        promoted = {key: extra[key] for key in CONTEXT_FIELDS if key in extra}
        rest = {key: value for key, value in extra.items() if key not in CONTEXT_FIELDS}
        if rest:
            promoted['context'] = rest
        return promoted

    def info(self, message: str, **extra: Any) -> None:
        """Log INFO level message with additional context."""
        self.logger.info(message, extra=self._extra(extra))

    def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        """Log WARNING level message.

        Args:
            message: Log message
            exc_info: Include exception traceback
            **extra: Additional context
        """
        self.logger.warning(message, exc_info=exc_info, extra=self._extra(extra))

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        """Log ERROR level message.

        Args:
            message: Log message
            exc_info: Include exception traceback
            **extra: Additional context
        """
        self.logger.error(message, exc_info=exc_info, extra=self._extra(extra))

    def debug(self, message: str, **extra: Any) -> None:
        """Log DEBUG level message with additional context."""
        self.logger.debug(message, extra=self._extra(extra))


def log_event(event: str, level: str = 'INFO', context: Optional[Dict[str, Any]] = None) -> None:
    """Emit a single structured event line without creating a logger instance.

    Sensitive keys (API keys, tokens) are dropped before output.

    Args:
        event: Event name (e.g., "ingest.event_recorded", "prediction.cache_hit")
        level: Log level (INFO, WARNING, ERROR, DEBUG)
        context: Additional context dictionary

    Example:
        log_event('ingest.event_recorded', context={'client_id': cid, 'event_type': 'click'})
    """
    log_entry = {
        'timestamp': _timestamp(),
        'level': level.upper(),
        'event': event,
        'correlation_id': get_correlation_id(),
        **_redact(context or {}),
    }
    print(json.dumps(log_entry, default=str))


def log_request(endpoint: str, method: str, status_code: int, duration_ms: float) -> None:
    """Log API request with performance metrics.

    Args:
        endpoint: API endpoint path
        method: HTTP method
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    log_data = {
        'timestamp': _timestamp(),
        'level': 'INFO',
        'message': f'{method} {endpoint}',
        'request_id': get_correlation_id(),
        'endpoint': endpoint,
        'method': method,
        'status_code': status_code,
        'duration_ms': duration_ms,
    }
    print(json.dumps(log_data))
