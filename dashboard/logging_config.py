"""
Structured JSON logging configuration.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = (
        'request_id', 'user', 'endpoint', 'method', 'status_code',
        'duration_ms', 'remote_addr', 'job_id', 'tenant_id', 'actor',
        'error_id',
    )

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in self.EXTRA_FIELDS:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry, default=str)


def configure_logging(app=None, settings=None):
    """Configure structured JSON logging.

    Args:
        app: Optional Flask app whose logger will be updated.
        settings: AppSettings; defaults to get_settings().

    Returns:
        Configured logger instance.
    """
    if settings is None:
        from config.settings import get_settings
        settings = get_settings()

    log_level = settings.log_level.upper()
    log_format = settings.log_format
    log_file = settings.log_file

    logger = logging.getLogger('tenantops')
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    logger.handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)

    from core.feature_flags import is_enabled
    if log_format == 'json' and is_enabled('structured_logging'):
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logger.addHandler(console_handler)

    # File handler (if configured)
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    # Package loggers (core.*, dashboard.*) propagate to root; route them here too
    for name in ('core', 'dashboard'):
        child = logging.getLogger(name)
        child.setLevel(logger.level)
        child.handlers = logger.handlers

    # Sync Flask's logger
    if app is not None:
        app.logger.handlers = logger.handlers
        app.logger.setLevel(logger.level)

    return logger
