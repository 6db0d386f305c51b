"""
Logging configuration for MedVault.

Provides structured JSON logging for the service and a dedicated logger
that mirrors audit trail events.
"""

import json
import logging
import sys
import time
from typing import Any, Optional


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line so logs can be shipped to an
    aggregation system unchanged.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Mirrors audit trail events into the application log.

    The audit log itself is the source of truth; this only makes events
    visible to whatever collects the service's logs.
    """

    def __init__(self, name: str = "medvault.audit"):
        self._logger = logging.getLogger(name)

    def event(self, event_type: str, level: int = logging.INFO, **fields: Any) -> None:
        """Log one audit event with its fields attached."""
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type} " + " ".join(f"{key}={value}" for key, value in fields.items()),
            (),
            None,
        )
        record.extra_fields = {"event_type": event_type, **fields}
        self._logger.handle(record)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


# Global audit logger instance
audit_log = AuditLogger()
