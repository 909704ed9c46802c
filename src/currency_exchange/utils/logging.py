"""
Structured logging utilities for the currency exchange service.

Settlement events carry the account, the record id and its status as
top-level keys so log consumers can follow one transaction or payment
through its lifecycle. Money amounts are logged as fixed-point strings.
"""

import json
import logging
import sys
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

# LogRecord attributes that are not user-supplied context
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
})

# Extra fields lifted out of "context" to the top level of the JSON line
SETTLEMENT_FIELDS = ("user_id", "record_id", "status")


def _json_value(value: Any) -> Any:
    """Render values json cannot encode; Decimals never use exponent notation."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for settlement and price feed logs.

    ``user_id``, ``record_id`` and ``status`` are emitted at the top level;
    any other extra field ends up under "context".
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra_fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        for key in SETTLEMENT_FIELDS:
            if key in extra_fields:
                log_data[key] = extra_fields.pop(key)
        if extra_fields:
            log_data["context"] = extra_fields

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=_json_value)


class AccountLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with the account it concerns."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def get_account_logger(user_id: str) -> AccountLoggerAdapter:
    """Logger for the "currency_exchange.accounts" channel bound to one user."""
    logger = logging.getLogger("currency_exchange.accounts")
    return AccountLoggerAdapter(logger, {"user_id": user_id})


def setup_logging(
    level: int = logging.INFO,
    structured: bool = False,
    stream: Optional[Any] = None,
) -> None:
    """
    Configure the "currency_exchange" logger tree.

    Args:
        level: Logging level (default: INFO)
        structured: Emit one JSON object per line (default: False)
        stream: Output stream (default: sys.stdout)
    """
    package_logger = logging.getLogger("currency_exchange")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    package_logger.addHandler(handler)


def log_settlement_event(
    logger: Union[logging.Logger, logging.LoggerAdapter],
    level: int,
    message: str,
    record_id: int,
    status: Union[Enum, str],
    **kwargs: Any,
) -> None:
    """
    Log a transaction or payment lifecycle event.

    Args:
        logger: Logger or account adapter
        level: Log level
        message: Log message
        record_id: Transaction or payment id
        status: Record status after the event, as an enum or its value
        **kwargs: Additional context such as currency, amount or reason
    """
    if isinstance(status, Enum):
        status = status.value
    extra = {"record_id": record_id, "status": status}
    extra.update(kwargs)

    logger.log(level, message, extra=extra)
