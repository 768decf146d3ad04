"""
Structured logging configuration with correlation IDs and phone masking.
"""
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

from reminder_orchestrator.utils.phone import mask_phone_number

# Context variables for request-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
account_id_var: ContextVar[Optional[str]] = ContextVar('account_id', default=None)
reminder_id_var: ContextVar[Optional[str]] = ContextVar('reminder_id', default=None)

# Event keys whose values are phone numbers
PHONE_FIELDS = {"phone", "phone_number", "customer_phone", "to", "from_number"}

_service_context: Dict[str, str] = {
    "service": "reminder-orchestrator",
    "version": "1.0.0",
    "environment": "development",
}


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())[:8]
        correlation_id_var.set(correlation_id)

    event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_request_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add account and reminder context to log events."""
    account_id = account_id_var.get()
    if account_id:
        event_dict.setdefault("account_id", account_id)

    reminder_id = reminder_id_var.get()
    if reminder_id:
        event_dict.setdefault("reminder_id", reminder_id)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict.update(_service_context)
    return event_dict


def add_timestamp(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = time.time()
    event_dict["iso_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return event_dict


def mask_phone_numbers(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Replace phone number values with their masked form."""
    for key in PHONE_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value:
            event_dict[key] = mask_phone_number(value)
    return event_dict


def build_processors() -> list:
    """Processor chain shared by the application and tests."""
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_service_context,
        add_request_context,
        add_correlation_id,
        mask_phone_numbers,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ]


def setup_logging(
    log_level: str = "INFO",
    service_name: str = "reminder-orchestrator",
    service_version: str = "1.0.0",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging.

    Args:
        log_level: Minimum level passed to the stdlib root logger
        service_name: Name stamped on every event
        service_version: Version stamped on every event
        environment: Deployment environment stamped on every event
    """
    _service_context.update(
        service=service_name,
        version=service_version,
        environment=environment,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=build_processors(),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


@contextmanager
def correlation_context(
    correlation_id: Optional[str] = None,
    account_id: Optional[str] = None,
    reminder_id: Optional[str] = None,
):
    """
    Context manager for setting correlation context.

    Values are restored on exit, so nested account/reminder scopes inside a
    batch job do not leak into the next item.
    """
    tokens = []
    if correlation_id:
        tokens.append((correlation_id_var, correlation_id_var.set(correlation_id)))
    if account_id:
        tokens.append((account_id_var, account_id_var.set(account_id)))
    if reminder_id:
        tokens.append((reminder_id_var, reminder_id_var.set(reminder_id)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@contextmanager
def performance_timing(operation_name: str, **context):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
    """
    start_time = time.time()
    logger = structlog.get_logger("performance")
    logger.info("Operation started", operation=operation_name, **context)

    try:
        yield
    finally:
        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_ms=duration_ms,
            **context
        )


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)
