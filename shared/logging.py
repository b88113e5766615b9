"""
Structured logging for the Salesforce Access Layer.

Events are rendered as JSON lines on stdout. Every event is tagged with the
component that emitted it and, inside ``request_context()``, with the
correlation ID shared by all HTTP attempts of one logical operation. Values
under credential-bearing keys are masked before rendering.
"""

import sys
import structlog
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from contextvars import ContextVar

# Correlation ID of the operation in progress
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

SENSITIVE_KEYS = frozenset({
    "access_token",
    "authorization",
    "client_secret",
    "password",
    "security_token",
})

REDACTED = "***"


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route structlog through stdlib logging as JSON at ``log_level``."""
    level = getattr(logging, log_level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_component_context,
            add_correlation_context,
            redact_credentials,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(service_name).setLevel(level)


def add_component_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split ``salesforce.query_executor`` style logger names into service and component."""
    logger_name = event_dict.get("logger", "")
    service, _, component = logger_name.partition(".")
    if component:
        event_dict["service"] = service
        event_dict["component"] = component

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values logged under credential keys."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = REDACTED

    return event_dict


@contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """Scope a correlation ID to a block, restoring the previous one on exit.

    An ID already present in the context is reused so nested operations keep
    the caller's correlation.
    """
    current = request_id_var.get()
    if request_id is None:
        request_id = current or str(uuid.uuid4())
    token = request_id_var.set(request_id)
    try:
        yield request_id
    finally:
        request_id_var.reset(token)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
