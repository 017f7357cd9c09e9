"""Observability module.

Provides structured logging, metrics, and health checks.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    smtp_connections_total,
    smtp_active_connections,
    smtp_commands_total,
    inbound_messages_total,
    inbound_message_size_bytes,
    retention_deleted_total,
)
from .request_id import (
    request_id_var,
    get_request_id,
    set_request_id,
    generate_request_id,
    generate_session_id,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "smtp_connections_total",
    "smtp_active_connections",
    "smtp_commands_total",
    "inbound_messages_total",
    "inbound_message_size_bytes",
    "retention_deleted_total",
    # Correlation
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "generate_session_id",
]
