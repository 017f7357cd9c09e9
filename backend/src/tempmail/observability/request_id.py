"""Correlation ID management for request and SMTP session correlation.

HTTP requests and SMTP connections each run in their own asyncio task,
so a ContextVar gives every log line the id of the request or session
that produced it.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request_id (async-safe)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID.

    Returns:
        str: UUID v4 request ID
    """
    return str(uuid.uuid4())


def generate_session_id() -> str:
    """Generate a short id for an SMTP connection."""
    return f"smtp-{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    """Get current request ID from context.

    Returns:
        str: Current request ID or "no-request-id" if not set
    """
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    """Set request ID in current context.

    Args:
        request_id: Request ID to set
    """
    request_id_var.set(request_id)
