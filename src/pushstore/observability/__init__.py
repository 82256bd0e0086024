"""Observability for pushstore: structured logging with request context."""

from pushstore.observability.logging import LogContext, configure_logging

__all__ = ["LogContext", "configure_logging"]
