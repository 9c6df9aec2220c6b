"""Structured logging module.

This module provides utilities for structured logging using structlog and logfire.
"""

from .context import get_log_context, log_context
from .setup import configure_logfire, get_logger, setup_logging

__all__ = [
    "configure_logfire",
    "get_log_context",
    "get_logger",
    "log_context",
    "setup_logging",
]
