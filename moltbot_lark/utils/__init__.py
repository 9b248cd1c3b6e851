"""
Utilities - logging and request tracing
"""

from .logger import logger, setup_logging
from .trace_context import TraceContext, TraceLogFilter

__all__ = [
    "logger",
    "setup_logging",
    "TraceContext",
    "TraceLogFilter",
]
