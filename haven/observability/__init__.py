"""
Observability module - Logging, Metrics, and Tracing.
"""

from haven.observability.logging import get_logger, log_context, setup_logging
from haven.observability.metrics import metrics
from haven.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
