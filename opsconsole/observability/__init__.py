"""
Observability module - Logging, Metrics, and Tracing.
"""

from opsconsole.observability.logging import get_logger, log_context, setup_logging
from opsconsole.observability.metrics import metrics
from opsconsole.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
