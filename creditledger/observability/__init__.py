"""
Observability module - Logging, Metrics, and Tracing.
"""

from creditledger.observability.logging import get_logger, log_context, setup_logging
from creditledger.observability.metrics import metrics
from creditledger.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
