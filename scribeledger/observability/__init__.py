"""
Observability infrastructure.

Components:
- metrics.py: Prometheus counters and histograms
- logging.py: Structured JSON logging with request context
- middleware.py: Request logging and metrics middleware
"""

from scribeledger.observability.logging import configure_logging, get_logger
from scribeledger.observability.metrics import generate_metrics

__all__ = [
    "configure_logging",
    "get_logger",
    "generate_metrics",
]
