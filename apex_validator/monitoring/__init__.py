"""Monitoring and observability package."""
from .logging import setup_logging
from .metrics import start_metrics_server

__all__ = ["setup_logging", "start_metrics_server"]
