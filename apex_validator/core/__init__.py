"""Core settlement pipeline."""
from .attribution import (
    AttributionError,
    AttributionResolver,
    NoMatchingPlacementError,
    NoPlacementsError,
    PublisherWalletMissingError,
    parse_ad_metadata,
)
from .checkpoint import CheckpointStore
from .event_monitor import EventMonitor, MonitorState, MonitorStats
from .payment_executor import ALREADY_PROCESSED, PaymentExecutor

__all__ = [
    "ALREADY_PROCESSED",
    "AttributionError",
    "AttributionResolver",
    "CheckpointStore",
    "EventMonitor",
    "MonitorState",
    "MonitorStats",
    "NoMatchingPlacementError",
    "NoPlacementsError",
    "PaymentExecutor",
    "PublisherWalletMissingError",
    "parse_ad_metadata",
]
