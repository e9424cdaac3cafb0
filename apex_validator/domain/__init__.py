"""Domain records shared by the settlement pipeline."""
from .models import (
    ZERO_ADDRESS,
    AdMetadata,
    Budget,
    Campaign,
    PaymentResult,
    Placement,
    Product,
    PurchaseEvent,
    SettlementInfo,
    compute_action_hash,
)

__all__ = [
    "AdMetadata",
    "Budget",
    "Campaign",
    "PaymentResult",
    "Placement",
    "Product",
    "PurchaseEvent",
    "SettlementInfo",
    "ZERO_ADDRESS",
    "compute_action_hash",
]
