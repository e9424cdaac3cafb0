"""Chain integrations: registry reads, event stream and settlement calls."""
from .chain import (
    ChainError,
    RegistryReadError,
    SubmissionError,
    TransactionRevertedError,
    create_web3,
)
from .event_source import PurchaseEventSource, Subscription
from .registry_client import RegistryClient
from .settlement_submitter import SettlementCall, SettlementCallFactory, SettlementSubmitter

__all__ = [
    "ChainError",
    "PurchaseEventSource",
    "RegistryClient",
    "RegistryReadError",
    "SettlementCall",
    "SettlementCallFactory",
    "SettlementSubmitter",
    "SubmissionError",
    "Subscription",
    "TransactionRevertedError",
    "create_web3",
]
