"""
Pytest configuration and fixtures for the settlement pipeline tests.
"""
from typing import Any, Dict

import pytest

from apex_validator.config import SettlementMode
from apex_validator.domain.models import PurchaseEvent, SettlementInfo
from apex_validator.integrations.settlement_submitter import SettlementCallFactory
from tests.factories import (
    CAMPAIGN_REGISTRY,
    DEMO_PURCHASE,
    PUBLISHER_WALLET,
    VALIDATOR_ID,
    VALIDATOR_KEY,
    make_purchase_event,
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: isolated component tests")
    config.addinivalue_line("markers", "integration: pipeline tests across components")


@pytest.fixture
def purchase_event() -> PurchaseEvent:
    return make_purchase_event()


@pytest.fixture
def settlement(purchase_event: PurchaseEvent) -> SettlementInfo:
    return SettlementInfo(
        publisher_wallet=PUBLISHER_WALLET,
        publisher_id=11,
        ad_id=21,
        campaign_id=5,
        purchase_event=purchase_event,
    )


@pytest.fixture
def call_factory() -> SettlementCallFactory:
    return SettlementCallFactory(
        mode=SettlementMode.PROCESS_ACTION,
        validator_id=VALIDATOR_ID,
        campaign_registry_address=CAMPAIGN_REGISTRY,
    )


@pytest.fixture
def settings_kwargs() -> Dict[str, Any]:
    """Minimal valid settings, independent of the process environment."""
    return {
        "_env_file": None,
        "rpc_url": "https://rpc.example.org",
        "demo_purchase_address": DEMO_PURCHASE,
        "ad_registry_address": "0x82dc7de34418314de0853c787d3fb634342b3c58",
        "identity_registry_address": "0x8004a169fb4a3325136eb29fa0ceb6d2e539a432",
        "campaign_registry_address": CAMPAIGN_REGISTRY,
        "validator_private_key": VALIDATOR_KEY,
        "validator_id": VALIDATOR_ID,
    }
