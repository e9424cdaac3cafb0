"""
Domain models for purchase attribution and settlement.

Every record here is immutable: events are facts observed on-chain and
registry records are owned by external contracts.
"""
from typing import Optional

from eth_abi.packed import encode_packed
from eth_utils import keccak
from pydantic import BaseModel, ConfigDict, Field

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class PurchaseEvent(BaseModel):
    """A decoded ProductPurchased log."""

    model_config = ConfigDict(frozen=True)

    purchase_id: int
    product_id: int
    buyer: str
    amount: int
    timestamp: int
    block_number: int
    transaction_hash: str


class Product(BaseModel):
    """Product record from the DemoPurchase contract."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    advertiser_id: int
    name: str = ""
    description: str = ""
    price_amount: int = 0
    is_active: bool = True


class Placement(BaseModel):
    """An ad placement from the AdRegistry."""

    model_config = ConfigDict(frozen=True)

    ad_id: int
    campaign_id: int
    advertiser_id: int
    publisher_id: int
    start_time: int
    metadata: bytes = b""


class AdMetadata(BaseModel):
    """
    Structured view of a placement's metadata blob.

    Only the wallet of the user who was shown the ad is interpreted;
    any other keys are kept as-is.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    user_wallet: Optional[str] = Field(default=None, alias="userWallet")


class Budget(BaseModel):
    """Campaign budget in raw token units."""

    model_config = ConfigDict(frozen=True)

    total_budget: int
    cpa_amount: int
    spent: int

    @property
    def remaining(self) -> int:
        return self.total_budget - self.spent


class Campaign(BaseModel):
    """Campaign record from the CampaignRegistry."""

    model_config = ConfigDict(frozen=True)

    campaign_id: int
    advertiser_id: int
    validator_id: int
    budget: Budget
    start_time: int
    end_time: int
    active: bool

    def can_pay_action(self) -> bool:
        """Whether one more action fits in the remaining budget."""
        return self.active and self.budget.remaining >= self.budget.cpa_amount


class SettlementInfo(BaseModel):
    """Resolved attribution for a purchase. Built per purchase, never persisted."""

    model_config = ConfigDict(frozen=True)

    publisher_wallet: str
    publisher_id: int
    ad_id: int
    campaign_id: int
    purchase_event: PurchaseEvent


class PaymentResult(BaseModel):
    """Outcome of a settlement attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    transaction_hash: Optional[str] = None
    action_hash: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


def compute_action_hash(purchase_id: int, ad_id: int) -> bytes:
    """
    Idempotency key of a settlement action.

    keccak256(abi.encodePacked(uint256 purchaseId, uint256 adId)), the same
    digest the CampaignRegistry records in isActionProcessed.
    """
    return keccak(encode_packed(["uint256", "uint256"], [purchase_id, ad_id]))
