"""
Read-only access to the advertising registries.

Wraps the DemoPurchase, AdRegistry, IdentityRegistry and CampaignRegistry
contracts. Every read is retried with exponential backoff and surfaces as
RegistryReadError once retries are exhausted.
"""
from typing import Any, List

import structlog
from eth_utils import to_checksum_address
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import AsyncWeb3

from apex_validator.config import Settings
from apex_validator.domain.models import Budget, Campaign, Placement, Product
from apex_validator.integrations.abis import (
    AD_REGISTRY_ABI,
    CAMPAIGN_REGISTRY_ABI,
    DEMO_PURCHASE_ABI,
    IDENTITY_REGISTRY_ABI,
)
from apex_validator.integrations.chain import RegistryReadError

logger = structlog.get_logger(__name__)


class RegistryClient:
    """
    Typed reads against the registry contracts.

    Shared read-only by the attribution resolver and the payment executor.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        demo_purchase_address: str,
        ad_registry_address: str,
        identity_registry_address: str,
        campaign_registry_address: str,
        read_attempts: int = 3,
        read_backoff_base: float = 0.5,
        read_backoff_max: float = 4.0,
    ):
        """
        Initialize registry client.

        Args:
            w3: Async web3 client
            demo_purchase_address: DemoPurchase contract
            ad_registry_address: AdRegistry contract
            identity_registry_address: IdentityRegistry (ERC-721) contract
            campaign_registry_address: CampaignRegistry contract
            read_attempts: Attempts per read before giving up
            read_backoff_base: Base delay between read attempts (seconds)
            read_backoff_max: Maximum delay between read attempts (seconds)
        """
        self.w3 = w3
        self.demo_purchase = w3.eth.contract(
            address=to_checksum_address(demo_purchase_address), abi=DEMO_PURCHASE_ABI
        )
        self.ad_registry = w3.eth.contract(
            address=to_checksum_address(ad_registry_address), abi=AD_REGISTRY_ABI
        )
        self.identity_registry = w3.eth.contract(
            address=to_checksum_address(identity_registry_address),
            abi=IDENTITY_REGISTRY_ABI,
        )
        self.campaign_registry = w3.eth.contract(
            address=to_checksum_address(campaign_registry_address),
            abi=CAMPAIGN_REGISTRY_ABI,
        )
        self.read_attempts = read_attempts
        self.read_backoff_base = read_backoff_base
        self.read_backoff_max = read_backoff_max

        logger.info("registry_client_initialized")

    @classmethod
    def from_settings(cls, w3: AsyncWeb3, settings: Settings) -> "RegistryClient":
        """Build a client for the contracts named in the settings."""
        return cls(
            w3,
            demo_purchase_address=settings.demo_purchase_address,
            ad_registry_address=settings.ad_registry_address,
            identity_registry_address=settings.identity_registry_address,
            campaign_registry_address=settings.campaign_registry_address,
        )

    async def _call(self, contract: Any, function_name: str, *args: Any) -> Any:
        """
        Call a view function with retry.

        Raises:
            RegistryReadError: If every attempt fails
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RegistryReadError),
            stop=stop_after_attempt(self.read_attempts),
            wait=wait_exponential(
                multiplier=self.read_backoff_base, max=self.read_backoff_max
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    return await contract.get_function_by_name(function_name)(*args).call()
                except Exception as e:
                    logger.warning(
                        "registry_read_failed",
                        function=function_name,
                        attempt=attempt.retry_state.attempt_number,
                        error=str(e),
                    )
                    raise RegistryReadError(
                        f"{function_name}{tuple(args)} failed: {e}", original_error=e
                    ) from e

    async def get_product(self, product_id: int) -> Product:
        """Get product details from the DemoPurchase contract."""
        raw = await self._call(self.demo_purchase, "getProduct", product_id)
        return Product(
            product_id=raw[0],
            advertiser_id=raw[1],
            name=raw[2],
            description=raw[3],
            price_amount=raw[4],
            is_active=raw[5],
        )

    async def get_ads_by_advertiser(self, advertiser_id: int) -> List[int]:
        """Get all ad ids owned by an advertiser, in registry order."""
        ad_ids = await self._call(self.ad_registry, "getAdsByAdvertiser", advertiser_id)
        return list(ad_ids)

    async def get_ad(self, ad_id: int) -> Placement:
        """Get ad details from the AdRegistry."""
        raw = await self._call(self.ad_registry, "getAd", ad_id)
        return Placement(
            ad_id=raw[0],
            campaign_id=raw[1],
            advertiser_id=raw[2],
            publisher_id=raw[3],
            start_time=raw[4],
            metadata=bytes(raw[5]),
        )

    async def get_agent_wallet(self, agent_id: int) -> str:
        """
        Get the wallet address (owner) of an agent identity token.

        The IdentityRegistry is ERC-721 based, so ownerOf returns the wallet.
        """
        owner = await self._call(self.identity_registry, "ownerOf", agent_id)
        return str(owner)

    async def get_campaign(self, campaign_id: int) -> Campaign:
        """Get campaign details from the CampaignRegistry."""
        raw = await self._call(self.campaign_registry, "getCampaign", campaign_id)
        total_budget, cpa_amount, spent = raw[3]
        return Campaign(
            campaign_id=raw[0],
            advertiser_id=raw[1],
            validator_id=raw[2],
            budget=Budget(total_budget=total_budget, cpa_amount=cpa_amount, spent=spent),
            start_time=raw[4],
            end_time=raw[5],
            active=raw[6],
        )

    async def is_action_processed(self, action_hash: bytes) -> bool:
        """Check if an action hash has already been settled on-chain."""
        processed = await self._call(
            self.campaign_registry, "isActionProcessed", action_hash
        )
        return bool(processed)
