"""
Purchase attribution.

Maps a purchase to the ad placement that was shown to the buyer, then to
the wallet of the publisher who served it.

Attribution logic:
1. Get the product's advertiser id
2. Get all ads from that advertiser
3. Take the first ad (registry order) whose metadata names the buyer's wallet
4. Resolve the ad's publisher identity to its owner wallet
"""
import json
from typing import Optional

import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from pydantic import ValidationError

from apex_validator.domain.models import (
    ZERO_ADDRESS,
    AdMetadata,
    Placement,
    PurchaseEvent,
    SettlementInfo,
)
from apex_validator.integrations.registry_client import RegistryClient

logger = structlog.get_logger(__name__)


class AttributionError(Exception):
    """Raised when a purchase cannot be attributed to a payable publisher."""

    reason = "attribution failed"

    def __init__(self, message: Optional[str] = None, **context: object):
        super().__init__(message or self.reason)
        self.context = context


class NoPlacementsError(AttributionError):
    reason = "no placements for advertiser"


class NoMatchingPlacementError(AttributionError):
    reason = "no matching placement"


class PublisherWalletMissingError(AttributionError):
    reason = "publisher has no wallet"


def parse_ad_metadata(metadata: bytes) -> Optional[AdMetadata]:
    """
    Parse an ad's metadata blob.

    The blob is an ABI-encoded string holding a JSON object. Absence or any
    parse failure yields None; it is never an error.
    """
    if not metadata:
        return None

    try:
        (decoded,) = decode(["string"], metadata)
        record = json.loads(decoded)
        if not isinstance(record, dict):
            return None
        return AdMetadata.model_validate(record)
    except (DecodingError, ValueError, TypeError, ValidationError) as e:
        logger.debug("ad_metadata_parse_failed", error=str(e), metadata=metadata.hex())
        return None


class AttributionResolver:
    """
    Resolves purchases to settlement targets.

    Read-only: three fixed reads plus one read per candidate placement.
    """

    def __init__(self, registry: RegistryClient):
        """
        Initialize resolver.

        Args:
            registry: Registry reader
        """
        self.registry = registry

    async def find_matching_ad(self, event: PurchaseEvent) -> Placement:
        """
        Find the ad that served a purchase.

        Returns:
            Placement: First ad in registry order whose metadata wallet matches the buyer

        Raises:
            NoPlacementsError: If the advertiser has no ads
            NoMatchingPlacementError: If no ad names the buyer's wallet
            RegistryReadError: If a registry read fails
        """
        product = await self.registry.get_product(event.product_id)
        advertiser_id = product.advertiser_id

        logger.debug(
            "product_advertiser_found",
            product_id=event.product_id,
            advertiser_id=advertiser_id,
        )

        ad_ids = await self.registry.get_ads_by_advertiser(advertiser_id)
        if not ad_ids:
            raise NoPlacementsError(advertiser_id=advertiser_id)

        buyer = event.buyer.lower()
        for ad_id in ad_ids:
            ad = await self.registry.get_ad(ad_id)
            metadata = parse_ad_metadata(ad.metadata)
            user_wallet = metadata.user_wallet if metadata else None

            logger.debug(
                "ad_metadata_checked",
                ad_id=ad_id,
                has_user_wallet=bool(user_wallet),
            )

            if user_wallet and user_wallet.lower() == buyer:
                logger.info(
                    "matching_ad_found",
                    ad_id=ad.ad_id,
                    publisher_id=ad.publisher_id,
                    buyer=event.buyer,
                )
                return ad

        raise NoMatchingPlacementError(
            advertiser_id=advertiser_id,
            buyer=event.buyer,
            ads_checked=len(ad_ids),
        )

    async def resolve(self, event: PurchaseEvent) -> SettlementInfo:
        """
        Resolve the settlement target of a purchase.

        Returns:
            SettlementInfo: Publisher wallet and ids for the matched ad

        Raises:
            AttributionError: If no payable publisher can be determined
            RegistryReadError: If a registry read fails
        """
        ad = await self.find_matching_ad(event)

        publisher_wallet = await self.registry.get_agent_wallet(ad.publisher_id)
        if not publisher_wallet or publisher_wallet.lower() == ZERO_ADDRESS:
            raise PublisherWalletMissingError(publisher_id=ad.publisher_id)

        logger.info(
            "publisher_wallet_resolved",
            publisher_id=ad.publisher_id,
            publisher_wallet=publisher_wallet,
            ad_id=ad.ad_id,
        )

        return SettlementInfo(
            publisher_wallet=publisher_wallet,
            publisher_id=ad.publisher_id,
            ad_id=ad.ad_id,
            campaign_id=ad.campaign_id,
            purchase_event=event,
        )
