"""
ProductPurchased event source.

Provides ranged log fetches for backfill and a polling subscription for
live observation. Decoding of raw logs into PurchaseEvent lives here so the
monitor never touches the wire format.
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

import structlog
from eth_abi import decode
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3

from apex_validator.domain.models import PurchaseEvent
from apex_validator.integrations.chain import hex_string

logger = structlog.get_logger(__name__)

PRODUCT_PURCHASED_TOPIC = keccak(
    text="ProductPurchased(uint256,uint256,address,uint256,uint256)"
)

RawLog = Mapping[str, Any]
BatchHandler = Callable[[List[RawLog]], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


def _log_sort_key(log: RawLog) -> tuple:
    return (log["blockNumber"], log.get("logIndex") or 0)


class Subscription:
    """
    Handle for a running live subscription.

    cancel() stops polling once the batch currently being handled returns, so
    an in-flight event handler always runs to completion. How much of that
    batch is still handled is up to the batch handler.
    """

    def __init__(self) -> None:
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def cancel(self) -> None:
        self._stopped.set()

    async def wait(self) -> None:
        """Wait for the polling loop to exit."""
        if self._task is not None:
            await self._task

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early when cancelled."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class PurchaseEventSource:
    """Stream of ProductPurchased logs from the DemoPurchase contract."""

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        poll_interval_seconds: float = 2.0,
    ):
        """
        Initialize event source.

        Args:
            w3: Async web3 client
            contract_address: DemoPurchase contract address
            poll_interval_seconds: Delay between polls of the live subscription
        """
        self.w3 = w3
        self.contract_address = to_checksum_address(contract_address)
        self.poll_interval_seconds = poll_interval_seconds

    async def current_position(self) -> int:
        """Return the current chain tip."""
        return int(await self.w3.eth.block_number)

    async def fetch_events(self, from_block: int, to_block: int) -> List[RawLog]:
        """
        Fetch ProductPurchased logs in an inclusive block range.

        Returns:
            List[RawLog]: Logs ordered by (block, log index)
        """
        logs = await self.w3.eth.get_logs(
            {
                "address": self.contract_address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [PRODUCT_PURCHASED_TOPIC],
            }
        )
        return sorted(logs, key=_log_sort_key)

    def subscribe(
        self,
        on_batch: BatchHandler,
        on_error: ErrorHandler,
        from_block: int,
    ) -> Subscription:
        """
        Start polling for new logs from from_block onwards.

        Each poll fetches [next_block, tip] and hands the non-empty batch to
        on_batch. Errors are reported to on_error and polling continues from
        the same block.

        Returns:
            Subscription: Handle used to stop polling
        """
        subscription = Subscription()
        subscription._task = asyncio.create_task(
            self._poll(subscription, on_batch, on_error, from_block),
            name="purchase-event-subscription",
        )
        logger.info("event_subscription_started", from_block=from_block)
        return subscription

    async def _poll(
        self,
        subscription: Subscription,
        on_batch: BatchHandler,
        on_error: ErrorHandler,
        next_block: int,
    ) -> None:
        while not subscription.cancelled:
            try:
                tip = await self.current_position()
                if tip >= next_block:
                    logs = await self.fetch_events(next_block, tip)
                    if logs:
                        await on_batch(logs)
                    next_block = tip + 1
            except Exception as e:
                on_error(e)
            await subscription.sleep(self.poll_interval_seconds)

        logger.info("event_subscription_stopped", next_block=next_block)

    @staticmethod
    def decode_purchase(log: RawLog) -> Optional[PurchaseEvent]:
        """
        Decode a raw log into a PurchaseEvent.

        Returns:
            Optional[PurchaseEvent]: None if the log is not a ProductPurchased event

        Raises:
            ValueError, KeyError, eth_abi DecodingError: If the log is malformed
        """
        topics: Sequence[Any] = log.get("topics") or []
        if not topics or bytes(topics[0]) != PRODUCT_PURCHASED_TOPIC:
            return None
        if len(topics) != 4:
            raise ValueError(f"ProductPurchased log has {len(topics)} topics, expected 4")

        (purchase_id,) = decode(["uint256"], bytes(topics[1]))
        (product_id,) = decode(["uint256"], bytes(topics[2]))
        (buyer,) = decode(["address"], bytes(topics[3]))
        amount, timestamp = decode(["uint256", "uint256"], bytes(log["data"]))

        block_number = log.get("blockNumber")
        transaction_hash = log.get("transactionHash")
        if block_number is None or transaction_hash is None:
            raise ValueError("ProductPurchased log is pending (no block or transaction)")

        return PurchaseEvent(
            purchase_id=purchase_id,
            product_id=product_id,
            buyer=to_checksum_address(buyer),
            amount=amount,
            timestamp=timestamp,
            block_number=int(block_number),
            transaction_hash=hex_string(transaction_hash),
        )
