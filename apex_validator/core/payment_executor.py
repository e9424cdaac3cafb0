"""
Settlement payment execution with idempotency and bounded retry.

Flow:
1. Compute the action hash of (purchase, ad)
2. Skip if the registry already recorded the action (best effort)
3. Optionally check the campaign can still pay
4. Submit the signed settlement call, retrying with exponential backoff.
   All attempts for one settlement sign with the same nonce, so at most one
   of the broadcast transactions can be mined.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from eth_utils import to_hex
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from apex_validator.config import Settings
from apex_validator.domain.models import PaymentResult, SettlementInfo, compute_action_hash
from apex_validator.integrations.chain import SubmissionError, TransactionRevertedError
from apex_validator.integrations.registry_client import RegistryClient
from apex_validator.integrations.settlement_submitter import (
    SettlementCall,
    SettlementCallFactory,
    SettlementSubmitter,
)
from apex_validator.monitoring import metrics

logger = structlog.get_logger(__name__)

ALREADY_PROCESSED = "already processed"
CAMPAIGN_INACTIVE = "campaign inactive"
CAMPAIGN_BUDGET_EXHAUSTED = "campaign budget exhausted"


@dataclass
class _PendingBroadcast:
    """Nonce and last broadcast transaction of one settlement, kept across attempts."""

    nonce: Optional[int] = None
    transaction_hash: Optional[str] = None


class PaymentExecutor:
    """
    Performs the settlement side effect for resolved purchases.

    The executor cannot tell a lost acknowledgement from a failed call, so
    a retried success is only guarded by the registry's own duplicate
    rejection of the action hash.
    """

    def __init__(
        self,
        registry: RegistryClient,
        submitter: SettlementSubmitter,
        call_factory: SettlementCallFactory,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        require_active_campaign: bool = False,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize payment executor.

        Args:
            registry: Registry reader (duplicate and campaign checks)
            submitter: Signed call submitter
            call_factory: Builds the settlement call
            max_attempts: Max submission attempts per settlement
            base_delay: Backoff base delay (seconds)
            max_delay: Backoff ceiling (seconds)
            require_active_campaign: Refuse settlements for inactive or exhausted campaigns
            sleep: Sleep coroutine used between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.registry = registry
        self.submitter = submitter
        self.call_factory = call_factory
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.require_active_campaign = require_active_campaign
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: RegistryClient,
        submitter: SettlementSubmitter,
    ) -> "PaymentExecutor":
        return cls(
            registry=registry,
            submitter=submitter,
            call_factory=SettlementCallFactory.from_settings(settings),
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            require_active_campaign=settings.require_active_campaign,
        )

    async def _is_duplicate(self, settlement: SettlementInfo, action_hash: bytes) -> bool:
        try:
            return await self.registry.is_action_processed(action_hash)
        except Exception as e:
            # Proceed; the registry rejects duplicate actions on-chain
            logger.warning(
                "duplicate_check_failed",
                purchase_id=settlement.purchase_event.purchase_id,
                action_hash=to_hex(action_hash),
                error=str(e),
            )
            return False

    async def _campaign_rejection(self, settlement: SettlementInfo) -> Optional[str]:
        try:
            campaign = await self.registry.get_campaign(settlement.campaign_id)
        except Exception as e:
            logger.warning(
                "campaign_check_failed",
                campaign_id=settlement.campaign_id,
                error=str(e),
            )
            return None

        if not campaign.active:
            return CAMPAIGN_INACTIVE
        if not campaign.can_pay_action():
            return CAMPAIGN_BUDGET_EXHAUSTED
        return None

    async def _submit_attempt(self, call: SettlementCall, pending: _PendingBroadcast) -> str:
        """
        One submission attempt.

        A transaction broadcast by an earlier attempt is checked first; if it
        was mined in the meantime its hash is the result and nothing new is sent.
        """
        if pending.transaction_hash is not None:
            status = await self.submitter.receipt_status(pending.transaction_hash)
            if status == 1:
                logger.info(
                    "settlement_confirmed_on_retry",
                    transaction_hash=pending.transaction_hash,
                    nonce=pending.nonce,
                )
                return pending.transaction_hash
            if status == 0:
                # Mined and reverted: the nonce is spent
                pending.nonce = None
                pending.transaction_hash = None

        if pending.nonce is None:
            pending.nonce = await self.submitter.pending_nonce()

        try:
            return await self.submitter.submit(call, nonce=pending.nonce)
        except TransactionRevertedError:
            pending.nonce = None
            pending.transaction_hash = None
            raise
        except SubmissionError as e:
            if e.transaction_hash is not None:
                pending.transaction_hash = e.transaction_hash
            raise

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.debug(
            "settlement_retry_scheduled",
            next_attempt=retry_state.attempt_number + 1,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def execute(self, settlement: SettlementInfo) -> PaymentResult:
        """
        Execute the settlement for a resolved purchase.

        Args:
            settlement: Resolved settlement target

        Returns:
            PaymentResult: Outcome; never raises for call failures
        """
        event = settlement.purchase_event
        action_hash = compute_action_hash(event.purchase_id, settlement.ad_id)
        action_hash_hex = to_hex(action_hash)
        log = logger.bind(
            purchase_id=event.purchase_id,
            ad_id=settlement.ad_id,
            publisher_id=settlement.publisher_id,
            publisher_wallet=settlement.publisher_wallet,
            action_hash=action_hash_hex,
        )

        if await self._is_duplicate(settlement, action_hash):
            log.warning("settlement_already_processed")
            metrics.settlements_total.labels(status="duplicate").inc()
            metrics.settlement_attempts.observe(0)
            return PaymentResult(
                success=False,
                action_hash=action_hash_hex,
                error=ALREADY_PROCESSED,
                attempts=0,
            )

        if self.require_active_campaign:
            rejection = await self._campaign_rejection(settlement)
            if rejection:
                log.warning(
                    "settlement_rejected",
                    reason=rejection,
                    campaign_id=settlement.campaign_id,
                )
                metrics.settlements_total.labels(status="rejected").inc()
                metrics.settlement_attempts.observe(0)
                return PaymentResult(
                    success=False,
                    action_hash=action_hash_hex,
                    error=rejection,
                    attempts=0,
                )

        call = self.call_factory.build(settlement, action_hash)
        log.info("settlement_started", call=call.describe(), max_attempts=self.max_attempts)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        pending = _PendingBroadcast()
        attempts = 0
        last_error: Optional[str] = None
        with metrics.settlement_duration_seconds.time():
            try:
                async for attempt in retrying:
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        try:
                            tx_hash = await self._submit_attempt(call, pending)
                        except Exception as e:
                            last_error = str(e)
                            log.error(
                                "settlement_attempt_failed",
                                attempt=attempts,
                                max_attempts=self.max_attempts,
                                error=last_error,
                            )
                            raise
            except Exception:
                log.error(
                    "settlement_failed_after_retries",
                    attempts=self.max_attempts,
                    last_error=last_error,
                    unconfirmed_transaction=pending.transaction_hash,
                )
                metrics.settlements_total.labels(status="failed").inc()
                metrics.settlement_attempts.observe(self.max_attempts)
                return PaymentResult(
                    success=False,
                    transaction_hash=pending.transaction_hash,
                    action_hash=action_hash_hex,
                    error=last_error,
                    attempts=self.max_attempts,
                )

        log.info("settlement_succeeded", transaction_hash=tx_hash, attempts=attempts)
        metrics.settlements_total.labels(status="success").inc()
        metrics.settlement_attempts.observe(attempts)
        return PaymentResult(
            success=True,
            transaction_hash=tx_hash,
            action_hash=action_hash_hex,
            attempts=attempts,
        )
