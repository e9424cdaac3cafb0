"""
Unit tests for the payment executor.
"""
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
from eth_abi.packed import encode_packed
from eth_utils import keccak, to_hex

from apex_validator.config import SettlementMode
from apex_validator.core.payment_executor import (
    ALREADY_PROCESSED,
    CAMPAIGN_BUDGET_EXHAUSTED,
    CAMPAIGN_INACTIVE,
    PaymentExecutor,
)
from apex_validator.domain.models import Budget, Campaign, SettlementInfo, compute_action_hash
from apex_validator.integrations.chain import (
    RegistryReadError,
    SubmissionError,
    TransactionRevertedError,
)
from apex_validator.integrations.registry_client import RegistryClient
from apex_validator.integrations.settlement_submitter import (
    SettlementCall,
    SettlementCallFactory,
    SettlementSubmitter,
)
from tests.factories import CAMPAIGN_REGISTRY, PUBLISHER_WALLET, USDC, VALIDATOR_ID

TX_HASH = "0x" + "cd" * 32


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_campaign(active: bool = True, total: int = 10_000, cpa: int = 1_000, spent: int = 0):
    return Campaign(
        campaign_id=5,
        advertiser_id=1,
        validator_id=VALIDATOR_ID,
        budget=Budget(total_budget=total, cpa_amount=cpa, spent=spent),
        start_time=0,
        end_time=2_000_000_000,
        active=active,
    )


@pytest.fixture
def registry() -> AsyncMock:
    registry = AsyncMock(spec=RegistryClient)
    registry.is_action_processed.return_value = False
    registry.get_campaign.return_value = make_campaign()
    return registry


@pytest.fixture
def submitter() -> AsyncMock:
    submitter = AsyncMock(spec=SettlementSubmitter)
    submitter.submit.return_value = TX_HASH
    submitter.pending_nonce.return_value = 10
    submitter.receipt_status.return_value = None
    return submitter


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


def make_executor(registry, submitter, call_factory, sleep, **kwargs) -> PaymentExecutor:
    return PaymentExecutor(
        registry=registry,
        submitter=submitter,
        call_factory=call_factory,
        sleep=sleep,
        **kwargs,
    )


class TestActionHash:
    """Test suite for the settlement idempotency key."""

    @pytest.mark.unit
    def test_matches_packed_keccak(self) -> None:
        expected = keccak(encode_packed(["uint256", "uint256"], [7, 21]))

        assert compute_action_hash(7, 21) == expected
        assert len(compute_action_hash(7, 21)) == 32

    @pytest.mark.unit
    def test_deterministic_and_order_sensitive(self) -> None:
        assert compute_action_hash(7, 21) == compute_action_hash(7, 21)
        assert compute_action_hash(7, 21) != compute_action_hash(21, 7)
        assert compute_action_hash(7, 21) != compute_action_hash(7, 22)


class TestPaymentExecutor:
    """Test suite for PaymentExecutor."""

    @pytest.mark.unit
    def test_rejects_zero_attempts(self, registry, submitter, call_factory) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            PaymentExecutor(registry, submitter, call_factory, max_attempts=0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_execute_success_first_attempt(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a clean settlement submits once without waiting."""
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        action_hash = compute_action_hash(settlement.purchase_event.purchase_id, settlement.ad_id)
        assert result.success is True
        assert result.transaction_hash == TX_HASH
        assert result.action_hash == to_hex(action_hash)
        assert result.attempts == 1
        assert result.error is None
        assert sleep.delays == []
        registry.is_action_processed.assert_awaited_once_with(action_hash)

        call: SettlementCall = submitter.submit.await_args.args[0]
        assert call.function == "processAction"
        assert call.target == CAMPAIGN_REGISTRY
        assert call.args == (5, 11, VALIDATOR_ID, action_hash)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_execute_already_processed(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a recorded action is never resubmitted."""
        registry.is_action_processed.return_value = True
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        assert result.success is False
        assert result.error == ALREADY_PROCESSED
        assert result.attempts == 0
        assert result.transaction_hash is None
        submitter.submit.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_check_failure_proceeds(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test an unavailable duplicate check does not block settlement."""
        registry.is_action_processed.side_effect = RegistryReadError("rpc down")
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        assert result.success is True
        assert result.attempts == 1
        submitter.submit.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_execute_retry_then_success(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test two failures then a success, with doubling backoff."""
        submitter.submit.side_effect = [
            SubmissionError("nonce too low"),
            SubmissionError("timeout"),
            TX_HASH,
        ]
        executor = make_executor(
            registry, submitter, call_factory, sleep, max_attempts=3, base_delay=1.0
        )

        result = await executor.execute(settlement)

        assert result.success is True
        assert result.attempts == 3
        assert result.transaction_hash == TX_HASH
        assert sleep.delays == [1.0, 2.0]
        assert submitter.submit.await_count == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_execute_exhausts_retries(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test backoff is capped and the last error is reported."""
        submitter.submit.side_effect = [SubmissionError(f"failure {i}") for i in range(1, 6)]
        executor = make_executor(
            registry,
            submitter,
            call_factory,
            sleep,
            max_attempts=5,
            base_delay=1.0,
            max_delay=3.0,
        )

        result = await executor.execute(settlement)

        assert result.success is False
        assert result.attempts == 5
        assert result.error == "failure 5"
        assert sleep.delays == [1.0, 2.0, 3.0, 3.0]
        assert submitter.submit.await_count == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        submitter.submit.side_effect = SubmissionError("execution reverted")
        executor = make_executor(registry, submitter, call_factory, sleep, max_attempts=1)

        result = await executor.execute(settlement)

        assert result.success is False
        assert result.attempts == 1
        assert result.error == "execution reverted"
        assert sleep.delays == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_settlement_twice_submits_once(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a replayed purchase is caught by the recorded action hash."""
        recorded = set()

        async def is_action_processed(action_hash: bytes) -> bool:
            return action_hash in recorded

        async def submit(call: SettlementCall, nonce: Optional[int] = None) -> str:
            recorded.add(call.args[3])
            return TX_HASH

        registry.is_action_processed.side_effect = is_action_processed
        submitter.submit.side_effect = submit
        executor = make_executor(registry, submitter, call_factory, sleep)

        first = await executor.execute(settlement)
        second = await executor.execute(settlement)

        assert first.success is True
        assert second.success is False
        assert second.error == ALREADY_PROCESSED
        assert second.action_hash == first.action_hash
        assert submitter.submit.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_campaign_guard_disabled_by_default(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        registry.get_campaign.return_value = make_campaign(active=False)
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        assert result.success is True
        registry.get_campaign.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "campaign, expected_error",
        [
            (make_campaign(active=False), CAMPAIGN_INACTIVE),
            (make_campaign(total=10_000, cpa=1_000, spent=9_500), CAMPAIGN_BUDGET_EXHAUSTED),
        ],
    )
    async def test_campaign_guard_rejects(
        self,
        registry,
        submitter,
        call_factory,
        sleep,
        settlement: SettlementInfo,
        campaign: Campaign,
        expected_error: str,
    ) -> None:
        registry.get_campaign.return_value = campaign
        executor = make_executor(
            registry, submitter, call_factory, sleep, require_active_campaign=True
        )

        result = await executor.execute(settlement)

        assert result.success is False
        assert result.error == expected_error
        assert result.attempts == 0
        registry.get_campaign.assert_awaited_once_with(settlement.campaign_id)
        submitter.submit.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_campaign_guard_read_failure_proceeds(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        registry.get_campaign.side_effect = RegistryReadError("getCampaign failed")
        executor = make_executor(
            registry, submitter, call_factory, sleep, require_active_campaign=True
        )

        result = await executor.execute(settlement)

        assert result.success is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_transfer_mode(
        self, registry, submitter, sleep, settlement: SettlementInfo
    ) -> None:
        """Test token settlements pay the publisher wallet directly."""
        factory = SettlementCallFactory(
            mode=SettlementMode.TOKEN_TRANSFER,
            validator_id=VALIDATOR_ID,
            campaign_registry_address=CAMPAIGN_REGISTRY,
            token_address=USDC,
            amount_raw=1_000,
        )
        executor = make_executor(registry, submitter, factory, sleep)

        result = await executor.execute(settlement)

        assert result.success is True
        call: SettlementCall = submitter.submit.await_args.args[0]
        assert call.function == "transfer"
        assert call.target == USDC
        assert call.args == (PUBLISHER_WALLET, 1_000)


class TestSettlementBroadcast:
    """Test suite for nonce handling across settlement attempts."""

    @pytest.fixture
    def token_factory(self) -> SettlementCallFactory:
        return SettlementCallFactory(
            mode=SettlementMode.TOKEN_TRANSFER,
            validator_id=VALIDATOR_ID,
            campaign_registry_address=CAMPAIGN_REGISTRY,
            token_address=USDC,
            amount_raw=1_000,
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_receipt_timeouts_reuse_one_nonce(
        self, registry, submitter, token_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a transfer whose receipt never arrives is rebroadcast with the same nonce."""
        submitter.submit.side_effect = [
            SubmissionError(f"no receipt for {TX_HASH}", transaction_hash=TX_HASH)
            for _ in range(3)
        ]
        executor = make_executor(registry, submitter, token_factory, sleep, max_attempts=3)

        result = await executor.execute(settlement)

        nonces = [call.kwargs["nonce"] for call in submitter.submit.await_args_list]
        assert nonces == [10, 10, 10]
        submitter.pending_nonce.assert_awaited_once()
        assert result.success is False
        assert result.attempts == 3
        assert result.transaction_hash == TX_HASH

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_late_confirmation_is_not_resent(
        self, registry, submitter, token_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a transaction mined after its receipt wait timed out counts as the success."""
        submitter.submit.side_effect = SubmissionError(
            f"no receipt for {TX_HASH}", transaction_hash=TX_HASH
        )
        submitter.receipt_status.return_value = 1
        executor = make_executor(registry, submitter, token_factory, sleep)

        result = await executor.execute(settlement)

        assert result.success is True
        assert result.transaction_hash == TX_HASH
        assert result.attempts == 2
        assert submitter.submit.await_count == 1
        submitter.receipt_status.assert_awaited_once_with(TX_HASH)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_revert_takes_a_fresh_nonce(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        """Test a mined revert spends its nonce and the next attempt signs with a new one."""
        submitter.pending_nonce.side_effect = [10, 11]
        submitter.submit.side_effect = [
            TransactionRevertedError(f"transaction {TX_HASH} reverted", transaction_hash=TX_HASH),
            TX_HASH,
        ]
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        nonces = [call.kwargs["nonce"] for call in submitter.submit.await_args_list]
        assert nonces == [10, 11]
        assert result.success is True
        submitter.receipt_status.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_failure_keeps_nonce(
        self, registry, submitter, call_factory, sleep, settlement: SettlementInfo
    ) -> None:
        submitter.submit.side_effect = [SubmissionError("connection reset"), TX_HASH]
        executor = make_executor(registry, submitter, call_factory, sleep)

        result = await executor.execute(settlement)

        nonces = [call.kwargs["nonce"] for call in submitter.submit.await_args_list]
        assert nonces == [10, 10]
        assert result.success is True
        assert result.attempts == 2
