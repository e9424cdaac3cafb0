"""
Signed settlement calls.

Builds the outbound call for a resolved settlement and submits it as a
transaction signed by the validator wallet.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from apex_validator.config import Settings, SettlementMode
from apex_validator.domain.models import SettlementInfo
from apex_validator.integrations.abis import CAMPAIGN_REGISTRY_ABI, ERC20_ABI
from apex_validator.integrations.chain import (
    SubmissionError,
    TransactionRevertedError,
    hex_string,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SettlementCall:
    """A state-mutating contract call to be signed and submitted."""

    target: str
    abi: Sequence[dict]
    function: str
    args: Tuple[Any, ...]

    def describe(self) -> str:
        return f"{self.function}@{self.target}"


class SettlementCallFactory:
    """Builds the settlement call for the configured settlement mode."""

    def __init__(
        self,
        mode: SettlementMode,
        validator_id: int,
        campaign_registry_address: str,
        token_address: Optional[str] = None,
        amount_raw: Optional[int] = None,
    ):
        """
        Initialize call factory.

        Args:
            mode: Settlement mode
            validator_id: Validator identity token id (process_action)
            campaign_registry_address: CampaignRegistry contract (process_action)
            token_address: ERC-20 token contract (token_transfer)
            amount_raw: Token amount per settlement in raw units (token_transfer)
        """
        if mode is SettlementMode.TOKEN_TRANSFER and (not token_address or not amount_raw):
            raise ValueError("token_transfer settlements need a token address and amount")
        self.mode = mode
        self.validator_id = validator_id
        self.campaign_registry_address = to_checksum_address(campaign_registry_address)
        self.token_address = to_checksum_address(token_address) if token_address else None
        self.amount_raw = amount_raw

    @classmethod
    def from_settings(cls, settings: Settings) -> "SettlementCallFactory":
        return cls(
            mode=settings.settlement_mode,
            validator_id=settings.validator_id,
            campaign_registry_address=settings.campaign_registry_address,
            token_address=settings.usdc_address,
            amount_raw=settings.settlement_amount_raw,
        )

    def build(self, settlement: SettlementInfo, action_hash: bytes) -> SettlementCall:
        """Build the call that pays the publisher for this settlement."""
        if self.mode is SettlementMode.TOKEN_TRANSFER:
            return SettlementCall(
                target=self.token_address,  # type: ignore[arg-type]
                abi=ERC20_ABI,
                function="transfer",
                args=(to_checksum_address(settlement.publisher_wallet), self.amount_raw),
            )
        return SettlementCall(
            target=self.campaign_registry_address,
            abi=CAMPAIGN_REGISTRY_ABI,
            function="processAction",
            args=(
                settlement.campaign_id,
                settlement.publisher_id,
                self.validator_id,
                action_hash,
            ),
        )


class SettlementSubmitter:
    """
    Submits settlement calls signed by the validator wallet.

    Used exclusively by the payment executor.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        private_key: str,
        chain_id: int,
        wait_for_receipt: bool = True,
        receipt_timeout_seconds: float = 120.0,
    ):
        """
        Initialize submitter.

        Args:
            w3: Async web3 client
            private_key: Validator private key (hex)
            chain_id: Chain id used for signing
            wait_for_receipt: Wait for inclusion and fail on revert
            receipt_timeout_seconds: Receipt wait timeout
        """
        self.w3 = w3
        self.account: LocalAccount = Account.from_key(private_key)
        self.chain_id = chain_id
        self.wait_for_receipt = wait_for_receipt
        self.receipt_timeout_seconds = receipt_timeout_seconds

        logger.info("settlement_submitter_initialized", validator_address=self.address)

    @classmethod
    def from_settings(cls, w3: AsyncWeb3, settings: Settings) -> "SettlementSubmitter":
        return cls(
            w3,
            private_key=settings.validator_private_key,
            chain_id=settings.chain_id,
            wait_for_receipt=settings.wait_for_receipt,
            receipt_timeout_seconds=settings.receipt_timeout_seconds,
        )

    @property
    def address(self) -> str:
        """Validator wallet address."""
        return self.account.address

    async def get_native_balance(self) -> int:
        """Validator balance in wei, used to pay gas."""
        return int(await self.w3.eth.get_balance(self.account.address))

    async def pending_nonce(self) -> int:
        """Next nonce of the validator wallet, counting pending transactions."""
        return int(await self.w3.eth.get_transaction_count(self.account.address, "pending"))

    async def receipt_status(self, tx_hash: str) -> Optional[int]:
        """
        Status of a broadcast transaction.

        Returns:
            Optional[int]: 1 if mined successfully, 0 if reverted, None if not mined yet
        """
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return int(receipt["status"])

    async def submit(self, call: SettlementCall, nonce: Optional[int] = None) -> str:
        """
        Sign and send a settlement call.

        Passing the same nonce on every attempt for one settlement makes a
        rebroadcast replace the earlier transaction instead of adding a second one.

        Args:
            call: Call to submit
            nonce: Nonce to sign with; the pending nonce is used when omitted

        Returns:
            str: Transaction hash (0x-prefixed hex)

        Raises:
            TransactionRevertedError: If the transaction was mined but reverted
            SubmissionError: If building, sending or waiting for the receipt fails
        """
        try:
            contract = self.w3.eth.contract(address=call.target, abi=list(call.abi))
            function = contract.get_function_by_name(call.function)(*call.args)
            if nonce is None:
                nonce = await self.pending_nonce()
            tx = await function.build_transaction(
                {
                    "from": self.account.address,
                    "nonce": nonce,
                    "chainId": self.chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionError(
                f"{call.describe()} submission failed: {e}", original_error=e
            ) from e

        tx_hash_hex = hex_string(tx_hash)
        logger.info(
            "settlement_transaction_sent",
            call=call.describe(),
            transaction_hash=tx_hash_hex,
            nonce=nonce,
        )

        if self.wait_for_receipt:
            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout_seconds
                )
            except Exception as e:
                raise SubmissionError(
                    f"no receipt for {tx_hash_hex}: {e}",
                    original_error=e,
                    transaction_hash=tx_hash_hex,
                ) from e
            if receipt["status"] != 1:
                raise TransactionRevertedError(
                    f"transaction {tx_hash_hex} reverted", transaction_hash=tx_hash_hex
                )

        return tx_hash_hex

