"""Shared JSON-RPC client construction and error types for chain access."""
from typing import Optional

import structlog
from eth_utils import to_hex
from web3 import AsyncHTTPProvider, AsyncWeb3

logger = structlog.get_logger(__name__)


class ChainError(Exception):
    """Base exception for chain access errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        """
        Initialize chain error.

        Args:
            message: Error message
            original_error: Underlying transport or contract exception
        """
        super().__init__(message)
        self.original_error = original_error


class RegistryReadError(ChainError):
    """Raised when a read against a registry contract fails."""

    pass


class SubmissionError(ChainError):
    """Raised when a signed settlement call is not accepted."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        transaction_hash: Optional[str] = None,
    ):
        """
        Initialize submission error.

        Args:
            message: Error message
            original_error: Underlying transport or contract exception
            transaction_hash: Hash of the transaction if it was broadcast before failing
        """
        super().__init__(message, original_error)
        self.transaction_hash = transaction_hash


class TransactionRevertedError(SubmissionError):
    """Raised when a settlement transaction was mined but reverted. Its nonce is spent."""

    pass


def create_web3(rpc_url: str, request_timeout: float = 30.0) -> AsyncWeb3:
    """
    Create an async web3 client over HTTP.

    Args:
        rpc_url: JSON-RPC endpoint
        request_timeout: Per-request timeout (seconds)

    Returns:
        AsyncWeb3: Client shared by the registry reader, event source and submitter
    """
    w3 = AsyncWeb3(
        AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
    )
    logger.info("web3_client_initialized", transport="http")
    return w3


def hex_string(value: object) -> str:
    """Normalize HexBytes/bytes/str values to a 0x-prefixed hex string."""
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return to_hex(bytes(value))  # type: ignore[arg-type]
