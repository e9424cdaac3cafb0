"""Validator settings using Pydantic for environment-based configuration."""
from enum import Enum
from functools import lru_cache
from typing import Optional

from eth_utils import is_address
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettlementMode(str, Enum):
    """How a resolved settlement is paid out on-chain."""

    PROCESS_ACTION = "process_action"  # CampaignRegistry.processAction
    TOKEN_TRANSFER = "token_transfer"  # ERC-20 transfer to the publisher


class Settings(BaseSettings):
    """Validator settings loaded from environment variables."""

    # Network
    rpc_url: str = Field(..., description="HTTP(S) JSON-RPC endpoint")
    chain_id: int = Field(default=8453, description="Chain id used when signing (Base mainnet)")

    # Contracts
    demo_purchase_address: str = Field(..., description="DemoPurchase contract address")
    ad_registry_address: str = Field(..., description="AdRegistry contract address")
    identity_registry_address: str = Field(..., description="IdentityRegistry (ERC-721) address")
    campaign_registry_address: str = Field(..., description="CampaignRegistry contract address")

    # Validator identity
    validator_private_key: str = Field(..., description="Hex private key of the validator wallet")
    validator_id: int = Field(..., ge=0, description="Validator identity token id")

    # Application
    app_name: str = Field(default="apex-validator", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    metrics_port: Optional[int] = Field(
        default=None, description="Expose Prometheus metrics on this port when set"
    )

    # Event monitoring
    start_block: Optional[int] = Field(
        default=None, ge=0, description="Explicit start block, overrides the checkpoint"
    )
    backfill_window_blocks: int = Field(
        default=1000, gt=0, description="Block range requested per backfill window"
    )
    poll_interval_seconds: float = Field(
        default=2.0, gt=0, description="Polling interval of the live subscription"
    )
    checkpoint_path: str = Field(
        default="./data/checkpoint.json", description="Checkpoint file location"
    )

    # Settlement
    settlement_mode: SettlementMode = Field(
        default=SettlementMode.PROCESS_ACTION, description="Settlement call to submit"
    )
    usdc_address: Optional[str] = Field(
        default=None, description="Token contract for token_transfer mode"
    )
    settlement_amount_raw: Optional[int] = Field(
        default=None, gt=0, description="Token amount (raw units) paid per settlement"
    )
    require_active_campaign: bool = Field(
        default=False, description="Skip settlement when the campaign is inactive or out of budget"
    )
    wait_for_receipt: bool = Field(
        default=True, description="Wait for the settlement receipt and treat reverts as failures"
    )
    receipt_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Receipt wait timeout (seconds)"
    )

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1, description="Max settlement attempts")
    retry_base_delay: float = Field(
        default=1.0, ge=0, description="Base delay for retry backoff (seconds)"
    )
    retry_max_delay: float = Field(
        default=10.0, ge=0, description="Ceiling for retry backoff (seconds)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """The service talks JSON-RPC over HTTP(S)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC_URL must be an http(s) URL")
        return v

    @field_validator(
        "demo_purchase_address",
        "ad_registry_address",
        "identity_registry_address",
        "campaign_registry_address",
        "usdc_address",
    )
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        """Validate that contract addresses are hex addresses."""
        if v is not None and not is_address(v):
            raise ValueError(f"Invalid address: {v!r}")
        return v

    @field_validator("validator_private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Validate that the private key is 32 bytes of hex."""
        key = v[2:] if v.startswith("0x") else v
        if len(key) != 64:
            raise ValueError("Invalid private key. Must be 32 bytes of hex")
        try:
            int(key, 16)
        except ValueError:
            raise ValueError("Invalid private key. Must be 32 bytes of hex") from None
        return "0x" + key

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_settlement_mode(self) -> "Settings":
        """Token transfers need a token and an amount."""
        if self.settlement_mode is SettlementMode.TOKEN_TRANSFER:
            if not self.usdc_address or not self.settlement_amount_raw:
                raise ValueError(
                    "token_transfer mode requires USDC_ADDRESS and SETTLEMENT_AMOUNT_RAW"
                )
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
