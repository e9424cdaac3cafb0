"""APEX validator: settles publisher payouts for attributed on-chain purchases."""

__version__ = "0.2.0"
