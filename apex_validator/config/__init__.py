"""Configuration package for the validator service."""
from .settings import SettlementMode, Settings, get_settings

__all__ = ["Settings", "SettlementMode", "get_settings"]
