"""Long-running worker processes."""
from .validator_worker import build_monitor, start_validator_worker

__all__ = ["build_monitor", "start_validator_worker"]
