"""
Durable progress marker for the event monitor.

A single JSON record holding the highest fully processed block. Read once
at startup, overwritten after every processed event.
"""
import json
import os
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class CheckpointStore:
    """File-backed checkpoint with a single writer."""

    def __init__(self, path: str | Path):
        """
        Initialize checkpoint store.

        Args:
            path: Checkpoint file location
        """
        self.path = Path(path)

    def load(self) -> Optional[int]:
        """
        Load the last processed block.

        Returns:
            Optional[int]: Block number, or None when no usable checkpoint exists
        """
        if not self.path.exists():
            logger.info("checkpoint_not_found", path=str(self.path))
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            block = int(data["lastProcessedBlock"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            # Unreadable checkpoint is treated as a cold start
            logger.error("checkpoint_load_failed", path=str(self.path), error=str(e))
            return None

        if block < 0:
            logger.error("checkpoint_load_failed", path=str(self.path), error="negative block")
            return None

        logger.info("checkpoint_loaded", block=block)
        return block

    def save(self, block: int) -> bool:
        """
        Persist the last processed block.

        Creates the parent directory on first use. Failures are logged and
        reported through the return value; processing continues regardless.

        Returns:
            bool: True if the checkpoint was written
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps({"lastProcessedBlock": str(block)}, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("checkpoint_save_failed", block=block, error=str(e))
            return False

        logger.debug("checkpoint_saved", block=block)
        return True
