"""
ProductPurchased event monitor.

Guarantees gapless, restart-safe coverage of the purchase stream:

    IDLE -> BACKFILLING -> STREAMING -> STOPPED

On start the resume block is resolved (explicit start block, else
checkpoint + 1, else the chain tip), the gap up to the tip captured at start
is backfilled in fixed-size windows, and live observation takes over from
the block after that tip. Every event is resolved, settled and checkpointed
before the next one is touched.
"""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import List, Optional

import structlog

from apex_validator.config import Settings
from apex_validator.core.attribution import AttributionError, AttributionResolver
from apex_validator.core.checkpoint import CheckpointStore
from apex_validator.core.payment_executor import PaymentExecutor
from apex_validator.domain.models import PurchaseEvent
from apex_validator.integrations.event_source import (
    PurchaseEventSource,
    RawLog,
    Subscription,
)
from apex_validator.monitoring import metrics

logger = structlog.get_logger(__name__)


class MonitorState(str, Enum):
    """Monitor lifecycle states."""

    IDLE = "idle"
    BACKFILLING = "backfilling"
    STREAMING = "streaming"
    STOPPED = "stopped"


@dataclass
class MonitorStats:
    """Per-run counters, logged when the monitor stops."""

    events_handled: int = 0
    settled: int = 0
    settlement_failed: int = 0
    unattributed: int = 0
    errors: int = 0
    ignored: int = 0
    windows_fetched: int = 0
    windows_failed: int = 0


class EventMonitor:
    """Drives purchases from the event stream through attribution and settlement."""

    def __init__(
        self,
        source: PurchaseEventSource,
        resolver: AttributionResolver,
        executor: PaymentExecutor,
        checkpoint_store: CheckpointStore,
        start_block: Optional[int] = None,
        backfill_window_blocks: int = 1000,
    ):
        """
        Initialize event monitor.

        Args:
            source: Purchase event source
            resolver: Attribution resolver
            executor: Payment executor
            checkpoint_store: Progress persistence
            start_block: Explicit start block, overrides the checkpoint
            backfill_window_blocks: Blocks requested per backfill window
        """
        if backfill_window_blocks < 1:
            raise ValueError("backfill_window_blocks must be positive")
        self.source = source
        self.resolver = resolver
        self.executor = executor
        self.checkpoint_store = checkpoint_store
        self.start_block = start_block
        self.backfill_window_blocks = backfill_window_blocks

        self.stats = MonitorStats()
        self._state = MonitorState.IDLE
        self._subscription: Optional[Subscription] = None
        self._stop_requested = False
        self._last_processed_block: Optional[int] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: PurchaseEventSource,
        resolver: AttributionResolver,
        executor: PaymentExecutor,
    ) -> "EventMonitor":
        return cls(
            source=source,
            resolver=resolver,
            executor=executor,
            checkpoint_store=CheckpointStore(settings.checkpoint_path),
            start_block=settings.start_block,
            backfill_window_blocks=settings.backfill_window_blocks,
        )

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (MonitorState.BACKFILLING, MonitorState.STREAMING)

    @property
    def last_processed_block(self) -> Optional[int]:
        return self._last_processed_block

    def _resolve_resume_block(self) -> Optional[int]:
        """First block to process, or None for a cold start."""
        if self.start_block is not None:
            logger.info("resume_from_configured_start_block", start_block=self.start_block)
            return self.start_block

        checkpoint = self.checkpoint_store.load()
        if checkpoint is not None:
            logger.info(
                "resume_from_checkpoint", checkpoint=checkpoint, from_block=checkpoint + 1
            )
            return checkpoint + 1

        return None

    async def start(self) -> None:
        """
        Start monitoring.

        Backfills any gap since the resume block, then subscribes to live
        events. Calling start() while already running only logs a warning.
        """
        if self.is_running:
            logger.warning("monitor_already_running", state=self._state.value)
            return

        self._stop_requested = False
        self.stats = MonitorStats()

        resume_block = self._resolve_resume_block()
        tip = await self.source.current_position()

        if resume_block is None:
            logger.info("cold_start_from_latest_block", tip=tip)
            self._last_processed_block = None
            stream_from = tip + 1
        else:
            self._last_processed_block = resume_block - 1
            stream_from = max(resume_block, tip + 1)
            if resume_block <= tip:
                self._state = MonitorState.BACKFILLING
                await self.backfill(resume_block, tip)

        if self._stop_requested:
            self._state = MonitorState.STOPPED
            logger.info("monitor_stopped_before_streaming", stats=asdict(self.stats))
            return

        self._state = MonitorState.STREAMING
        self._subscription = self.source.subscribe(
            on_batch=self.handle_batch,
            on_error=self._on_watch_error,
            from_block=stream_from,
        )
        logger.info("monitor_started", streaming_from=stream_from)

    def stop(self) -> None:
        """
        Stop monitoring.

        Detaches the live subscription. The event being handled finishes and
        the current batch or backfill window ends at the next block boundary.
        """
        self._stop_requested = True
        if self._state is MonitorState.BACKFILLING:
            logger.info("monitor_stop_requested_during_backfill")
            return

        if self._subscription is not None:
            self._subscription.cancel()
        self._state = MonitorState.STOPPED
        logger.info("monitor_stopped", stats=asdict(self.stats))

    async def join(self) -> None:
        """Wait until the live subscription has fully exited."""
        if self._subscription is not None:
            await self._subscription.wait()
            self._subscription = None

    async def backfill(self, from_block: int, to_block: int) -> None:
        """
        Process every event in [from_block, to_block] in fixed-size windows.

        A window whose fetch fails is logged and skipped, never retried;
        the next window starts right after it.
        """
        logger.info(
            "backfill_started",
            from_block=from_block,
            to_block=to_block,
            window=self.backfill_window_blocks,
        )

        lo = from_block
        while lo <= to_block and not self._stop_requested:
            hi = min(lo + self.backfill_window_blocks - 1, to_block)
            try:
                logs = await self.source.fetch_events(lo, hi)
            except Exception as e:
                self.stats.windows_failed += 1
                metrics.backfill_windows_total.labels(status="failed").inc()
                logger.error(
                    "backfill_window_failed",
                    from_block=lo,
                    to_block=hi,
                    error=str(e),
                )
                lo = hi + 1
                continue

            self.stats.windows_fetched += 1
            metrics.backfill_windows_total.labels(status="fetched").inc()
            if logs:
                logger.info(
                    "backfill_window_fetched", from_block=lo, to_block=hi, events=len(logs)
                )
                await self.handle_batch(logs)
            lo = hi + 1

        logger.info("backfill_completed", to_block=to_block, stats=asdict(self.stats))

    async def handle_batch(self, logs: List[RawLog]) -> None:
        """
        Handle logs in order.

        The checkpoint for a block is written once the batch's last log in that
        block is done, so a restart never skips a sibling event. A stop takes
        effect at the next block boundary; the rest of the batch is left for
        the next run to pick up from the checkpoint.
        """
        for index, log in enumerate(logs):
            next_log = logs[index + 1] if index + 1 < len(logs) else None
            block_done = next_log is None or next_log.get("blockNumber") != log.get("blockNumber")
            await self.handle_log(log, advance_checkpoint=block_done)
            if block_done and next_log is not None and self._stop_requested:
                logger.info(
                    "batch_interrupted_by_stop",
                    next_block=next_log.get("blockNumber"),
                    remaining=len(logs) - index - 1,
                )
                return

    async def handle_log(self, log: RawLog, advance_checkpoint: bool = True) -> None:
        """
        Per-event handler shared by backfill and streaming.

        Never raises: decode and resolution errors are logged and the event
        still counts as processed.
        """
        try:
            event = self.source.decode_purchase(log)
        except Exception as e:
            self.stats.errors += 1
            metrics.purchase_events_total.labels(outcome="error").inc()
            logger.error(
                "purchase_event_decode_failed",
                block_number=log.get("blockNumber"),
                transaction_hash=str(log.get("transactionHash")),
                error=str(e),
            )
            if advance_checkpoint:
                self._advance_checkpoint_for_log(log)
            return

        if event is None:
            # Other event kinds still close out their block
            self.stats.ignored += 1
            metrics.purchase_events_total.labels(outcome="ignored").inc()
            if advance_checkpoint:
                self._advance_checkpoint_for_log(log)
            return

        self.stats.events_handled += 1
        await self._process_purchase(event)

        if advance_checkpoint:
            self._advance_checkpoint(event.block_number)

    async def _process_purchase(self, event: PurchaseEvent) -> None:
        log = logger.bind(purchase_id=event.purchase_id, block_number=event.block_number)
        log.info(
            "purchase_event_processing",
            product_id=event.product_id,
            buyer=event.buyer,
            amount=event.amount,
            transaction_hash=event.transaction_hash,
        )

        try:
            settlement = await self.resolver.resolve(event)
        except AttributionError as e:
            self.stats.unattributed += 1
            metrics.purchase_events_total.labels(outcome="unattributed").inc()
            log.warning("settlement_skipped", reason=str(e), **e.context)
            return
        except Exception as e:
            self.stats.errors += 1
            metrics.purchase_events_total.labels(outcome="error").inc()
            log.error("attribution_failed", error=str(e))
            return

        try:
            result = await self.executor.execute(settlement)
        except Exception as e:
            self.stats.settlement_failed += 1
            metrics.purchase_events_total.labels(outcome="settlement_failed").inc()
            log.error("settlement_error", error=str(e))
            return

        if result.success:
            self.stats.settled += 1
            metrics.purchase_events_total.labels(outcome="settled").inc()
            log.info(
                "settlement_completed",
                settlement_tx=result.transaction_hash,
                publisher_wallet=settlement.publisher_wallet,
                attempts=result.attempts,
            )
        else:
            self.stats.settlement_failed += 1
            metrics.purchase_events_total.labels(outcome="settlement_failed").inc()
            log.error("settlement_failed", error=result.error, attempts=result.attempts)

    def _advance_checkpoint_for_log(self, log: RawLog) -> None:
        block_number = log.get("blockNumber")
        if block_number is not None:
            self._advance_checkpoint(int(block_number))

    def _advance_checkpoint(self, block_number: int) -> None:
        if self._last_processed_block is not None and block_number <= self._last_processed_block:
            return
        self._last_processed_block = block_number
        if self.checkpoint_store.save(block_number):
            metrics.checkpoint_block.set(block_number)

    def _on_watch_error(self, error: Exception) -> None:
        metrics.watch_errors_total.inc()
        logger.error("event_watcher_error", error=str(error))
