"""
Validator background worker.

Watches ProductPurchased events and settles publishers until stopped.
"""
import argparse
import asyncio
import signal
import sys
from typing import Optional

import structlog
from pydantic import ValidationError
from web3 import AsyncWeb3

from apex_validator.config import Settings, get_settings
from apex_validator.core import AttributionResolver, EventMonitor, PaymentExecutor
from apex_validator.integrations import (
    PurchaseEventSource,
    RegistryClient,
    SettlementSubmitter,
    create_web3,
)
from apex_validator.monitoring import setup_logging, start_metrics_server

logger = structlog.get_logger(__name__)

WEI_PER_ETH = 10**18


def build_monitor(
    settings: Settings, w3: AsyncWeb3
) -> tuple[EventMonitor, SettlementSubmitter]:
    """
    Wire the pipeline from settings.

    Returns:
        tuple: The monitor and the submitter (for validator identity logging)
    """
    registry = RegistryClient.from_settings(w3, settings)
    submitter = SettlementSubmitter.from_settings(w3, settings)
    executor = PaymentExecutor.from_settings(settings, registry, submitter)
    source = PurchaseEventSource(
        w3,
        settings.demo_purchase_address,
        poll_interval_seconds=settings.poll_interval_seconds,
    )
    monitor = EventMonitor.from_settings(
        settings, source, AttributionResolver(registry), executor
    )
    return monitor, submitter


async def log_validator_identity(settings: Settings, submitter: SettlementSubmitter) -> None:
    """Log the validator configuration and its gas balance."""
    logger.info(
        "validator_configuration",
        validator_address=submitter.address,
        validator_id=settings.validator_id,
        settlement_mode=settings.settlement_mode.value,
        demo_purchase=settings.demo_purchase_address,
        ad_registry=settings.ad_registry_address,
        campaign_registry=settings.campaign_registry_address,
        identity_registry=settings.identity_registry_address,
    )
    try:
        balance = await submitter.get_native_balance()
    except Exception as e:
        logger.warning("validator_balance_unavailable", error=str(e))
        return

    logger.info("validator_balance", balance_eth=balance / WEI_PER_ETH)
    if balance == 0:
        logger.warning("validator_has_no_gas", validator_address=submitter.address)


async def start_validator_worker(settings: Settings) -> None:
    """
    Start the validator worker.

    Runs until SIGINT/SIGTERM; the event being settled at that moment is
    allowed to finish.
    """
    setup_logging(settings)
    logger.info("validator_worker_starting", app_env=settings.app_env)

    start_metrics_server(settings.metrics_port)

    w3 = create_web3(settings.rpc_url)
    monitor, submitter = build_monitor(settings, w3)
    await log_validator_identity(settings, submitter)

    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def shutdown(sig: signal.Signals) -> None:
        logger.info("validator_worker_shutdown_signal_received", signal=sig.name)
        monitor.stop()
        stopped.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown, sig)

    try:
        await monitor.start()
        logger.info("validator_worker_running", state=monitor.state.value)
        await stopped.wait()
        await monitor.join()
    except Exception as e:
        logger.error("validator_worker_error", error=str(e))
        raise
    finally:
        logger.info("validator_worker_stopped")


def main(argv: Optional[list[str]] = None) -> int:
    """Console entry point."""
    parser = argparse.ArgumentParser(description="APEX validator worker")
    parser.add_argument(
        "--start-block",
        type=int,
        default=None,
        help="Block to start from, overriding START_BLOCK and the checkpoint",
    )
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        # Configuration errors are the only fatal startup errors
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 1

    if args.start_block is not None:
        settings = settings.model_copy(update={"start_block": args.start_block})

    try:
        asyncio.run(start_validator_worker(settings))
    except Exception:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
