"""
Relay service wiring and command-line entry point.

Builds the dispatcher and the subscriber from one settings object, runs the
subscription loop until SIGINT/SIGTERM and then lets in-flight Slack
deliveries finish within a grace period.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Callable, List, Optional

import aiohttp

from .config import RelaySettings, load_settings
from .dispatcher import SlackDispatcher
from .errors import RetriesExhaustedError
from .observability import Metrics, setup_logging
from .subscriber import NtfySubscriber

logger = logging.getLogger(__name__)


class RelayService:
    """Owns the subscriber, the dispatcher and the shutdown signal."""

    def __init__(
        self,
        settings: RelaySettings,
        metrics: Optional[Metrics] = None,
        session_factory: Callable[..., Any] = aiohttp.ClientSession,
    ):
        self.settings = settings
        self.metrics = metrics or Metrics.disabled()
        self.stop_event = asyncio.Event()
        self.dispatcher = SlackDispatcher(
            settings.slack_webhook_url,
            timeout=settings.delivery_timeout_seconds,
            max_concurrent=settings.max_concurrent_deliveries,
            metrics=self.metrics,
        )
        self.subscriber = NtfySubscriber(
            settings,
            self.dispatcher,
            metrics=self.metrics,
            session_factory=session_factory,
        )

    def stop(self) -> None:
        """Ask the subscription loop to stop."""
        if not self.stop_event.is_set():
            logger.info("Shutdown requested")
        self.stop_event.set()

    async def run(self) -> None:
        """Run until stopped, then drain and close the dispatcher."""
        if not self.settings.slack_webhook_url:
            logger.warning("No Slack webhook configured; messages will be dropped")

        logger.info(
            f"Relaying ntfy topic {self.settings.ntfy_topic} from {self.settings.ntfy_domain} to Slack",
            extra={"domain": self.settings.ntfy_domain, "topic": self.settings.ntfy_topic},
        )
        try:
            await self.subscriber.run(self.stop_event)
        finally:
            await self.dispatcher.drain(self.settings.shutdown_grace_seconds)
            await self.dispatcher.close()
            logger.info("Relay service closed")


def install_signal_handlers(service: RelayService) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except NotImplementedError:
            # e.g. Windows event loops; KeyboardInterrupt still ends the process
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")


async def async_main(settings: RelaySettings) -> int:
    """Main async function for CLI execution"""
    setup_logging(settings.log_level, settings.log_format)

    try:
        metrics = Metrics.init(settings.metrics_port)
        service = RelayService(settings, metrics)
        install_signal_handlers(service)
        await service.run()
        return 0

    except RetriesExhaustedError as e:
        logger.error(f"Relay stopped: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error in relay service: {e}", exc_info=True)
        return 1


def main(argv: Optional[List[str]] = None):
    """CLI entry point"""
    settings = load_settings(argv)

    exit_code = asyncio.run(async_main(settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
