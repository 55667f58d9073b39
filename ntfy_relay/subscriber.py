"""
ntfy stream subscription.

``NtfySubscriber.run`` keeps one streaming GET against ``/{topic}/json`` open
at a time. Each line is classified and message events are handed to the
dispatcher without waiting for delivery. When a session ends, for whatever
reason, the loop waits according to the backoff policy and reconnects. It
only stops when the stop event is set or an optional retry cap is reached.

Reconnects always start from the live end of the topic; messages published
while disconnected are not replayed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, Union

import aiohttp

from .config import RelaySettings
from .errors import (
    DecodeError,
    RelayError,
    RetriesExhaustedError,
    StreamConnectionError,
    StreamInterruptedError,
    UnexpectedStatusError,
)
from .events import EventKind, InboundEvent, decode_event
from .observability import Metrics

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30


class EventDispatcher(Protocol):
    """Anything that can take a message event off the loop's hands, e.g. SlackDispatcher."""

    def dispatch(self, event: InboundEvent) -> Any:
        ...


class NtfySubscriber:
    """Supervises the ntfy stream and feeds message events to a dispatcher."""

    def __init__(
        self,
        settings: RelaySettings,
        dispatcher: EventDispatcher,
        metrics: Optional[Metrics] = None,
        session_factory: Callable[..., Any] = aiohttp.ClientSession,
    ):
        self.settings = settings
        self.dispatcher = dispatcher
        self.metrics = metrics or Metrics.disabled()
        self.policy = settings.backoff_policy()
        self._session_factory = session_factory
        # True once the current session got a 200 from the server
        self.session_established = False

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """
        Subscribe, and resubscribe after every session end.

        Args:
            stop: Event that ends the loop when set. Without one the loop runs
                until the process is terminated.

        Raises:
            RetriesExhaustedError: ``max_retries`` consecutive sessions failed
                to connect. Never raised when no cap is configured.
        """
        if stop is None:
            stop = asyncio.Event()

        failures = 0
        while not stop.is_set():
            stopped = False
            try:
                stopped = await self._run_session(stop)
            except UnexpectedStatusError as e:
                self.metrics.inc_session("bad_status")
                logger.error(
                    f"ntfy session failed: {e}",
                    extra={"expected": 200, "status": e.status, "domain": e.domain},
                )
            except RelayError as e:
                self.metrics.inc_session("error")
                logger.error(f"ntfy session failed: {e}", extra={"domain": self.settings.ntfy_domain})
            except Exception as e:
                self.metrics.inc_session("error")
                logger.error(f"Unexpected error in ntfy session: {e}", exc_info=True)
            else:
                if not stopped:
                    self.metrics.inc_session("closed")
                    logger.info("connection closed, restarting")

            if stopped:
                break

            if self.session_established:
                failures = 0
            else:
                failures += 1
                if self.policy.exhausted(failures):
                    logger.error(f"Giving up after {failures} failed connection attempts")
                    raise RetriesExhaustedError(failures)

            delay = self.policy.delay(max(failures, 1))
            logger.info(f"Reconnecting to ntfy in {delay:.1f}s")
            if await self._wait(stop, delay):
                break

        logger.info("Subscription loop stopped")

    async def _run_session(self, stop: asyncio.Event) -> bool:
        """Run one session; return True if it was cut short by ``stop``."""
        session_task = asyncio.create_task(self.connect_and_stream())
        stop_task = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({session_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            if not session_task.done():
                session_task.cancel()
            await asyncio.gather(stop_task, return_exceptions=True)

        if session_task.cancelled() or not session_task.done():
            await asyncio.gather(session_task, return_exceptions=True)
            return True
        # propagate the session outcome
        session_task.result()
        return False

    async def _wait(self, stop: asyncio.Event, delay: float) -> bool:
        """Sleep ``delay`` seconds; return True if ``stop`` was set meanwhile."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def connect_and_stream(self) -> None:
        """
        Open one stream session and process it until the server closes it.

        Raises:
            StreamConnectionError: The server could not be reached
            UnexpectedStatusError: The server answered with a status other than 200
            StreamInterruptedError: The stream broke while reading
        """
        self.session_established = False
        domain = self.settings.ntfy_domain
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=CONNECT_TIMEOUT_SECONDS,
            sock_read=self.settings.ntfy_read_timeout,
        )
        try:
            async with self._session_factory(timeout=timeout) as session:
                async with session.get(
                    self.settings.stream_url,
                    headers=self.settings.stream_headers(),
                ) as response:
                    if response.status != 200:
                        raise UnexpectedStatusError(response.status, domain)
                    self.session_established = True
                    logger.debug(f"Connected to {self.settings.stream_url}")
                    async for raw in response.content:
                        self.handle_line(raw)
        except RelayError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if self.session_established:
                raise StreamInterruptedError(f"ntfy stream interrupted: {e!r}") from e
            raise StreamConnectionError(f"error connecting to ntfy server {domain}: {e!r}") from e

    def handle_line(self, raw: Union[str, bytes]) -> None:
        """Classify one stream line and dispatch it if it is a message."""
        if not raw.strip():
            return

        try:
            event = decode_event(raw)
        except DecodeError as e:
            self.metrics.inc_decode_failure()
            logger.error(f"error while processing ntfy message: {e.reason}", extra={"text": e.line})
            return

        kind = event.kind
        self.metrics.inc_event(kind.value)

        if kind is EventKind.OPEN:
            logger.info(
                f"subscription established on {self.settings.ntfy_domain}",
                extra={"domain": self.settings.ntfy_domain, "topic": event.topic},
            )
        elif kind is EventKind.KEEPALIVE:
            logger.debug("keepalive")
        elif kind is EventKind.MESSAGE:
            logger.info("sending message", extra={"event_id": event.id, "title": event.title, "body": event.message})
            self.dispatcher.dispatch(event)
        else:
            logger.warning(f"bad message received: {event.event!r}", extra={"text": event.model_dump_json()})
