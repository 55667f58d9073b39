"""
Slack webhook delivery.

Every message event read from the ntfy stream is posted to Slack in its own
asyncio task so a slow webhook never holds up the stream. Failures are logged
and dropped; there is no retry.
"""

import asyncio
import logging
from typing import Optional, Set

import aiohttp

from .errors import (
    ConfigurationError,
    DeliveryConnectionError,
    DeliveryRejectedError,
    RelayError,
)
from .events import InboundEvent, OutboundPost
from .observability import Metrics

logger = logging.getLogger(__name__)


class SlackDispatcher:
    """Posts formatted ntfy messages to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = 10.0,
        max_concurrent: Optional[int] = None,
        metrics: Optional[Metrics] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.metrics = metrics or Metrics.disabled()
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None
        self._tasks: Set[asyncio.Task] = set()
        self._session = session
        self._owns_session = session is None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def deliver(self, post: OutboundPost) -> None:
        """
        Send one post to the webhook.

        Args:
            post: Formatted post to send

        Raises:
            ConfigurationError: No webhook URL is configured
            DeliveryConnectionError: The webhook could not be reached
            DeliveryRejectedError: The webhook answered with status >= 400
        """
        if not self.webhook_url:
            raise ConfigurationError("webhook undefined: no Slack webhook URL configured")

        headers = {"Content-Type": "application/json"}
        session = self._get_session()
        try:
            async with session.post(
                self.webhook_url,
                json=post.to_payload(),
                headers=headers,
                timeout=self.timeout,
            ) as response:
                status = response.status
                # read the body so the connection can go back to the pool
                raw = await response.read()
        except asyncio.TimeoutError as e:
            raise DeliveryConnectionError("timed out sending to Slack webhook") from e
        except aiohttp.ClientError as e:
            raise DeliveryConnectionError(f"error connecting to Slack webhook: {e}") from e

        # webhooks are not obliged to answer in utf-8
        body = raw.decode("utf-8", errors="replace")
        logger.debug("slack response", extra={"status": status, "body": body})

        if status >= 400:
            raise DeliveryRejectedError(status, body)

    def dispatch(self, event: InboundEvent) -> asyncio.Task:
        """Start delivery of ``event`` in the background and return immediately."""
        post = OutboundPost.from_event(event)
        task = asyncio.create_task(self._run_delivery(post, event.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_delivery(self, post: OutboundPost, event_id: str) -> None:
        self.metrics.delivery_started()
        try:
            if self._semaphore is not None:
                async with self._semaphore:
                    await self.deliver(post)
            else:
                await self.deliver(post)
        except DeliveryRejectedError as e:
            self.metrics.inc_delivery("rejected")
            logger.error(
                f"Slack rejected message {event_id}: {e.status}",
                extra={"event_id": event_id, "status": e.status, "body": e.body},
            )
        except RelayError as e:
            self.metrics.inc_delivery("failed")
            logger.error(f"Failed to send message {event_id} to Slack: {e}", extra={"event_id": event_id})
        except Exception as e:
            self.metrics.inc_delivery("failed")
            logger.error(f"Unexpected error sending message {event_id} to Slack: {e}", exc_info=True)
        else:
            self.metrics.inc_delivery("sent")
            logger.debug(f"Message {event_id} sent to Slack", extra={"event_id": event_id})
        finally:
            self.metrics.delivery_finished()

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight deliveries.

        Args:
            timeout: Seconds to wait before cancelling what is left, None waits forever

        Returns:
            Number of deliveries that were cancelled
        """
        pending = set(self._tasks)
        if not pending:
            return 0

        logger.info(f"Waiting for {len(pending)} in-flight Slack deliveries")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Abandoned {len(still_running)} Slack deliveries at shutdown")
        return len(still_running)

    async def close(self) -> None:
        """Close the HTTP session if this dispatcher created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
