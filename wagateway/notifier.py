"""
Webhook Notifier.

Relays inbound WhatsApp messages to one configured HTTP endpoint:
- Best-effort, fire-and-forget delivery (one attempt, no retry)
- Explicit request timeout
- Failures are logged and never reach the caller
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import httpx

from wagateway.config import GatewayConfig, validate_url
from wagateway.models import InboundMessageEvent, WebhookTarget

logger = logging.getLogger(__name__)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp in ISO-8601 with millisecond precision and a Z suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WebhookNotifier:
    """Delivers inbound message notifications to the configured webhook."""

    EVENT_TYPE = "messages.upsert"
    SHUTDOWN_GRACE_SECONDS = 5.0

    def __init__(self, config: GatewayConfig):
        self.config = config
        self._target = WebhookTarget(url=config.webhook_url, enabled=True)
        self._tasks: Set[asyncio.Task] = set()
        self._stats = {"delivered": 0, "failed": 0, "skipped": 0}

    @property
    def target(self) -> WebhookTarget:
        return self._target

    def configure(self, url: Optional[str] = None, enabled: Optional[bool] = None) -> WebhookTarget:
        """
        Replace the webhook target.

        Args:
            url: New destination; None keeps the current one
            enabled: False disables delivery; anything else enables it

        Returns:
            The new target

        Raises:
            ValueError: If the URL is not an absolute http(s) URL
        """
        new_url = self._target.url
        if url is not None:
            new_url = validate_url(url)

        self._target = WebhookTarget(url=new_url, enabled=enabled is not False)
        logger.info(f"Webhook target updated: url={self._target.url} enabled={self._target.enabled}")
        return self._target

    def build_payload(self, event: InboundMessageEvent, target: WebhookTarget) -> Dict[str, Any]:
        """Flatten an inbound message into the webhook request body."""
        return {
            "instance": self.config.instance_name,
            "data": event.payload,
            "event": self.EVENT_TYPE,
            "apikey": self.config.auth_key,
            "sender": event.sender,
            "date_time": iso_timestamp(),
            "server_url": self.config.public_url,
            "destination": target.url,
        }

    def notify(self, event: InboundMessageEvent) -> Optional[asyncio.Task]:
        """
        Schedule delivery of one inbound message.

        Returns:
            The delivery task, or None when no webhook is active
        """
        target = self._target
        if not target.active:
            self._stats["skipped"] += 1
            logger.debug("No active webhook target, skipping notification")
            return None

        task = asyncio.create_task(self._deliver(event, target))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, event: InboundMessageEvent, target: WebhookTarget) -> bool:
        """Deliver one notification; returns True on a 2xx response."""
        payload = self.build_payload(event, target)
        try:
            async with httpx.AsyncClient(timeout=self.config.webhook_timeout) as client:
                response = await client.post(target.url, json=payload)
                response.raise_for_status()
            self._stats["delivered"] += 1
            logger.info(f"Webhook sent to {target.url}: {response.status_code}")
            return True
        except httpx.TimeoutException as e:
            logger.error(f"Webhook to {target.url} timed out after {self.config.webhook_timeout}s: {e}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Webhook to {target.url} rejected: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Webhook to {target.url} failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected webhook error for {target.url}: {e}")
        self._stats["failed"] += 1
        return False

    @property
    def in_flight_count(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "in_flight": self.in_flight_count,
            "target": self._target.to_dict(),
        }

    async def aclose(self) -> None:
        """Give in-flight deliveries a short grace period, then cancel them."""
        if not self._tasks:
            return

        pending = list(self._tasks)
        done, still_running = await asyncio.wait(pending, timeout=self.SHUTDOWN_GRACE_SECONDS)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_running)} webhook deliveries on shutdown")
