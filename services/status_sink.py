# ============================================================================
# STATUS SINKS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Service - Outbound job status events
# PURPOSE: Deliver status events to logs and webhooks (best-effort)
# CREATED: 18 OCT 2026
# ============================================================================
"""
Status Sinks

Receive a StatusEvent on every job transition and every batch completion.

Supports:
1. Logging: structured log line per event
2. Webhook: POST the event JSON to an HTTP endpoint
3. Composite: fan out to several sinks

Delivery is best-effort. publish() returns False on failure instead of
raising; the JobManager additionally bounds each publish with a timeout
so a slow endpoint cannot stall the worker.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import aiohttp

from core.config import StatusSinkDefaults
from core.models.events import EventStatus, StatusEvent

logger = logging.getLogger(__name__)


# ============================================================================
# ABSTRACT SINK
# ============================================================================

class StatusSink(ABC):
    """Abstract base for status sinks."""

    @abstractmethod
    async def publish(self, event: StatusEvent) -> bool:
        """
        Publish a status event.

        Args:
            event: Snapshot of the job at the time of the event

        Returns:
            True if delivery succeeded
        """
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


# ============================================================================
# LOGGING SINK
# ============================================================================

class LoggingStatusSink(StatusSink):
    """Writes each event to the log."""

    def __init__(self, logger_name: str = "status"):
        self._logger = logging.getLogger(logger_name)

    async def publish(self, event: StatusEvent) -> bool:
        level = logging.INFO
        if event.event_status == EventStatus.FAILURE:
            level = logging.ERROR
        elif event.event_status == EventStatus.WARNING:
            level = logging.WARNING

        progress = event.progress
        self._logger.log(
            level,
            f"Job {event.job_id[:8]} {event.event_type.value}: {event.status.value} "
            f"({progress.get('completed', 0)}+{progress.get('failed', 0)}"
            f"/{progress.get('total', 0)}) {event.message}",
            extra={"extra": {"event": event.model_dump(mode="json", exclude={"errors"})}},
        )
        return True


# ============================================================================
# WEBHOOK SINK
# ============================================================================

class WebhookStatusSink(StatusSink):
    """
    POSTs events to a webhook URL.

    One attempt per event; status events are frequent and the next one
    supersedes a lost one.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 10.0,
        enabled: bool = True,
    ):
        """
        Initialize webhook sink.

        Args:
            webhook_url: Full URL to POST to
            timeout_seconds: Request timeout
            enabled: When False, publish() is a no-op returning True
        """
        self._webhook_url = webhook_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._enabled = enabled
        self._session: Optional[aiohttp.ClientSession] = None
        self.delivered = 0
        self.failed = 0

    @classmethod
    def from_config(cls, config: StatusSinkDefaults) -> Optional["WebhookStatusSink"]:
        """Build from configuration, or None when no URL is configured."""
        if not config.webhook_url:
            return None
        return cls(
            webhook_url=config.webhook_url,
            timeout_seconds=config.timeout_seconds,
            enabled=config.enabled,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def publish(self, event: StatusEvent) -> bool:
        if not self._enabled:
            return True

        payload = event.model_dump(mode="json")
        try:
            session = await self._get_session()
            async with session.post(
                self._webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                if 200 <= response.status < 300:
                    self.delivered += 1
                    logger.debug(
                        f"Status event {event.event_type.value} for job {event.job_id[:8]} "
                        f"delivered (status={response.status})"
                    )
                    return True

                body = await response.text()
                logger.warning(
                    f"Status webhook rejected event: status={response.status}, "
                    f"body={body[:500]}"
                )

        except asyncio.TimeoutError:
            logger.warning(f"Status webhook timeout for job {event.job_id[:8]}")

        except aiohttp.ClientError as e:
            logger.warning(f"Status webhook error: {e}")

        self.failed += 1
        return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


# ============================================================================
# COMPOSITE SINK
# ============================================================================

class CompositeStatusSink(StatusSink):
    """Fans out to several sinks; succeeds if every sink succeeded."""

    def __init__(self, sinks: List[StatusSink]):
        self.sinks = list(sinks)

    async def publish(self, event: StatusEvent) -> bool:
        delivered = True
        for sink in self.sinks:
            try:
                if not await sink.publish(event):
                    delivered = False
            except Exception as e:
                logger.warning(f"Status sink {type(sink).__name__} failed: {e}")
                delivered = False
        return delivered

    async def close(self) -> None:
        for sink in self.sinks:
            await sink.close()


def build_status_sink(config: StatusSinkDefaults) -> StatusSink:
    """Logging sink plus a webhook sink when a URL is configured."""
    sinks: List[StatusSink] = [LoggingStatusSink()]
    webhook = WebhookStatusSink.from_config(config)
    if webhook is not None:
        sinks.append(webhook)
    if len(sinks) == 1:
        return sinks[0]
    return CompositeStatusSink(sinks)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StatusSink",
    "LoggingStatusSink",
    "WebhookStatusSink",
    "CompositeStatusSink",
    "build_status_sink",
]
