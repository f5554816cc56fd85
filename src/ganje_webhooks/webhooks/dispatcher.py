"""
Webhook dispatcher for artifact lifecycle events.

Owns a bounded event queue and a pool of worker tasks. Producers hand
events over without ever blocking; workers match them against the
repository's subscriptions and deliver rendered, signed payloads.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog

from ..config.settings import DispatcherConfig
from .delivery import DeliveryClient, DeliveryRecord, RetryPolicy
from .events import Event
from .payload import render_payload
from .signing import build_headers
from .store import SubscriptionStore
from .subscription import Subscription

logger = structlog.get_logger(__name__)

_STOP = object()


class Dispatcher:
    """
    Asynchronous webhook dispatcher.

    Events accepted by ``enqueue`` are processed in FIFO order by a
    fixed number of workers. Each matched, enabled subscription gets
    exactly one delivery record per event, summarizing all attempts.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        config: Optional[DispatcherConfig] = None,
        client: Optional[DeliveryClient] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: Subscription store and audit log
            config: Dispatcher configuration (defaults if None)
            client: Delivery client (creates default if None)
        """
        self.store = store
        self.config = config or DispatcherConfig()
        self.client = client or DeliveryClient(timeout_seconds=self.config.http_timeout_seconds)
        self.retry_policy = RetryPolicy(
            max_retries=self.config.max_retries,
            initial_backoff_seconds=self.config.initial_backoff_seconds,
            max_backoff_seconds=self.config.max_backoff_seconds,
        )
        self._default_headers = {"User-Agent": self.config.user_agent}

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_capacity)
        self._workers: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._accepting = False
        self._started = False
        self._stopped = False

        # Statistics
        self._events_accepted = 0
        self._events_dropped = 0
        self._events_discarded = 0
        self._events_processed = 0
        self._lookup_failures = 0
        self._deliveries_succeeded = 0
        self._deliveries_failed = 0
        self._start_time = time.time()

    def start(self, workers: Optional[int] = None) -> None:
        """
        Start worker tasks on the running event loop.

        Args:
            workers: Number of workers (config value if None, 2 if <= 0)

        Raises:
            RuntimeError: If the dispatcher was already started
        """
        if self._started:
            raise RuntimeError("Dispatcher already started")

        if workers is None:
            workers = self.config.workers
        if workers <= 0:
            workers = 2

        self._loop = asyncio.get_running_loop()
        self._started = True
        self._accepting = True
        self._start_time = time.time()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"webhook-worker-{index}")
            for index in range(workers)
        ]

        logger.info(
            "Webhook dispatcher started",
            workers=workers,
            queue_capacity=self.config.queue_capacity,
            max_retries=self.config.max_retries,
        )

    def enqueue(self, event: Event) -> bool:
        """
        Hand an event to the dispatcher without blocking.

        The event is dropped when the dispatcher is not accepting work
        or the queue is full.

        Returns:
            True if the event was queued
        """
        if not self._accepting:
            self._events_dropped += 1
            logger.warning(
                "Dropping event - dispatcher not accepting events",
                event_type=event.kind.value,
                repository=event.repository,
            )
            return False

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._events_dropped += 1
            logger.warning(
                "Event queue full - dropping event",
                event_type=event.kind.value,
                repository=event.repository,
                queue_size=self._queue.qsize(),
                events_dropped=self._events_dropped,
            )
            return False

        self._events_accepted += 1
        logger.debug(
            "Event queued for webhook delivery",
            event_type=event.kind.value,
            repository=event.repository,
            queue_size=self._queue.qsize(),
        )
        return True

    def enqueue_threadsafe(self, event: Event) -> None:
        """
        Hand an event over from a thread other than the event loop's.

        Returns immediately; the event is queued (or dropped) on the loop.
        """
        if self._loop is None:
            self._events_dropped += 1
            return
        try:
            self._loop.call_soon_threadsafe(self.enqueue, event)
        except RuntimeError:
            # loop closed
            self._events_dropped += 1

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the dispatcher.

        Stops accepting events, discards events still waiting in the
        queue, and waits for workers to finish the event they are
        processing. Pending retry backoffs end immediately. Workers still
        running after ``timeout`` seconds are cancelled.
        """
        if not self._started or self._stopped:
            return

        self._stopped = True
        self._accepting = False
        self._stop_event.set()

        discarded = self._discard_queued()

        signaller = asyncio.create_task(self._signal_workers())
        _, pending = await asyncio.wait(self._workers, timeout=timeout)
        signaller.cancel()
        for task in pending:
            task.cancel()
        await asyncio.gather(signaller, *pending, return_exceptions=True)
        self._discard_queued()

        await self.client.close()

        logger.info(
            "Webhook dispatcher stopped",
            discarded_events=discarded,
            cancelled_workers=len(pending),
            total_events_processed=self._events_processed,
        )

    def _discard_queued(self) -> int:
        """Empty the queue, counting discarded events; returns their number."""
        discarded = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            if item is not _STOP:
                discarded += 1
        self._events_discarded += discarded
        return discarded

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def _signal_workers(self) -> None:
        """Queue one stop sentinel per worker; blocks while the queue is full."""
        for _ in self._workers:
            await self._queue.put(_STOP)

    async def _worker(self, index: int) -> None:
        """Worker loop pulling events from the shared queue."""
        logger.debug("Webhook worker started", worker=index)

        while True:
            item = await self._queue.get()
            if item is _STOP:
                self._queue.task_done()
                break

            try:
                await self.dispatch_event(item)
            except Exception as e:
                logger.error(
                    "Error processing webhook event",
                    worker=index,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

        logger.debug("Webhook worker stopped", worker=index)

    async def dispatch_event(self, event: Event) -> List[DeliveryRecord]:
        """
        Deliver one event to every matching subscription of its repository.

        Subscriptions are handled sequentially. A failed subscription
        lookup abandons the event.

        Returns:
            Delivery records appended for this event
        """
        self._events_processed += 1

        try:
            subscriptions = await self.store.list_subscriptions_by_repository(event.repository)
        except Exception as e:
            self._lookup_failures += 1
            logger.error(
                "Subscription lookup failed - abandoning event",
                event_type=event.kind.value,
                repository=event.repository,
                error=str(e),
            )
            return []

        records = []
        for subscription in subscriptions:
            if not subscription.matches_event(event):
                logger.debug(
                    "Skipping subscription",
                    subscription_id=subscription.subscription_id,
                    enabled=subscription.enabled,
                    event_type=event.kind.value,
                )
                continue

            records.append(await self._deliver(subscription, event))

        if not records:
            logger.debug(
                "No matching webhooks for event",
                event_type=event.kind.value,
                repository=event.repository,
            )

        return records

    async def _deliver(self, subscription: Subscription, event: Event) -> DeliveryRecord:
        """Render, sign, deliver, and record one (event, subscription) pair."""
        payload = render_payload(subscription.payload_template, event)
        headers = build_headers(subscription, payload, self._default_headers)

        logger.info(
            "Starting webhook delivery",
            subscription_id=subscription.subscription_id,
            event_type=event.kind.value,
            repository=event.repository,
            url=subscription.url,
        )

        result = await self.retry_policy.deliver(
            self.client,
            subscription.subscription_id,
            subscription.url,
            payload,
            headers,
            stop_event=self._stop_event,
        )

        if result.is_successful:
            self._deliveries_succeeded += 1
        else:
            self._deliveries_failed += 1

        logger.info(
            "Webhook delivery completed",
            subscription_id=subscription.subscription_id,
            event_type=event.kind.value,
            final_status=result.final_status.value,
            status_code=result.status_code,
            attempt_count=result.attempt_count,
            total_duration_ms=result.total_duration_ms,
        )

        record = DeliveryRecord.from_result(result, event.kind, payload)
        try:
            await self.store.append_delivery_record(record)
        except Exception as e:
            logger.error(
                "Failed to append delivery record",
                subscription_id=subscription.subscription_id,
                error=str(e),
            )

        return record

    @property
    def running(self) -> bool:
        """Whether the dispatcher is accepting events."""
        return self._accepting

    def get_stats(self) -> Dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "is_running": self._accepting,
            "uptime_seconds": time.time() - self._start_time,
            "workers": len(self._workers),
            "events_accepted": self._events_accepted,
            "events_dropped": self._events_dropped,
            "events_discarded": self._events_discarded,
            "events_processed": self._events_processed,
            "lookup_failures": self._lookup_failures,
            "deliveries_succeeded": self._deliveries_succeeded,
            "deliveries_failed": self._deliveries_failed,
            "events_pending": self._queue.qsize(),
            "configuration": {
                "queue_capacity": self.config.queue_capacity,
                "max_retries": self.config.max_retries,
                "initial_backoff_seconds": self.config.initial_backoff_seconds,
                "max_backoff_seconds": self.config.max_backoff_seconds,
                "http_timeout_seconds": self.config.http_timeout_seconds,
            },
        }
