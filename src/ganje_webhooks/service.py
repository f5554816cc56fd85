"""
Webhook dispatcher service.

Coordinates the subscription store, dispatcher, and event source
into a long-running process with graceful shutdown.
"""

import asyncio
import signal
import sys
from typing import Any, Dict, Optional, TextIO

import structlog

from .config.settings import Config
from .source import StreamEventSource
from .webhooks.dispatcher import Dispatcher
from .webhooks.store import InMemorySubscriptionStore, SubscriptionStore

logger = structlog.get_logger(__name__)


def create_store(config: Config) -> InMemorySubscriptionStore:
    """Build the subscription store described by the configuration."""
    if config.store.subscriptions_path is not None:
        return InMemorySubscriptionStore.from_file(
            config.store.subscriptions_path,
            audit_log_path=config.store.audit_log_path,
        )
    return InMemorySubscriptionStore(audit_log_path=config.store.audit_log_path)


class WebhookDispatcherService:
    """
    Long-running webhook dispatcher process.

    Feeds events from a stream into the dispatcher until the stream
    ends or a shutdown signal arrives, then stops the dispatcher.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[SubscriptionStore] = None,
        stream: Optional[TextIO] = None,
        shutdown_timeout: Optional[float] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Service configuration
            store: Subscription store (built from config if None)
            stream: Event stream (stdin if None)
            shutdown_timeout: Seconds to wait for workers on shutdown
        """
        self.config = config
        self.store = store if store is not None else create_store(config)
        self.dispatcher = Dispatcher(self.store, config.dispatcher)
        self.source = StreamEventSource(self.dispatcher, stream)
        self.shutdown_timeout = shutdown_timeout
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the dispatcher workers."""
        if self._running:
            return

        self.dispatcher.start(self.config.dispatcher.workers)
        self._running = True

        logger.info(
            "Webhook dispatcher service started",
            version=self.config.version,
            workers=self.config.dispatcher.workers,
        )

    async def stop(self) -> None:
        """Stop reading events and drain the dispatcher."""
        if not self._running:
            return

        self._running = False
        self._shutdown_event.set()
        self.source.stop()

        await self.dispatcher.stop(timeout=self.shutdown_timeout)

        logger.info("Webhook dispatcher service stopped", stats=self.dispatcher.get_stats())

    async def run(self) -> None:
        """Run until the event stream ends or shutdown is requested."""
        try:
            await self.start()
            self._setup_signal_handlers()

            source_task = asyncio.create_task(self.source.run())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            await asyncio.wait({source_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
            tasks = [source_task, shutdown_task]

            if source_task.done() and not shutdown_task.done():
                logger.info("Event stream ended, draining queued events")
                drain_task = asyncio.create_task(self.dispatcher.drain())
                tasks.append(drain_task)
                await asyncio.wait({drain_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

            for task in tasks:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)

            if isinstance(results[0], Exception):
                raise results[0]

        except Exception as e:
            logger.error("Service error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        """Ask a running service to shut down."""
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            return

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except (NotImplementedError, RuntimeError):
                # not on the main thread
                return

    def _handle_signal(self, signum: int) -> None:
        logger.info("Received signal, initiating shutdown", signal=signum)
        self.request_shutdown()

    @property
    def running(self) -> bool:
        """Check if the service is running."""
        return self._running

    def health_check(self) -> Dict[str, Any]:
        """Report service status and dispatcher statistics."""
        return {
            "service_running": self._running,
            "source_running": self.source.running,
            "dispatcher": self.dispatcher.get_stats(),
        }
