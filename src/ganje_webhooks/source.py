"""
Event source for the webhook dispatcher.

Reads newline-delimited JSON events from a text stream (stdin by
default) and hands them to the dispatcher.
"""

import asyncio
import sys
import threading
from typing import AsyncIterator, Optional, TextIO

import structlog

from .webhooks.dispatcher import Dispatcher
from .webhooks.events import EventDecodeError, decode_event

logger = structlog.get_logger(__name__)


class EventSourceError(Exception):
    """Base exception for event source errors."""


class StreamEventSource:
    """
    Line-oriented JSON event source.

    Each non-blank line holds one event object. Invalid lines are
    logged and skipped. Reading stops at end of stream or on ``stop``.
    """

    def __init__(self, dispatcher: Dispatcher, stream: Optional[TextIO] = None):
        self.dispatcher = dispatcher
        self.stream = stream or sys.stdin
        self._running = False
        self._lines_read = 0
        self._events_forwarded = 0
        self._events_rejected = 0

    async def run(self) -> None:
        """Read the stream until EOF, forwarding events to the dispatcher."""
        if self._running:
            raise EventSourceError("Event source is already running")

        self._running = True
        logger.info("Starting event source")

        try:
            async for line in self._read_lines():
                self._process_line(line)
        finally:
            self._running = False
            logger.info(
                "Event source stopped",
                lines_read=self._lines_read,
                events_forwarded=self._events_forwarded,
                events_rejected=self._events_rejected,
            )

    def stop(self) -> None:
        """Stop after the line currently being read."""
        self._running = False

    async def _read_lines(self) -> AsyncIterator[str]:
        """
        Read lines from the stream without blocking the event loop.

        A daemon thread performs the blocking reads so an idle stream
        never holds up process shutdown.
        """
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()

        def push(item: Optional[str]) -> bool:
            try:
                loop.call_soon_threadsafe(lines.put_nowait, item)
            except RuntimeError:
                # loop already closed
                return False
            return True

        def pump() -> None:
            try:
                for raw in iter(self.stream.readline, ""):
                    if not push(raw):
                        return
            except (OSError, ValueError) as e:
                logger.error("Error reading event stream", error=str(e))
            push(None)

        threading.Thread(target=pump, name="event-source-reader", daemon=True).start()

        while self._running:
            line = await lines.get()

            if line is None:
                logger.info("Received EOF on event stream")
                break

            line = line.strip()
            if line:
                self._lines_read += 1
                yield line

    def _process_line(self, line: str) -> None:
        try:
            event = decode_event(line)
        except EventDecodeError as e:
            self._events_rejected += 1
            logger.warning("Skipping invalid event", error=str(e), line=line[:100])
            return

        self.dispatcher.enqueue(event)
        self._events_forwarded += 1

    @property
    def running(self) -> bool:
        """Whether the source is reading."""
        return self._running
