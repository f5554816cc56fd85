"""
Pytest configuration and fixtures for Ganje webhook dispatcher tests.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from ganje_webhooks.config.settings import DispatcherConfig
from ganje_webhooks.webhooks.delivery import DeliveryAttempt, DeliveryOutcome, classify_status
from ganje_webhooks.webhooks.events import Event, EventKind
from ganje_webhooks.webhooks.store import InMemorySubscriptionStore
from ganje_webhooks.webhooks.subscription import Subscription


@pytest.fixture
def sample_event():
    """Create a sample artifact event."""
    return Event(
        kind=EventKind.ADD,
        repository="maven-releases",
        path="com/example/lib/1.0.0/lib-1.0.0.jar",
        name="lib",
        version="1.0.0",
        group="com.example",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_subscription():
    """Factory for subscriptions on the sample repository."""

    def factory(**overrides: Any) -> Subscription:
        values: Dict[str, Any] = {
            "subscription_id": "hook-1",
            "repository": "maven-releases",
            "url": "http://hooks.example.com/artifacts",
        }
        values.update(overrides)
        return Subscription(**values)

    return factory


@pytest.fixture
def dispatcher_config():
    """Dispatcher configuration with short backoffs for tests."""
    return DispatcherConfig(
        workers=2,
        max_retries=2,
        initial_backoff_seconds=0.01,
        max_backoff_seconds=0.04,
        http_timeout_seconds=2.0,
    )


@pytest.fixture
def store():
    """Create an empty in-memory subscription store."""
    return InMemorySubscriptionStore()


class ScriptedClient:
    """
    Delivery client double returning scripted status codes.

    A status of None simulates a transport error. When the script runs
    out, the last status repeats. ``gate`` holds every attempt until set.
    """

    def __init__(self, statuses: Optional[List[Optional[int]]] = None):
        self.statuses = list(statuses or [200])
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def post(
        self,
        url: str,
        payload: bytes,
        headers: Dict[str, str],
        attempt_number: int = 1,
    ) -> DeliveryAttempt:
        self.calls.append(
            {"url": url, "payload": payload, "headers": headers, "attempt": attempt_number}
        )
        if self.gate is not None:
            await self.gate.wait()

        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if status is None:
            return DeliveryAttempt(
                attempt_number=attempt_number,
                timestamp=time.time(),
                outcome=DeliveryOutcome.RETRYABLE,
                error="Connection refused",
            )

        outcome = classify_status(status)
        return DeliveryAttempt(
            attempt_number=attempt_number,
            timestamp=time.time(),
            outcome=outcome,
            status_code=status,
            error=None if outcome is DeliveryOutcome.SUCCESS else f"non-2xx status: {status}",
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_client():
    """Create a delivery client that answers 200."""
    return ScriptedClient()


@pytest.fixture
def make_scripted_client():
    """Factory for delivery clients answering scripted statuses."""
    return ScriptedClient


@dataclass
class CapturedRequest:
    """Request received by the test webhook endpoint."""

    path: str
    headers: Any
    body: bytes
    received_at: float = field(default_factory=time.monotonic)


class RecordingEndpoint:
    """Webhook receiver that records requests and answers scripted statuses."""

    def __init__(self):
        self.requests: List[CapturedRequest] = []
        self.statuses: Dict[str, List[int]] = {}
        self.default_status = 200
        self.delay = 0.0
        self.server: Optional[TestServer] = None

    def url(self, path: str = "/hook") -> str:
        return str(self.server.make_url(path))

    def respond(self, path: str, *statuses: int) -> None:
        """Script response statuses for a path; the last one repeats."""
        self.statuses[path] = list(statuses)

    def requests_for(self, path: str) -> List[CapturedRequest]:
        return [request for request in self.requests if request.path == path]

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(
            CapturedRequest(path=request.path, headers=request.headers.copy(), body=body)
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        script = self.statuses.get(request.path)
        if script:
            status = script.pop(0) if len(script) > 1 else script[0]
        else:
            status = self.default_status
        return web.Response(status=status, text="received")


@pytest_asyncio.fixture
async def webhook_endpoint():
    """Run a local HTTP endpoint receiving webhook deliveries."""
    endpoint = RecordingEndpoint()
    app = web.Application()
    app.router.add_post("/{tail:.*}", endpoint.handle)

    server = TestServer(app)
    await server.start_server()
    endpoint.server = server

    yield endpoint

    await server.close()
