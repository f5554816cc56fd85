#!/usr/bin/env python3
"""
Basic usage example for the Ganje webhook dispatcher.

Starts a local webhook receiver, registers two subscriptions, and
dispatches a few artifact events so the delivery records can be
inspected without a real artifact repository.
"""

import asyncio

from aiohttp import web

from ganje_webhooks.config.settings import DispatcherConfig
from ganje_webhooks.utils.logging import setup_logging
from ganje_webhooks.webhooks import (
    SIGNATURE_HEADER,
    Dispatcher,
    Event,
    EventKind,
    InMemorySubscriptionStore,
    verify_signature,
)

SECRET = "example-secret"


async def receive(request: web.Request) -> web.Response:
    """Webhook receiver checking the payload signature."""
    body = await request.read()
    signature = request.headers.get(SIGNATURE_HEADER, "")
    valid = verify_signature(body, SECRET, signature)
    print(f"📨 {request.path}: {body.decode()} (signature valid: {valid})")
    return web.Response(status=200 if valid else 401)


async def main():
    """Run the dispatcher against a local receiver."""
    setup_logging("INFO", json_logs=False)

    app = web.Application()
    app.router.add_post("/{tail:.*}", receive)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 8765)
    await site.start()

    store = InMemorySubscriptionStore()
    await store.create_subscription(
        "maven-releases",
        "http://127.0.0.1:8765/releases",
        events="add,remove",
        signing_secret=SECRET,
    )
    await store.create_subscription(
        "maven-releases",
        "http://127.0.0.1:8765/chat",
        payload_template='{"text": "{{ kind }}: {{ group }}:{{ name }}:{{ version }}"}',
        signing_secret=SECRET,
        bearer_token="chat-token",
    )

    dispatcher = Dispatcher(store, DispatcherConfig(max_retries=2))
    dispatcher.start()

    try:
        for kind, version in [(EventKind.ADD, "1.0.0"), (EventKind.CHANGE, "1.0.0")]:
            dispatcher.enqueue(
                Event(
                    kind=kind,
                    repository="maven-releases",
                    path=f"com/example/lib/{version}/lib-{version}.jar",
                    name="lib",
                    version=version,
                    group="com.example",
                )
            )

        await dispatcher.drain()

        print("\n📋 Delivery records:")
        for record in await store.list_delivery_records():
            print(f"  {record.subscription_id} {record.event_kind.value} -> {record.status_code}")

        print(f"\n📊 Stats: {dispatcher.get_stats()}")

    finally:
        await dispatcher.stop(timeout=5.0)
        await runner.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
