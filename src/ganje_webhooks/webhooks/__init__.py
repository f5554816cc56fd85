"""
Webhook dispatch engine.

Matches artifact lifecycle events against repository subscriptions
and delivers signed payloads with bounded retries.
"""

from .delivery import (
    DeliveryClient,
    DeliveryOutcome,
    DeliveryRecord,
    DeliveryResult,
    DeliveryStatus,
    RetryPolicy,
)
from .dispatcher import Dispatcher
from .events import Event, EventDecodeError, EventKind, decode_event
from .payload import render_payload, try_render
from .signing import SIGNATURE_HEADER, build_headers, compute_signature, verify_signature
from .store import InMemorySubscriptionStore, SubscriptionStore, SubscriptionStoreError
from .subscription import Subscription, SubscriptionError

__all__ = [
    "Dispatcher",
    "Event",
    "EventKind",
    "EventDecodeError",
    "decode_event",
    "Subscription",
    "SubscriptionError",
    "SubscriptionStore",
    "SubscriptionStoreError",
    "InMemorySubscriptionStore",
    "DeliveryClient",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryResult",
    "DeliveryStatus",
    "RetryPolicy",
    "render_payload",
    "try_render",
    "SIGNATURE_HEADER",
    "build_headers",
    "compute_signature",
    "verify_signature",
]
