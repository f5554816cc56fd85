"""
Webhook subscription model.

Subscriptions are owned by the subscription store and are read-only
during a dispatch. Raw store values (CSV event filter, JSON header
mapping) are normalized once when a subscription is loaded.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

import structlog

from .events import Event, EventKind, format_timestamp, utc_now

logger = structlog.get_logger(__name__)


class SubscriptionError(ValueError):
    """Raised for invalid subscription data."""


def parse_event_filter(
    value: Union[None, str, Iterable[Union[str, EventKind]]],
) -> Optional[FrozenSet[EventKind]]:
    """
    Parse a human-editable event filter into a set of event kinds.

    Accepts a comma-separated string or an iterable of names. Returns
    None when the filter is blank, meaning "all kinds". Unknown tokens
    are ignored, so a filter naming only unknown kinds matches nothing.
    """
    if value is None:
        return None

    if isinstance(value, str):
        tokens = [token.strip() for token in value.split(",")]
    else:
        tokens = [token if isinstance(token, EventKind) else str(token).strip() for token in value]

    tokens = [token for token in tokens if token]
    if not tokens:
        return None

    kinds = set()
    for token in tokens:
        try:
            kinds.add(EventKind.parse(token))
        except ValueError:
            logger.warning("Ignoring unknown event kind in filter", token=token)

    return frozenset(kinds)


def parse_headers(value: Union[None, str, Dict[str, Any]]) -> Dict[str, str]:
    """
    Parse a custom header mapping.

    Accepts a JSON object string or a dict. Blank or invalid JSON
    yields an empty mapping; entries with non-string values are skipped.
    """
    if value is None:
        return {}

    if isinstance(value, str):
        if not value.strip():
            return {}
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("Ignoring invalid headers JSON")
            return {}

    if not isinstance(value, dict):
        return {}

    return {str(k): v for k, v in value.items() if isinstance(v, str)}


@dataclass
class Subscription:
    """Webhook subscription configuration."""

    subscription_id: str
    repository: str
    url: str
    enabled: bool = True
    event_filter: Optional[FrozenSet[EventKind]] = None
    payload_template: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    signing_secret: Optional[str] = None
    bearer_token: Optional[str] = None
    basic_username: Optional[str] = None
    basic_password: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.url or not self.url.startswith(("http://", "https://")):
            raise SubscriptionError("Invalid webhook URL - must start with http:// or https://")

    @property
    def auth_scheme(self) -> Optional[str]:
        """Authorization scheme applied to deliveries, bearer first."""
        if self.bearer_token:
            return "bearer"
        if self.basic_username or self.basic_password:
            return "basic"
        return None

    def accepts(self, kind: EventKind) -> bool:
        """Check whether the event filter lets this kind through."""
        return self.event_filter is None or kind in self.event_filter

    def matches_event(self, event: Event) -> bool:
        """Check if this subscription should receive the event."""
        return self.enabled and self.accepts(event.kind)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Subscription":
        """
        Build a subscription from a raw store record.

        The record uses the store's field names: ``id``, ``repository``,
        ``url``, ``enabled``, ``events`` (CSV or list), ``payload_template``,
        ``headers`` (JSON string or object), ``signing_secret``,
        ``bearer_token``, ``basic_username``, ``basic_password``.

        Raises:
            SubscriptionError: If required fields are missing or invalid
        """
        missing = [key for key in ("id", "repository", "url") if not record.get(key)]
        if missing:
            raise SubscriptionError(f"Subscription record missing fields: {', '.join(missing)}")

        return cls(
            subscription_id=str(record["id"]),
            repository=str(record["repository"]),
            url=str(record["url"]),
            enabled=bool(record.get("enabled", True)),
            event_filter=parse_event_filter(record.get("events")),
            payload_template=record.get("payload_template") or None,
            headers=parse_headers(record.get("headers")),
            signing_secret=record.get("signing_secret") or None,
            bearer_token=record.get("bearer_token") or None,
            basic_username=record.get("basic_username") or None,
            basic_password=record.get("basic_password") or None,
            description=record.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format, without credentials."""
        return {
            "id": self.subscription_id,
            "repository": self.repository,
            "url": self.url,
            "enabled": self.enabled,
            "events": sorted(kind.value for kind in self.event_filter)
            if self.event_filter is not None
            else None,
            "has_template": bool(self.payload_template and self.payload_template.strip()),
            "headers": sorted(self.headers),
            "signed": bool(self.signing_secret),
            "auth": self.auth_scheme,
            "description": self.description,
            "created_at": format_timestamp(self.created_at),
        }
