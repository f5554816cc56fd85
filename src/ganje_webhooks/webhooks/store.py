"""
Subscription store and delivery audit log.

The dispatcher only reads subscriptions by repository and appends
delivery records. The in-memory store also carries the management
operations used to register and edit subscriptions, and can mirror
the audit log to a JSON-lines file.
"""

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .delivery import DeliveryRecord
from .subscription import Subscription, SubscriptionError, parse_event_filter, parse_headers

logger = structlog.get_logger(__name__)


class SubscriptionStoreError(Exception):
    """Raised when the store cannot serve a request."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class SubscriptionNotFoundError(SubscriptionError):
    """Raised when a subscription id is unknown."""


class SubscriptionStore(ABC):
    """Persistence contract consumed by the dispatcher."""

    @abstractmethod
    async def list_subscriptions_by_repository(self, repository: str) -> List[Subscription]:
        """Return all subscriptions registered for a repository."""

    @abstractmethod
    async def append_delivery_record(self, record: DeliveryRecord) -> None:
        """Append a delivery record to the audit log."""


_UPDATABLE_FIELDS = {
    "url": "url",
    "enabled": "enabled",
    "events": "event_filter",
    "payload_template": "payload_template",
    "headers": "headers",
    "signing_secret": "signing_secret",
    "bearer_token": "bearer_token",
    "basic_username": "basic_username",
    "basic_password": "basic_password",
    "description": "description",
}


class InMemorySubscriptionStore(SubscriptionStore):
    """
    In-memory subscription store with an append-only audit log.

    Safe for concurrent use by dispatcher workers running on one
    event loop.
    """

    def __init__(
        self,
        subscriptions: Optional[List[Subscription]] = None,
        audit_log_path: Optional[Path] = None,
        max_subscriptions: int = 1000,
    ):
        """
        Initialize the store.

        Args:
            subscriptions: Initial subscriptions
            audit_log_path: Optional JSON-lines file mirroring the audit log
            max_subscriptions: Maximum number of subscriptions
        """
        self.audit_log_path = audit_log_path
        self.max_subscriptions = max_subscriptions

        self._subscriptions: Dict[str, Subscription] = {}
        self._records: List[DeliveryRecord] = []
        self._lock = asyncio.Lock()

        for subscription in subscriptions or []:
            self._subscriptions[subscription.subscription_id] = subscription

    @classmethod
    def from_file(
        cls, path: Path, audit_log_path: Optional[Path] = None
    ) -> "InMemorySubscriptionStore":
        """
        Load subscriptions from a JSON file.

        The file holds a list of subscription records, or an object with
        a ``subscriptions`` list.

        Raises:
            SubscriptionStoreError: If the file cannot be read or parsed
            SubscriptionError: If a record is invalid
        """
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SubscriptionStoreError(f"Failed to load subscriptions from {path}: {e}", e)

        if isinstance(data, dict):
            data = data.get("subscriptions", [])
        if not isinstance(data, list):
            raise SubscriptionStoreError(f"Subscriptions file must hold a list: {path}")

        subscriptions = [Subscription.from_record(record) for record in data]

        logger.info(
            "Loaded subscriptions",
            path=str(path),
            subscription_count=len(subscriptions),
        )

        return cls(subscriptions=subscriptions, audit_log_path=audit_log_path)

    async def list_subscriptions_by_repository(self, repository: str) -> List[Subscription]:
        async with self._lock:
            return [s for s in self._subscriptions.values() if s.repository == repository]

    async def append_delivery_record(self, record: DeliveryRecord) -> None:
        async with self._lock:
            self._records.append(record)

        if self.audit_log_path is not None:
            line = json.dumps(record.to_dict(), separators=(",", ":"))
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_audit_line, line)
            except OSError as e:
                raise SubscriptionStoreError(f"Failed to write audit log: {e}", e)

    def _write_audit_line(self, line: str) -> None:
        with open(self.audit_log_path, "a") as f:
            f.write(line + "\n")

    async def create_subscription(
        self,
        repository: str,
        url: str,
        events: Any = None,
        subscription_id: Optional[str] = None,
        **options: Any,
    ) -> Subscription:
        """
        Register a new subscription for a repository.

        Args:
            repository: Repository name
            url: Webhook URL to deliver events to
            events: Event filter (CSV string or list; all kinds if empty)
            subscription_id: Optional custom id
            **options: Remaining subscription fields

        Returns:
            The created subscription

        Raises:
            SubscriptionError: If the limit is exceeded or fields are invalid
        """
        async with self._lock:
            if len(self._subscriptions) >= self.max_subscriptions:
                raise SubscriptionError(
                    f"Maximum subscriptions limit ({self.max_subscriptions}) exceeded"
                )

            subscription_id = subscription_id or str(uuid.uuid4())
            if subscription_id in self._subscriptions:
                raise SubscriptionError(f"Subscription already exists: {subscription_id}")

            unknown = set(options) - (set(_UPDATABLE_FIELDS) - {"url", "events"})
            if unknown:
                raise SubscriptionError(f"Unknown subscription fields: {sorted(unknown)}")

            subscription = Subscription(
                subscription_id=subscription_id,
                repository=repository,
                url=url,
                event_filter=parse_event_filter(events),
                headers=parse_headers(options.pop("headers", None)),
                **options,
            )
            self._subscriptions[subscription_id] = subscription

        logger.info(
            "Subscription registered",
            subscription_id=subscription_id,
            repository=repository,
            url=url,
        )
        return subscription

    async def get_subscription(self, subscription_id: str) -> Subscription:
        """
        Get a subscription by id.

        Raises:
            SubscriptionNotFoundError: If the id is unknown
        """
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
        return subscription

    async def update_subscription(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        """
        Update fields of an existing subscription.

        Subscriptions are replaced, never mutated, so a dispatch that
        already loaded the previous version is unaffected.

        Raises:
            SubscriptionNotFoundError: If the id is unknown
            SubscriptionError: If an update is invalid
        """
        unknown = set(updates) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise SubscriptionError(f"Unknown subscription fields: {sorted(unknown)}")

        async with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")

            changes = {}
            for key, value in updates.items():
                if key == "events":
                    value = parse_event_filter(value)
                elif key == "headers":
                    value = parse_headers(value)
                changes[_UPDATABLE_FIELDS[key]] = value

            updated = replace(current, **changes)
            self._subscriptions[subscription_id] = updated

        logger.info(
            "Subscription updated",
            subscription_id=subscription_id,
            fields=sorted(updates),
        )
        return updated

    async def delete_subscription(self, subscription_id: str) -> bool:
        """Remove a subscription; returns False if it did not exist."""
        async with self._lock:
            subscription = self._subscriptions.pop(subscription_id, None)

        if subscription is None:
            return False

        logger.info(
            "Subscription deleted",
            subscription_id=subscription_id,
            url=subscription.url,
        )
        return True

    async def list_delivery_records(
        self, subscription_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[DeliveryRecord]:
        """Return audit records, oldest first, optionally filtered."""
        async with self._lock:
            records = [
                record
                for record in self._records
                if subscription_id is None or record.subscription_id == subscription_id
            ]
        if limit is not None:
            records = records[-limit:]
        return records
