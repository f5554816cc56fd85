"""
Event definitions for the webhook dispatcher.

Defines artifact lifecycle event kinds and the immutable event
value handed to the dispatcher by producers.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


class EventDecodeError(ValueError):
    """Raised when event wire data cannot be decoded."""


class EventKind(str, Enum):
    """Artifact lifecycle event kinds."""

    ADD = "artifact.add"
    REMOVE = "artifact.remove"
    CHANGE = "artifact.change"

    @property
    def alias(self) -> str:
        """Short human-editable name (``add``, ``remove``, ``change``)."""
        return self.value.rsplit(".", 1)[1]

    @classmethod
    def parse(cls, value: Union[str, "EventKind"]) -> "EventKind":
        """
        Parse an event kind from its canonical name or short alias.

        Matching is case-insensitive and ignores surrounding whitespace.

        Raises:
            ValueError: If the value names no known kind
        """
        if isinstance(value, EventKind):
            return value

        token = str(value).strip().lower()
        for kind in cls:
            if token in (kind.value, kind.alias):
                return kind

        raise ValueError(f"Unknown event kind: {value!r}")


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as RFC 3339 in UTC with a ``Z`` suffix.

    Fractional seconds keep only significant digits (``.5Z``, not
    ``.500000Z``) and are omitted when zero.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)

    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, assuming UTC when no offset is given."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Event:
    """Immutable artifact lifecycle event."""

    kind: EventKind
    repository: str
    path: str
    name: str = ""
    version: str = ""
    group: str = ""
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        # accept wire names and aliases as well as EventKind members
        object.__setattr__(self, "kind", EventKind.parse(self.kind))

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert event to its wire dictionary.

        Optional fields are omitted when empty.
        """
        data: Dict[str, Any] = {
            "type": self.kind.value,
            "repository": self.repository,
            "path": self.path,
        }
        if self.name:
            data["name"] = self.name
        if self.version:
            data["version"] = self.version
        if self.group:
            data["group"] = self.group
        data["timestamp"] = format_timestamp(self.timestamp)
        return data

    def to_json(self) -> str:
        """Canonical compact JSON encoding of the event."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """
        Build an event from its wire dictionary.

        Raises:
            EventDecodeError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise EventDecodeError("Event must be a JSON object")

        raw_kind = data.get("type")
        repository = data.get("repository")
        if not raw_kind or not repository:
            raise EventDecodeError("Event requires 'type' and 'repository'")

        try:
            kind = EventKind.parse(raw_kind)
        except ValueError as e:
            raise EventDecodeError(str(e)) from e

        raw_timestamp = data.get("timestamp")
        timestamp: Optional[datetime] = None
        if raw_timestamp:
            try:
                timestamp = parse_timestamp(str(raw_timestamp))
            except ValueError as e:
                raise EventDecodeError(f"Invalid timestamp: {raw_timestamp!r}") from e

        return cls(
            kind=kind,
            repository=str(repository),
            path=str(data.get("path") or ""),
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            group=str(data.get("group") or ""),
            timestamp=timestamp or utc_now(),
        )


def decode_event(raw: Union[str, bytes]) -> Event:
    """
    Decode a JSON-encoded event.

    Raises:
        EventDecodeError: If the data is not valid JSON or not a valid event
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"Invalid JSON: {e}") from e

    return Event.from_dict(data)
