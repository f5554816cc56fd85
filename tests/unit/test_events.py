"""
Unit tests for artifact events.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from ganje_webhooks.webhooks.events import (
    Event,
    EventDecodeError,
    EventKind,
    decode_event,
    format_timestamp,
    parse_timestamp,
)


class TestEventKind:
    """Test event kind parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("artifact.add", EventKind.ADD),
            ("ARTIFACT.REMOVE", EventKind.REMOVE),
            ("change", EventKind.CHANGE),
            ("  Add ", EventKind.ADD),
        ],
    )
    def test_parse(self, value, expected):
        """Canonical names and aliases parse case-insensitively."""
        assert EventKind.parse(value) is expected

    def test_parse_unknown(self):
        """Unknown kinds are rejected."""
        with pytest.raises(ValueError):
            EventKind.parse("artifact.move")

    def test_alias(self):
        """Aliases are the short names."""
        assert [kind.alias for kind in EventKind] == ["add", "remove", "change"]


class TestTimestamps:
    """Test timestamp helpers."""

    def test_format_utc(self):
        assert format_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc)) == "2024-01-01T00:00:00Z"

    def test_format_converts_offset(self):
        """Offsets are normalized to UTC."""
        value = datetime(2024, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-01-01T00:00:00Z"

    def test_format_naive_is_utc(self):
        assert format_timestamp(datetime(2024, 1, 1, 12, 30)) == "2024-01-01T12:30:00Z"

    def test_format_trims_fraction(self):
        value = datetime(2024, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-01-01T00:00:01.5Z"

    def test_format_keeps_significant_microseconds(self):
        value = datetime(2024, 1, 1, 0, 0, 1, 120030, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-01-01T00:00:01.12003Z"

    def test_parse_z_suffix(self):
        parsed = parse_timestamp("2024-01-01T00:00:00Z")
        assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestEvent:
    """Test event encoding and decoding."""

    def test_canonical_json(self, sample_event):
        """Canonical JSON is compact and keeps field order."""
        assert sample_event.to_json() == (
            '{"type":"artifact.add","repository":"maven-releases",'
            '"path":"com/example/lib/1.0.0/lib-1.0.0.jar","name":"lib",'
            '"version":"1.0.0","group":"com.example","timestamp":"2024-01-01T00:00:00Z"}'
        )

    def test_optional_fields_omitted(self):
        """Empty name, version, and group are left out."""
        event = Event(
            kind=EventKind.REMOVE,
            repository="npm",
            path="left-pad/-/left-pad-1.3.0.tgz",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        data = event.to_dict()

        assert list(data) == ["type", "repository", "path", "timestamp"]

    @pytest.mark.parametrize("kind", ["artifact.change", "CHANGE", EventKind.CHANGE])
    def test_kind_coerced(self, kind):
        """Wire names and aliases are accepted as kinds."""
        event = Event(kind=kind, repository="npm", path="pkg")
        assert event.kind is EventKind.CHANGE
        assert event.to_dict()["type"] == "artifact.change"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            Event(kind="artifact.move", repository="npm", path="pkg")

    def test_default_timestamp(self):
        """Events without a timestamp get the current UTC time."""
        before = datetime.now(timezone.utc)
        event = Event(kind=EventKind.ADD, repository="npm", path="pkg")
        assert event.timestamp >= before
        assert event.timestamp.tzinfo is not None

    def test_events_are_immutable(self, sample_event):
        with pytest.raises(AttributeError):
            sample_event.repository = "other"

    def test_decode(self, sample_event):
        """Decoding the canonical encoding yields an equal event."""
        assert decode_event(sample_event.to_json()) == sample_event

    def test_decode_alias_kind(self):
        event = decode_event('{"type": "Change", "repository": "docker", "path": "alpine"}')
        assert event.kind is EventKind.CHANGE
        assert event.name == ""

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[]",
            json.dumps({"repository": "npm"}),
            json.dumps({"type": "artifact.add"}),
            json.dumps({"type": "artifact.move", "repository": "npm"}),
            json.dumps({"type": "add", "repository": "npm", "timestamp": "yesterday"}),
        ],
    )
    def test_decode_invalid(self, raw):
        """Invalid wire data raises EventDecodeError."""
        with pytest.raises(EventDecodeError):
            decode_event(raw)
