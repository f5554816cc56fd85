"""
Payload rendering for webhook deliveries.

Operators may attach a Jinja2 template to a subscription to customize
the payload shape. A bad template never breaks delivery: rendering
falls back to the canonical JSON encoding of the event.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import structlog
from jinja2 import StrictUndefined, Template
from jinja2.sandbox import SandboxedEnvironment

from .events import Event, format_timestamp

logger = structlog.get_logger(__name__)

# templates come from subscription data and are untrusted
_environment = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


@dataclass(frozen=True)
class RenderResult:
    """Outcome of a template evaluation."""

    ok: bool
    body: bytes = b""
    error: Optional[str] = None


@lru_cache(maxsize=256)
def _compile(source: str) -> Template:
    return _environment.from_string(source)


def template_context(event: Event) -> Dict[str, Any]:
    """Variables available to payload templates."""
    return {
        "event": event,
        "type": event.kind.value,
        "kind": event.kind.alias,
        "repository": event.repository,
        "path": event.path,
        "name": event.name,
        "version": event.version,
        "group": event.group,
        "timestamp": format_timestamp(event.timestamp),
    }


def try_render(template: str, event: Event) -> RenderResult:
    """
    Evaluate a payload template against an event.

    Never raises; syntax and evaluation errors are returned as a
    failed RenderResult.
    """
    try:
        rendered = _compile(template).render(**template_context(event))
    except Exception as e:
        return RenderResult(ok=False, error=f"{type(e).__name__}: {e}")

    return RenderResult(ok=True, body=rendered.encode("utf-8"))


def render_payload(template: Optional[str], event: Event) -> bytes:
    """
    Render the outbound payload for an event.

    Blank templates produce the canonical JSON encoding of the event,
    as do templates that fail to render.
    """
    if not template or not template.strip():
        return event.to_json().encode("utf-8")

    result = try_render(template, event)
    if result.ok:
        return result.body

    logger.warning(
        "Payload template failed, falling back to canonical JSON",
        event_type=event.kind.value,
        repository=event.repository,
        error=result.error,
    )
    return event.to_json().encode("utf-8")
