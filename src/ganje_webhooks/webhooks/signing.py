"""
Payload signing and outbound header assembly.
"""

import base64
import hashlib
import hmac
from typing import Dict, Optional

from .subscription import Subscription

SIGNATURE_HEADER = "X-Ganje-Signature"
CONTENT_TYPE = "application/json"


def compute_signature(payload: bytes, secret: str) -> str:
    """
    Compute HMAC-SHA256 signature for a webhook payload.

    Args:
        payload: Rendered payload bytes
        secret: Shared secret for HMAC

    Returns:
        Signature in format "sha256=<hex_digest>"
    """
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(payload: bytes, secret: str, signature: str) -> bool:
    """Verify a signature header value in constant time."""
    return hmac.compare_digest(compute_signature(payload, secret), signature)


def basic_auth(username: str, password: str) -> str:
    """Base64 credentials for the Basic authorization scheme."""
    return base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")


def build_headers(
    subscription: Subscription,
    payload: bytes,
    default_headers: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Assemble HTTP headers for a delivery.

    Order of precedence: defaults, then the subscription's custom
    headers, then the signature and authorization headers. The content
    type always wins over a custom header of the same name.
    """
    headers: Dict[str, str] = {}
    for name, value in (default_headers or {}).items():
        _set_header(headers, name, value)
    for name, value in subscription.headers.items():
        _set_header(headers, name, value)

    if subscription.signing_secret:
        _set_header(
            headers, SIGNATURE_HEADER, compute_signature(payload, subscription.signing_secret)
        )

    if subscription.bearer_token:
        _set_header(headers, "Authorization", f"Bearer {subscription.bearer_token}")
    elif subscription.basic_username or subscription.basic_password:
        _set_header(
            headers,
            "Authorization",
            "Basic "
            + basic_auth(subscription.basic_username or "", subscription.basic_password or ""),
        )

    _set_header(headers, "Content-Type", CONTENT_TYPE)

    return headers


def _set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing header with the same name in any case."""
    for existing in [key for key in headers if key.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value
