"""
Webhook delivery for artifact event notifications.

Handles single HTTP delivery attempts, outcome classification, and
the exponential backoff retry policy that drives them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from .events import EventKind, format_timestamp, utc_now

logger = structlog.get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """Classification of a single delivery attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class DeliveryStatus(str, Enum):
    """Final status of a delivery after all attempts."""

    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"
    ABORTED = "aborted"


def classify_status(status_code: int) -> DeliveryOutcome:
    """Classify an HTTP response status."""
    if 200 <= status_code < 300:
        return DeliveryOutcome.SUCCESS
    if 500 <= status_code < 600:
        return DeliveryOutcome.RETRYABLE
    return DeliveryOutcome.TERMINAL


@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt."""

    attempt_number: int
    timestamp: float
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    response_time_ms: float = 0.0
    error: Optional[str] = None
    response_body: Optional[str] = None
    backoff_seconds: float = 0.0


@dataclass
class DeliveryResult:
    """Result of a delivery including all attempts."""

    subscription_id: str
    url: str
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    aborted: bool = False
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    @property
    def attempt_count(self) -> int:
        """Number of delivery attempts."""
        return len(self.attempts)

    @property
    def is_successful(self) -> bool:
        """Whether the last attempt succeeded."""
        return bool(self.attempts) and self.attempts[-1].outcome is DeliveryOutcome.SUCCESS

    @property
    def status_code(self) -> int:
        """Last observed HTTP status code, 0 if no response was received."""
        for attempt in reversed(self.attempts):
            if attempt.status_code is not None:
                return attempt.status_code
        return 0

    @property
    def error(self) -> Optional[str]:
        """Error of the last failed attempt, None on success."""
        if self.is_successful or not self.attempts:
            return None
        return self.attempts[-1].error

    @property
    def final_status(self) -> DeliveryStatus:
        """Final delivery status."""
        if self.is_successful:
            return DeliveryStatus.SUCCESS
        if self.aborted:
            return DeliveryStatus.ABORTED
        if self.attempts and self.attempts[-1].outcome is DeliveryOutcome.TERMINAL:
            return DeliveryStatus.ABANDONED
        return DeliveryStatus.FAILED

    @property
    def total_duration_ms(self) -> float:
        """Wall time from first attempt to completion."""
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.created_at) * 1000


@dataclass(frozen=True)
class DeliveryRecord:
    """Audit entry summarizing the final outcome of one delivery."""

    subscription_id: str
    event_kind: EventKind
    status_code: int
    success: bool
    payload: str
    error: Optional[str] = None
    attempts: int = 0
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_result(
        cls, result: DeliveryResult, event_kind: EventKind, payload: bytes
    ) -> "DeliveryRecord":
        """Summarize a delivery result for the audit log."""
        return cls(
            subscription_id=result.subscription_id,
            event_kind=event_kind,
            status_code=result.status_code,
            success=result.is_successful,
            error=result.error,
            payload=payload.decode("utf-8", errors="replace"),
            attempts=result.attempt_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "subscription_id": self.subscription_id,
            "event": self.event_kind.value,
            "status_code": self.status_code,
            "success": self.success,
            "error": self.error,
            "payload": self.payload,
            "attempts": self.attempts,
            "timestamp": format_timestamp(self.timestamp),
        }


class DeliveryClient:
    """
    HTTP client performing single webhook delivery attempts.

    Owns one aiohttp session, created on first use, with a fixed
    per-request timeout.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def post(
        self,
        url: str,
        payload: bytes,
        headers: Dict[str, str],
        attempt_number: int = 1,
    ) -> DeliveryAttempt:
        """
        POST a payload once and classify the outcome.

        Never raises for delivery failures; transport errors and
        unexpected exceptions are captured on the returned attempt.
        """
        attempt_start = time.time()

        try:
            session = self._get_session()
            async with session.post(url, data=payload, headers=headers) as response:
                body = await response.read()
                response_time_ms = (time.time() - attempt_start) * 1000
                outcome = classify_status(response.status)

                return DeliveryAttempt(
                    attempt_number=attempt_number,
                    timestamp=attempt_start,
                    outcome=outcome,
                    status_code=response.status,
                    response_time_ms=response_time_ms,
                    error=None
                    if outcome is DeliveryOutcome.SUCCESS
                    else f"non-2xx status: {response.status}",
                    response_body=body[:1000].decode("utf-8", errors="replace"),
                )

        except asyncio.TimeoutError:
            return DeliveryAttempt(
                attempt_number=attempt_number,
                timestamp=attempt_start,
                outcome=DeliveryOutcome.RETRYABLE,
                response_time_ms=(time.time() - attempt_start) * 1000,
                error="Request timeout",
            )

        except aiohttp.ClientError as e:
            return DeliveryAttempt(
                attempt_number=attempt_number,
                timestamp=attempt_start,
                outcome=DeliveryOutcome.RETRYABLE,
                response_time_ms=(time.time() - attempt_start) * 1000,
                error=str(e) or type(e).__name__,
            )

        except Exception as e:
            logger.error(
                "Unexpected webhook delivery error",
                url=url,
                attempt=attempt_number,
                error=str(e),
                exc_info=True,
            )
            return DeliveryAttempt(
                attempt_number=attempt_number,
                timestamp=attempt_start,
                outcome=DeliveryOutcome.TERMINAL,
                response_time_ms=(time.time() - attempt_start) * 1000,
                error=f"Unexpected error: {e}",
            )


class RetryPolicy:
    """
    Exponential backoff retry policy for webhook delivery.

    Retries transport errors and 5xx responses, stops on success or
    any other status. The backoff doubles after every retryable attempt
    up to the configured maximum, without jitter.
    """

    def __init__(
        self,
        max_retries: int = 5,
        initial_backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 10.0,
    ):
        self.max_retries = max_retries
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds

    @property
    def max_attempts(self) -> int:
        """Initial attempt plus retries."""
        return self.max_retries + 1

    def backoff_schedule(self) -> List[float]:
        """Delays slept between consecutive attempts of a failing delivery."""
        delays = []
        backoff = min(self.initial_backoff_seconds, self.max_backoff_seconds)
        for _ in range(self.max_retries):
            delays.append(backoff)
            backoff = min(backoff * 2, self.max_backoff_seconds)
        return delays

    async def deliver(
        self,
        client: DeliveryClient,
        subscription_id: str,
        url: str,
        payload: bytes,
        headers: Dict[str, str],
        stop_event: Optional[asyncio.Event] = None,
    ) -> DeliveryResult:
        """
        Deliver a payload, retrying per policy.

        Args:
            client: Client performing single attempts
            subscription_id: Subscription being delivered to
            url: Target webhook URL
            payload: Rendered payload bytes
            headers: Assembled request headers
            stop_event: When set, pending backoff sleeps end and no
                further attempts are made

        Returns:
            Delivery result with attempt history
        """
        result = DeliveryResult(subscription_id=subscription_id, url=url)
        schedule = self.backoff_schedule()

        for attempt_number in range(1, self.max_attempts + 1):
            attempt = await client.post(url, payload, headers, attempt_number=attempt_number)
            result.attempts.append(attempt)

            if attempt.outcome is DeliveryOutcome.SUCCESS:
                logger.debug(
                    "Webhook delivery successful",
                    subscription_id=subscription_id,
                    attempt=attempt_number,
                    status_code=attempt.status_code,
                    response_time_ms=attempt.response_time_ms,
                )
                break

            if attempt.outcome is DeliveryOutcome.TERMINAL:
                logger.warning(
                    "Abandoning webhook delivery",
                    subscription_id=subscription_id,
                    attempt=attempt_number,
                    status_code=attempt.status_code,
                    error=attempt.error,
                )
                break

            if attempt_number == self.max_attempts:
                break

            attempt.backoff_seconds = schedule[attempt_number - 1]
            logger.warning(
                "Webhook delivery attempt failed, retrying",
                subscription_id=subscription_id,
                attempt=attempt_number,
                status_code=attempt.status_code,
                error=attempt.error,
                next_attempt_in_seconds=attempt.backoff_seconds,
            )

            if await self._sleep(attempt.backoff_seconds, stop_event):
                result.aborted = True
                logger.info(
                    "Webhook retries interrupted by shutdown",
                    subscription_id=subscription_id,
                    attempts=attempt_number,
                )
                break

        result.completed_at = time.time()
        return result

    @staticmethod
    async def _sleep(delay: float, stop_event: Optional[asyncio.Event]) -> bool:
        """Sleep for the backoff delay; return True if stopped early."""
        if stop_event is None:
            await asyncio.sleep(delay)
            return False

        if stop_event.is_set():
            return True

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
