"""
SmsGateway -- thin HTTP client for the external SMS endpoint.

Responsibility:
    POSTs ``{phone, message, api_key}`` as JSON to the configured endpoint
    and classifies the response as delivered or failed.  Nothing about the
    response body is used beyond that classification.

Architecture position:
    Kernel > Services -- adapter for the SMS transport collaborator.  Only
    NotificationDispatcher calls it.

Failure modes:
    - NotificationFailedError(reason=...) for: a non-2xx status, a timeout,
      a connection error, or a non-empty body that is not JSON.
    - 408, 429, 5xx, timeouts and connection errors are retried up to
      max_attempts with backoff (delivery is at-least-once); other 4xx are
      not retried.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

import requests

from impound_kernel.domain.contacts import join_destinations
from impound_kernel.domain.retry_policy import RetryPolicy
from impound_kernel.exceptions import NotificationFailedError
from impound_kernel.logging_config import get_logger

logger = get_logger("services.sms_gateway")


class SmsTransport(Protocol):
    """Anything that can deliver one message to a set of destinations."""

    def send(self, destinations: Sequence[str], message: str) -> None:
        """Raise NotificationFailedError unless delivery was accepted."""
        ...


@dataclass
class SmsGateway:
    """requests-based SmsTransport for a JSON SMS endpoint."""

    endpoint: str
    api_key: str = ""
    timeout_seconds: float = 10.0
    retry_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=2, base_delay_seconds=0.5)
    )
    session: requests.Session | None = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if not self.endpoint:
            raise ValueError("SMS endpoint is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._session = self.session or requests.Session()

    @property
    def max_blocking_seconds(self) -> float:
        """Longest send() can block: every attempt times out, plus backoff."""
        return (
            self.retry_policy.max_attempts * self.timeout_seconds
            + self.retry_policy.max_total_delay()
        )

    def send(self, destinations: Sequence[str], message: str) -> None:
        if not destinations:
            raise NotificationFailedError("no destinations")

        payload = {
            "phone": join_destinations(list(destinations)),
            "message": message,
            "api_key": self.api_key,
        }
        max_attempts = self.retry_policy.max_attempts
        last_error = "unknown"
        status_code: int | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self._session.post(
                    self.endpoint,
                    json=payload,
                    timeout=self.timeout_seconds,
                )
            except requests.Timeout:
                last_error = "timeout"
                status_code = None
                retryable = True
            except requests.RequestException as exc:
                last_error = str(exc)[:256]
                status_code = None
                retryable = True
            else:
                status_code = response.status_code
                if 200 <= response.status_code < 300:
                    self._check_body(response)
                    logger.info(
                        "sms_sent",
                        extra={"destinations": len(destinations), "attempt": attempt},
                    )
                    return
                retryable = response.status_code in {408, 429} or response.status_code >= 500
                last_error = f"http_{response.status_code}: {_response_text(response) or 'Unknown error'}"

            logger.warning(
                "sms_attempt_failed",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error": last_error,
                    "retryable": retryable,
                },
            )
            if not retryable or attempt >= max_attempts:
                break
            self.sleep(self.retry_policy.delay(attempt))

        raise NotificationFailedError(last_error, status_code=status_code)

    @staticmethod
    def _check_body(response: Any) -> None:
        if not _response_text(response):
            return
        try:
            response.json()
        except ValueError as exc:
            raise NotificationFailedError(
                f"malformed response: {exc}", status_code=response.status_code
            ) from exc


def _response_text(response: Any) -> str:
    value = getattr(response, "text", "")
    return str(value or "").strip()[:256]
