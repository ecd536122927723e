"""
Transactional email sender
==========================

Async wrapper around a SendGrid v3 compatible ``mail/send`` endpoint used
for proposal and contract emails.

All HTTP calls use httpx with retry logic (3 attempts, exponential backoff).
Sending is best-effort for the marketplace: callers log failures and move
on, they never fail a state transition because an email bounced.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.core.config import settings

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_INITIAL_BACKOFF_SECONDS = 0.5  # doubles each retry: 0.5, 1.0, 2.0
_REQUEST_TIMEOUT_SECONDS = 10.0


class EmailDeliveryError(Exception):
    """Raised when the email API rejects a message or stays unreachable."""

    def __init__(self, message: str, status_code: int | None = None, raw: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.raw = raw


def _build_payload(to_email: str, subject: str, html: str) -> dict[str, Any]:
    return {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": settings.email_from_address},
        "subject": subject,
        "content": [{"type": "text/html", "value": html}],
    }


class HttpMailer:
    """Sends email through the configured HTTP API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url or settings.email_api_url
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self._client = client

    async def send(self, to_email: str, subject: str, html: str) -> None:
        if not self.api_key:
            logger.warning("Email API key not configured; skipping email to %s", to_email)
            return

        payload = _build_payload(to_email, subject, html)
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._client is not None:
            await self._post_with_retry(self._client, payload, headers)
            return
        async with httpx.AsyncClient() as client:
            await self._post_with_retry(client, payload, headers)

    async def _post_with_retry(
        self,
        client: httpx.AsyncClient,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> None:
        """POST with exponential-backoff retry on 5xx, timeouts and
        connection errors.  4xx responses are surfaced immediately."""
        last_exception: Exception | None = None
        backoff = _INITIAL_BACKOFF_SECONDS

        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers=headers,
                    timeout=_REQUEST_TIMEOUT_SECONDS,
                )
                if 400 <= response.status_code < 500:
                    raise EmailDeliveryError(
                        f"Email API client error: HTTP {response.status_code}",
                        status_code=response.status_code,
                        raw=response.text,
                    )
                if response.status_code >= 500:
                    last_exception = EmailDeliveryError(
                        f"Email API server error: HTTP {response.status_code}",
                        status_code=response.status_code,
                        raw=response.text,
                    )
                    logger.warning(
                        "Email API server error on attempt %d/%d: HTTP %d",
                        attempt,
                        _MAX_RETRIES,
                        response.status_code,
                    )
                else:
                    logger.info("Email sent: to=%s", payload["personalizations"][0]["to"][0]["email"])
                    return
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exception = exc
                logger.warning(
                    "Email API transport error on attempt %d/%d: %s",
                    attempt,
                    _MAX_RETRIES,
                    exc,
                )

            if attempt < _MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise EmailDeliveryError(
            f"Email API request failed after {_MAX_RETRIES} attempts",
            raw=str(last_exception),
        )
