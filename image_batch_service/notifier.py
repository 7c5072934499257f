"""
Completion webhook.

Delivery is best effort: transport failures and retryable receiver answers
are retried with exponential backoff up to a fixed number of attempts, after
which the last `NotifyError` is raised for the caller to log. Nothing here
touches job state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import requests

from . import config
from .errors import NotifyError, NotifyErrorKind

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class WebhookNotifier:
    def __init__(
        self,
        url: Optional[str],
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff: float = 1.0,
        max_backoff: float = 20.0,
        session: Optional[requests.Session] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "WebhookNotifier":
        settings = settings or config.get_settings()
        return cls(
            settings.webhook_url,
            timeout=settings.webhook_timeout_seconds,
            max_attempts=settings.webhook_max_attempts,
            backoff=settings.webhook_backoff_seconds,
            max_backoff=settings.webhook_max_backoff_seconds,
        )

    async def notify(self, payload: Dict[str, Any]) -> bool:
        """
        POST `payload` to the webhook.

        Returns True once the receiver accepts it, False when no URL is
        configured. Raises `NotifyError` when every attempt failed or the
        receiver rejected the payload outright.
        """
        if not self.url:
            logger.info("webhook: no URL configured, skipping notification for %s", payload.get("requestId"))
            return False

        delay = self.backoff
        for attempt in range(1, self.max_attempts + 1):
            try:
                await asyncio.to_thread(self._post, payload)
                logger.info("webhook: delivered %s on attempt %d", payload.get("requestId"), attempt)
                return True
            except NotifyError as exc:
                if not exc.retryable or attempt == self.max_attempts:
                    logger.error(
                        "webhook: giving up on %s after %d attempt(s): %s",
                        payload.get("requestId"),
                        attempt,
                        exc.code,
                    )
                    raise
                logger.warning(
                    "webhook: attempt %d/%d for %s failed (%s), retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    payload.get("requestId"),
                    exc.code,
                    delay,
                )
            await self._sleep(delay)
            delay = min(delay * 2, self.max_backoff)
        return False  # pragma: no cover

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.Timeout as exc:
            raise NotifyError(NotifyErrorKind.TIMEOUT, f"Timed out posting to {self.url}") from exc
        except requests.RequestException as exc:
            raise NotifyError(NotifyErrorKind.UNREACHABLE, f"Could not reach {self.url}: {exc}") from exc
        if resp.status_code >= 400:
            raise NotifyError(
                NotifyErrorKind.REJECTED_BY_RECEIVER,
                f"{self.url} answered {resp.status_code}",
                status_code=resp.status_code,
            )
