from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from slidecast.models.api import WebhookPayload
from slidecast.pipeline.retry import RetryPolicy


class WebhookDeliveryError(Exception):
    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


def _retryable(exc: BaseException) -> bool:
    return isinstance(exc, WebhookDeliveryError) and exc.retryable


class WebhookNotifier:
    def __init__(
        self,
        timeout: float = 10.0,
        retries: int = 2,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout = timeout
        self.policy = RetryPolicy.linear(retries, backoff_seconds, retryable=_retryable)
        self._transport = transport
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    async def notify(self, url: str, payload: WebhookPayload) -> bool:
        """POST the payload; returns whether it was delivered. Never raises."""
        body = payload.model_dump(mode="json", exclude_none=True)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                await self.policy.call(lambda: self._post(client, url, body), label="webhook", sleep=self._sleep)
        except WebhookDeliveryError as exc:
            self.log.warning(
                "webhook delivery failed",
                extra={"job_id": payload.job_id, "webhook_url": url, "error": str(exc)},
            )
            return False
        self.log.info(
            "webhook delivered",
            extra={"job_id": payload.job_id, "success": payload.success},
        )
        return True

    async def _post(self, client: httpx.AsyncClient, url: str, body: dict) -> None:
        try:
            response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise WebhookDeliveryError(f"POST {url} failed: {exc}") from exc
        if response.status_code >= 500:
            raise WebhookDeliveryError(f"POST {url} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise WebhookDeliveryError(f"POST {url} returned HTTP {response.status_code}", retryable=False)
