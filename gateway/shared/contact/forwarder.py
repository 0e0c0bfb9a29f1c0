"""
Webhook forwarding for accepted contact submissions.

Delivery is best effort. A synchronous attempt is bounded by a timeout and its
outcome is classified; definite failures get one detached retry whose result
only ever reaches the logs. Timeouts are not retried: the first request may
still complete on the receiving side.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Coroutine, Dict, Optional, Set

import httpx

from gateway.shared.contact.schemas import WebhookErrorInfo


WEBHOOK_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class ForwardFailureKind(str, Enum):
    NOT_CONFIGURED = "not_configured"
    UNREACHABLE = "unreachable"
    NOT_FOUND = "not_found"
    INCONCLUSIVE = "inconclusive"
    NON_SUCCESS_STATUS = "non_success_status"
    UNKNOWN = "unknown"


@dataclass
class ForwardResult:
    """Outcome of one delivery attempt."""
    delivered: bool
    kind: Optional[ForwardFailureKind] = None
    status: Optional[int] = None
    error: Optional[str] = None
    details: Optional[str] = None
    retry_scheduled: bool = False
    queued: bool = False

    @property
    def retryable(self) -> bool:
        if self.delivered:
            return False
        return self.kind not in (ForwardFailureKind.INCONCLUSIVE, ForwardFailureKind.NOT_CONFIGURED)

    def to_error_info(self) -> Optional[WebhookErrorInfo]:
        if self.delivered or self.kind is None:
            return None
        return WebhookErrorInfo(
            kind=self.kind.value,
            error=self.error or "Webhook request failed",
            details=self.details,
            status=self.status,
        )


def not_configured() -> ForwardResult:
    return ForwardResult(
        delivered=False,
        kind=ForwardFailureKind.NOT_CONFIGURED,
        error="WEBHOOK_URL environment variable not set",
        details="Add WEBHOOK_URL to your .env file or deployment environment",
    )


class DetachedTaskRunner:
    """
    Spawns fire-and-forget tasks on the running event loop.

    Only keeps a reference to each task until it finishes so the loop does not
    garbage-collect it mid-flight. The request path never awaits these tasks;
    only an adapter whose event loop is about to close calls `drain`.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float) -> int:
        """Wait up to `timeout` seconds for this loop's tasks. Returns how many are still running."""
        loop = asyncio.get_running_loop()
        tasks = [task for task in self._tasks if task.get_loop() is loop]
        if not tasks:
            return 0
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        return len(still_running)


class WebhookForwarder:
    """Posts sanitized submissions to the configured automation webhook."""

    def __init__(
        self,
        url: Optional[str],
        timeout: float = 10.0,
        retry_timeout: float = 30.0,
        runner: Optional[DetachedTaskRunner] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.strip() if url else None
        self.timeout = timeout
        self.retry_timeout = retry_timeout
        self.runner = runner or DetachedTaskRunner()
        # Injected in tests; real deployments use httpx's default transport
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def deliver(self, payload: Dict[str, Any], timeout: float) -> ForwardResult:
        """Make a single POST attempt and classify the outcome. Never raises."""
        if not self.configured:
            return not_configured()

        try:
            # A fresh client per attempt: the serverless adapter runs each
            # invocation on its own event loop.
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=timeout,
                follow_redirects=True,
                max_redirects=5,
            ) as client:
                # httpx timeouts apply per connect/read/write step; this bounds the whole call
                response = await asyncio.wait_for(
                    client.post(self.url, json=payload, headers=WEBHOOK_HEADERS),
                    timeout,
                )
        except httpx.ConnectTimeout as e:
            logging.error(f"Webhook unreachable (connect timeout): {self.url}: {e}")
            return ForwardResult(
                delivered=False,
                kind=ForwardFailureKind.UNREACHABLE,
                error="No response from webhook",
                details="Connection timed out. Check webhook URL accessibility",
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logging.info("Webhook request taking longer than expected, it may still complete on the receiving side")
            return ForwardResult(
                delivered=False,
                kind=ForwardFailureKind.INCONCLUSIVE,
                error=f"Webhook request timed out after {timeout:g}s",
                details="Delivery may still complete; not retried",
            )
        except httpx.ConnectError as e:
            logging.error(f"Webhook unreachable: {self.url}: {e}")
            return ForwardResult(
                delivered=False,
                kind=ForwardFailureKind.UNREACHABLE,
                error="No response from webhook",
                details="Check webhook URL accessibility",
            )
        except Exception as e:
            logging.error(f"Unexpected error forwarding to webhook {self.url}: {str(e)}", exc_info=True)
            return ForwardResult(
                delivered=False,
                kind=ForwardFailureKind.UNKNOWN,
                error=str(e) or type(e).__name__,
            )

        return self._classify_response(response)

    def _classify_response(self, response: httpx.Response) -> ForwardResult:
        status = response.status_code
        if 200 <= status < 300:
            logging.info(f"Successfully forwarded to webhook (status {status})")
            return ForwardResult(delivered=True, status=status)

        if status == 404:
            logging.error(
                f"Webhook returned 404 for {self.url}. The automation workflow is probably not "
                "activated, or the webhook path has changed"
            )
            return ForwardResult(
                delivered=False,
                kind=ForwardFailureKind.NOT_FOUND,
                status=404,
                error="Request failed with status code 404",
                details="Workflow may not be activated",
            )

        logging.error(f"Webhook returned non-2xx status: {status}")
        return ForwardResult(
            delivered=False,
            kind=ForwardFailureKind.NON_SUCCESS_STATUS,
            status=status,
            error=f"Request failed with status code {status}",
            details=_response_excerpt(response),
        )

    async def forward(self, payload: Dict[str, Any]) -> ForwardResult:
        """Deliver synchronously within the timeout; schedule one retry on definite failure."""
        if not self.configured:
            logging.warning("WEBHOOK_URL not configured. Set it in your .env file or environment variables.")
            return not_configured()

        logging.info(f"Forwarding contact submission to webhook: {self.url}")
        result = await self.deliver(payload, self.timeout)
        if result.retryable:
            self.schedule_retry(payload)
            result.retry_scheduled = True
        return result

    def forward_in_background(self, payload: Dict[str, Any]) -> ForwardResult:
        """Fire-and-forget delivery. The outcome is only visible in the logs."""
        if not self.configured:
            logging.warning("WEBHOOK_URL not configured. Set it in your .env file or environment variables.")
            return not_configured()

        logging.info(f"Forwarding contact submission to webhook in background: {self.url}")
        self.runner.spawn(self._background_attempt(payload), name="webhook-forward")
        return ForwardResult(delivered=False, queued=True)

    def schedule_retry(self, payload: Dict[str, Any]) -> None:
        logging.info("Scheduling background webhook retry")
        self.runner.spawn(self._retry(payload), name="webhook-retry")

    async def _background_attempt(self, payload: Dict[str, Any]) -> None:
        try:
            result = await self.deliver(payload, self.timeout)
            if result.retryable:
                await self._retry(payload)
        except asyncio.CancelledError:
            logging.warning("Background webhook delivery cancelled before completion")
            raise

    async def _retry(self, payload: Dict[str, Any]) -> None:
        try:
            result = await self.deliver(payload, self.retry_timeout)
        except asyncio.CancelledError:
            logging.warning("Background webhook retry cancelled before completion")
            raise
        if result.delivered:
            logging.info("Background webhook retry successful")
        else:
            logging.error(f"Background webhook retry failed ({result.kind.value}): {result.error}")


def _response_excerpt(response: httpx.Response, limit: int = 500) -> str:
    text = response.text or ""
    if not text:
        return f"HTTP {response.status_code} {response.reason_phrase or ''}".strip()
    return text[:limit]
