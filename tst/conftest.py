"""Shared fixtures for the contact gateway test suite."""

import asyncio
import json
from typing import Callable, List, Optional

import httpx
import pytest

from gateway.shared.contact.config import ContactSettings
from gateway.shared.contact.forwarder import WebhookForwarder
from gateway.shared.contact.rate_limit import RateLimiter

WEBHOOK_URL = "https://automation.example.com/webhook/contact"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingRunner:
    """Stands in for DetachedTaskRunner: records what was spawned, never runs it."""

    def __init__(self):
        self.spawned: List[str] = []

    def spawn(self, coro, name: Optional[str] = None):
        self.spawned.append(name)
        # Close the coroutine so it is not reported as never awaited
        coro.close()
        return None

    @property
    def pending(self) -> int:
        return 0

    async def drain(self, timeout: float) -> int:
        return 0


class WebhookSpy:
    """httpx transport handler that records calls and replies with a canned outcome."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self._responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def payloads(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class SlowWebhook(httpx.AsyncBaseTransport):
    """Async transport that takes `delay` seconds of real loop time to answer each request."""

    def __init__(self, delay: float, statuses: Optional[List[int]] = None):
        self.delay = delay
        self._statuses = list(statuses or [200])
        self.requests: List[httpx.Request] = []
        self.completed = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        await asyncio.sleep(self.delay)
        self.completed += 1
        return httpx.Response(status, json={"ok": status < 300})


def raise_connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def webhook():
    return WebhookSpy()


@pytest.fixture
def make_settings():
    def _make(**overrides) -> ContactSettings:
        values = {"webhook_url": WEBHOOK_URL, "environment": "development"}
        values.update(overrides)
        return ContactSettings(**values)
    return _make


@pytest.fixture
def make_forwarder(runner):
    def _make(spy: WebhookSpy, url: Optional[str] = WEBHOOK_URL, **kwargs) -> WebhookForwarder:
        return WebhookForwarder(url, runner=kwargs.pop("runner", runner), transport=spy.transport, **kwargs)
    return _make


@pytest.fixture
def make_spy():
    return WebhookSpy


@pytest.fixture
def make_slow_webhook():
    return SlowWebhook


@pytest.fixture
def connect_error():
    return raise_connect_error
