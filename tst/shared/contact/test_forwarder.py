"""Tests for webhook forwarding: outcome classification and background retries."""

import asyncio
import time

import httpx

from gateway.shared.contact.forwarder import (
    DetachedTaskRunner,
    ForwardFailureKind,
    WEBHOOK_HEADERS,
    WebhookForwarder,
)

PAYLOAD = {"phone": "+1 (555) 123-4567", "name": "Jane", "timestamp": "2024-01-01T00:00:00.000Z", "ip": "203.0.113.7"}


def test_successful_delivery_posts_json(make_spy, make_forwarder, runner):
    spy = make_spy()
    forwarder = make_forwarder(spy)

    result = asyncio.run(forwarder.forward(PAYLOAD))

    assert result.delivered
    assert result.status == 200
    assert result.to_error_info() is None
    assert runner.spawned == []
    assert spy.payloads == [PAYLOAD]
    request = spy.requests[0]
    assert request.method == "POST"
    assert str(request.url) == forwarder.url
    for name, value in WEBHOOK_HEADERS.items():
        assert request.headers[name] == value


def test_not_found_is_classified_and_retried(make_spy, make_forwarder, runner):
    spy = make_spy(lambda request: httpx.Response(404, text="webhook not registered"))
    result = asyncio.run(make_forwarder(spy).forward(PAYLOAD))

    assert not result.delivered
    assert result.kind == ForwardFailureKind.NOT_FOUND
    assert result.status == 404
    assert result.details == "Workflow may not be activated"
    assert result.retry_scheduled
    assert runner.spawned == ["webhook-retry"]


def test_non_success_status_is_classified_and_retried(make_spy, make_forwarder, runner):
    spy = make_spy(lambda request: httpx.Response(502, text="bad gateway"))
    result = asyncio.run(make_forwarder(spy).forward(PAYLOAD))

    assert result.kind == ForwardFailureKind.NON_SUCCESS_STATUS
    assert result.status == 502
    assert result.details == "bad gateway"
    assert runner.spawned == ["webhook-retry"]


def test_unreachable_is_classified_and_retried(make_spy, make_forwarder, runner, connect_error):
    result = asyncio.run(make_forwarder(make_spy(connect_error)).forward(PAYLOAD))

    assert result.kind == ForwardFailureKind.UNREACHABLE
    assert result.error == "No response from webhook"
    assert runner.spawned == ["webhook-retry"]


def test_connect_timeout_counts_as_unreachable(make_spy, make_forwarder, runner):
    def connect_timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    result = asyncio.run(make_forwarder(make_spy(connect_timeout)).forward(PAYLOAD))

    assert result.kind == ForwardFailureKind.UNREACHABLE
    assert runner.spawned == ["webhook-retry"]


def test_read_timeout_is_inconclusive_and_not_retried(make_spy, make_forwarder, runner):
    def read_timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = asyncio.run(make_forwarder(make_spy(read_timeout)).forward(PAYLOAD))

    assert result.kind == ForwardFailureKind.INCONCLUSIVE
    assert not result.retry_scheduled
    assert runner.spawned == []


def test_unexpected_error_is_unknown(make_spy, make_forwarder, runner):
    def explode(request):
        raise RuntimeError("boom")

    result = asyncio.run(make_forwarder(make_spy(explode)).forward(PAYLOAD))

    assert result.kind == ForwardFailureKind.UNKNOWN
    assert result.error == "boom"
    assert runner.spawned == ["webhook-retry"]


def test_missing_url_fails_fast_without_network(make_spy, make_forwarder, runner):
    spy = make_spy()
    forwarder = make_forwarder(spy, url="   ")

    result = asyncio.run(forwarder.forward(PAYLOAD))

    assert not forwarder.configured
    assert result.kind == ForwardFailureKind.NOT_CONFIGURED
    assert spy.requests == []
    assert runner.spawned == []
    assert result.to_error_info().kind == "not_configured"


def test_background_mode_spawns_delivery(make_spy, make_forwarder, runner):
    spy = make_spy()

    async def go():
        return make_forwarder(spy).forward_in_background(PAYLOAD)

    result = asyncio.run(go())

    assert result.queued
    assert result.to_error_info() is None
    assert runner.spawned == ["webhook-forward"]


def test_retry_runs_detached_and_delivers(make_spy, make_forwarder):
    outcomes = iter([httpx.Response(500), httpx.Response(200)])
    spy = make_spy(lambda request: next(outcomes))
    task_runner = DetachedTaskRunner()
    forwarder = make_forwarder(spy, runner=task_runner)

    async def go():
        result = await forwarder.forward(PAYLOAD)
        # forward() returned before the retry finished
        assert task_runner.pending == 1
        for _ in range(200):
            if task_runner.pending == 0:
                break
            await asyncio.sleep(0.01)
        return result

    result = asyncio.run(go())

    assert result.kind == ForwardFailureKind.NON_SUCCESS_STATUS
    assert task_runner.pending == 0
    assert spy.payloads == [PAYLOAD, PAYLOAD]


def test_failed_retry_does_not_raise(make_spy, make_forwarder, connect_error):
    spy = make_spy(connect_error)
    task_runner = DetachedTaskRunner()
    forwarder = make_forwarder(spy, runner=task_runner)

    async def go():
        await forwarder.forward(PAYLOAD)
        tasks = list(task_runner._tasks)
        await asyncio.gather(*tasks)
        return tasks

    tasks = asyncio.run(go())

    assert len(spy.requests) == 2
    assert all(task.exception() is None for task in tasks)


def test_slow_webhook_is_cut_off_at_the_deadline(make_slow_webhook, runner):
    slow = make_slow_webhook(delay=2.0)
    forwarder = WebhookForwarder(
        "https://automation.example.com/webhook/contact", timeout=0.2, runner=runner, transport=slow
    )

    started = time.monotonic()
    result = asyncio.run(forwarder.forward(PAYLOAD))
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert result.kind == ForwardFailureKind.INCONCLUSIVE
    assert result.error == "Webhook request timed out after 0.2s"
    assert not result.retry_scheduled
    assert runner.spawned == []
    assert slow.completed == 0


def test_trickling_response_does_not_outlive_the_deadline(runner):
    """Each chunk arrives within the read timeout; the whole response does not."""
    head = b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\nContent-Length: 2\r\n\r\n{}"

    async def trickle(reader, writer):
        try:
            await reader.readuntil(b"\r\n\r\n")
            for byte in head:
                writer.write(bytes([byte]))
                await writer.drain()
                await asyncio.sleep(0.05)
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def go():
        server = await asyncio.start_server(trickle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        forwarder = WebhookForwarder(
            f"http://127.0.0.1:{port}/webhook/contact",
            runner=runner,
            # Explicit transport so proxy environment variables are ignored
            transport=httpx.AsyncHTTPTransport(),
        )
        started = time.monotonic()
        result = await forwarder.deliver(PAYLOAD, 0.5)
        elapsed = time.monotonic() - started
        server.close()
        return result, elapsed

    result, elapsed = asyncio.run(go())

    assert elapsed < 2.0
    assert result.kind == ForwardFailureKind.INCONCLUSIVE


def test_drain_waits_for_background_delivery(make_slow_webhook):
    slow = make_slow_webhook(delay=0.2)
    task_runner = DetachedTaskRunner()
    forwarder = WebhookForwarder("https://automation.example.com/webhook/contact", runner=task_runner, transport=slow)

    async def go():
        result = forwarder.forward_in_background(PAYLOAD)
        assert slow.completed == 0
        still_running = await task_runner.drain(5.0)
        return result, still_running

    result, still_running = asyncio.run(go())

    assert result.queued
    assert still_running == 0
    assert slow.completed == 1
    assert task_runner.pending == 0


def test_drain_gives_up_after_timeout(make_slow_webhook):
    slow = make_slow_webhook(delay=5.0)
    task_runner = DetachedTaskRunner()
    forwarder = WebhookForwarder(
        "https://automation.example.com/webhook/contact", timeout=10.0, runner=task_runner, transport=slow
    )

    async def go():
        forwarder.forward_in_background(PAYLOAD)
        return await task_runner.drain(0.1)

    started = time.monotonic()
    still_running = asyncio.run(go())

    assert time.monotonic() - started < 2.0
    assert still_running == 1
    assert slow.completed == 0


def test_drain_without_tasks_returns_immediately():
    assert asyncio.run(DetachedTaskRunner().drain(5.0)) == 0
