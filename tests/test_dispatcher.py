"""Tests for concurrent dispatch of verify requests."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from yubikey_client.core.dispatcher import Dispatcher
from yubikey_client.core.messages import ProtocolStatus, RequestBatch, ValidationRequest

DELAYS = {"slow.example": 0.15, "medium.example": 0.08, "fast.example": 0.0}


def _batch(*hosts: str) -> RequestBatch:
    return RequestBatch(ValidationRequest(f"https://{h}/wsapi/2.0/verify?otp=x") for h in hosts)


def _dispatcher(handler, timeout: float | None = 5.0) -> Dispatcher:
    return Dispatcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)), timeout=timeout)


async def _delayed_handler(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(DELAYS.get(request.url.host, 0.0))
    return httpx.Response(200, text=f"status=OK\nnonce={request.url.host}")


@pytest.mark.asyncio
async def test_responses_in_completion_order() -> None:
    d = _dispatcher(_delayed_handler)
    responses = await d.dispatch(_batch("slow.example", "medium.example", "fast.example"))
    assert responses.hosts == ["fast.example", "medium.example", "slow.example"]
    assert responses.transport_failures == 0


@pytest.mark.asyncio
async def test_requests_run_concurrently() -> None:
    d = _dispatcher(_delayed_handler)
    loop = asyncio.get_running_loop()
    start = loop.time()
    await d.dispatch(_batch("slow.example", "slow.example", "slow.example"))
    # Three 150ms requests in parallel finish well before 450ms
    assert loop.time() - start < 0.4


@pytest.mark.asyncio
async def test_body_parsed_and_stamped() -> None:
    d = _dispatcher(_delayed_handler)
    responses = await d.dispatch(_batch("medium.example"))
    r = responses[0]
    assert r.status == ProtocolStatus.OK
    assert r.nonce == "medium.example"
    assert r.host == "medium.example"
    assert r.latency is not None and r.latency >= 0.07


@pytest.mark.asyncio
async def test_latency_measured_from_dispatch_start() -> None:
    d = _dispatcher(_delayed_handler)
    responses = await d.dispatch(_batch("fast.example", "slow.example"))
    latencies = {r.host: r.latency for r in responses}
    assert latencies["fast.example"] < latencies["slow.example"]


@pytest.mark.asyncio
async def test_transport_failure_dropped_and_counted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.example":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="status=OK")

    d = _dispatcher(handler)
    responses = await d.dispatch(_batch("up.example", "down.example", "up2.example"))
    assert sorted(responses.hosts) == ["up.example", "up2.example"]
    assert responses.transport_failures == 1


@pytest.mark.asyncio
async def test_non_2xx_dropped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "broken.example":
            return httpx.Response(503, text="status=BACKEND_ERROR")
        return httpx.Response(200, text="status=OK")

    d = _dispatcher(handler)
    responses = await d.dispatch(_batch("broken.example", "ok.example"))
    assert responses.hosts == ["ok.example"]
    assert responses.transport_failures == 1


@pytest.mark.asyncio
async def test_deadline_expiry_is_a_transport_failure() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "hung.example":
            await asyncio.sleep(5)
        return httpx.Response(200, text="status=OK")

    d = _dispatcher(handler, timeout=0.05)
    responses = await d.dispatch(_batch("hung.example", "ok.example"))
    assert responses.hosts == ["ok.example"]
    assert responses.transport_failures == 1


@pytest.mark.asyncio
async def test_all_failed_returns_empty_batch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    d = _dispatcher(handler)
    responses = await d.dispatch(_batch("a.example", "b.example"))
    assert len(responses) == 0
    assert responses.transport_failures == 2


@pytest.mark.asyncio
async def test_empty_batch() -> None:
    d = _dispatcher(_delayed_handler)
    responses = await d.dispatch(RequestBatch())
    assert len(responses) == 0
    assert responses.transport_failures == 0


@pytest.mark.asyncio
async def test_no_deadline() -> None:
    d = _dispatcher(_delayed_handler, timeout=None)
    responses = await d.dispatch(_batch("fast.example"))
    assert responses.hosts == ["fast.example"]


@pytest.mark.asyncio
async def test_duplicate_hosts_kept() -> None:
    d = _dispatcher(_delayed_handler)
    responses = await d.dispatch(_batch("fast.example", "fast.example"))
    assert responses.hosts == ["fast.example", "fast.example"]


class _Tracker:
    """Handler whose ``slow.example`` requests hang until cancelled."""

    def __init__(self, slow: int) -> None:
        self.slow = slow
        self.waiting = 0
        self.cancelled = 0
        self.all_started = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "broken.example":
            await self.all_started.wait()
            raise RuntimeError("handler bug")
        self.waiting += 1
        if self.waiting == self.slow:
            self.all_started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return httpx.Response(200, text="status=OK")


@pytest.mark.asyncio
async def test_unexpected_error_cancels_pending_requests() -> None:
    tracker = _Tracker(slow=2)
    d = _dispatcher(tracker, timeout=None)
    with pytest.raises(RuntimeError, match="handler bug"):
        await d.dispatch(_batch("slow.example", "broken.example", "slow.example"))
    assert tracker.cancelled == 2


@pytest.mark.asyncio
async def test_cancelled_dispatch_cancels_pending_requests() -> None:
    tracker = _Tracker(slow=2)
    d = _dispatcher(tracker, timeout=None)
    task = asyncio.ensure_future(d.dispatch(_batch("slow.example", "slow.example")))
    await tracker.all_started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert tracker.cancelled == 2
