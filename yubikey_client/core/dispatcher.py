"""Concurrent fan-out of verify requests to the validation hosts.

Every request in a batch is started at once; responses are collected in
the order they complete. A host that errors, answers with a non-2xx
status or misses the per-request deadline simply contributes no response.
The number of such failures is reported on the returned batch.
"""

from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from yubikey_client.core.messages import (
    RequestBatch,
    ResponseBatch,
    ValidationRequest,
    ValidationResponse,
)
from yubikey_client.metrics import HOST_LATENCY, RESPONSES_RECEIVED

log = structlog.get_logger()

DEFAULT_TIMEOUT = 10.0


class Dispatcher:
    """Sends a batch of verify requests over a shared HTTP client."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float | None = DEFAULT_TIMEOUT) -> None:
        self._client = http_client
        self._timeout = timeout

    async def dispatch(self, batch: RequestBatch) -> ResponseBatch:
        """Send every request and return the responses in completion order."""
        responses = ResponseBatch()
        if not len(batch):
            return responses

        start = time.perf_counter()
        tasks = [asyncio.ensure_future(self._fetch(request, start)) for request in batch]
        try:
            for completed in asyncio.as_completed(tasks):
                response = await completed
                if response is None:
                    responses.transport_failures += 1
                    RESPONSES_RECEIVED.labels(outcome="transport_failure").inc()
                    continue
                responses.append(response)
        finally:
            # no request may outlive the call
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        log.debug(
            "dispatch_complete",
            requested=len(batch),
            received=len(responses),
            transport_failures=responses.transport_failures,
            elapsed_s=round(time.perf_counter() - start, 3),
        )
        return responses

    async def _fetch(self, request: ValidationRequest, start: float) -> ValidationResponse | None:
        try:
            if self._timeout is None:
                resp = await self._client.request(request.method, request.url)
            else:
                resp = await asyncio.wait_for(
                    self._client.request(request.method, request.url, timeout=self._timeout),
                    timeout=self._timeout,
                )
        except asyncio.TimeoutError:
            log.debug("validation_host_timeout", url=_redact(request.url), timeout_s=self._timeout)
            return None
        except httpx.HTTPError as e:
            log.debug("validation_host_unreachable", url=_redact(request.url), err=str(e))
            return None

        latency = time.perf_counter() - start
        host = resp.url.host
        if not resp.is_success:
            log.debug("validation_host_error", host=host, status=resp.status_code, latency_s=round(latency, 3))
            return None

        HOST_LATENCY.labels(host=host).observe(latency)
        return ValidationResponse.from_body(resp.text, host=host, latency=latency)


def _redact(url: str) -> str:
    """Drop the query string (it carries the OTP) for logging."""
    return url.split("?", 1)[0]
