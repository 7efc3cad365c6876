# app/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from ...config import settings

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class _CircuitState:
    fails: int = 0
    opened_at: float | None = None


# one breaker per host, so one dead source does not block pulls from the others
_CIRCUITS: dict[str, _CircuitState] = {}
_RATE_LOCK = asyncio.Lock()
_LAST_TS = 0.0


def _circuit(host: str) -> _CircuitState:
    return _CIRCUITS.setdefault(host, _CircuitState())


def _circuit_is_open(host: str, now: float) -> bool:
    c = _circuit(host)
    if c.opened_at is None:
        return False
    if (now - c.opened_at) < float(settings.HTTP_CIRCUIT_RESET_S):
        return True
    # half-open: let the next call through, one more failure re-opens
    c.opened_at = None
    c.fails = int(settings.HTTP_CIRCUIT_FAIL_THRESHOLD) - 1
    return False


def _circuit_on_success(host: str) -> None:
    c = _circuit(host)
    c.fails = 0
    c.opened_at = None


def _circuit_on_failure(host: str) -> None:
    c = _circuit(host)
    c.fails += 1
    if c.fails >= int(settings.HTTP_CIRCUIT_FAIL_THRESHOLD):
        c.opened_at = time.time()


def reset_http_state() -> None:
    """Forget breaker and limiter state (tests)."""
    global _LAST_TS
    _CIRCUITS.clear()
    _LAST_TS = 0.0


async def _rate_limit() -> None:
    """Very simple per-process limiter."""
    global _LAST_TS
    rps = float(settings.HTTP_RATE_LIMIT_RPS)
    if rps <= 0:
        return
    min_gap = 1.0 / rps
    async with _RATE_LOCK:
        now = time.time()
        wait = (_LAST_TS + min_gap) - now
        if wait > 0:
            await asyncio.sleep(wait)
        _LAST_TS = time.time()


async def resilient_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    host = httpx.URL(url).host
    if _circuit_is_open(host, time.time()):
        raise httpx.HTTPError(f"circuit_open: refusing external call to {url}")

    await _rate_limit()

    timeout = httpx.Timeout(float(settings.HTTP_TIMEOUT_S))
    max_retries = int(settings.HTTP_MAX_RETRIES)
    backoff = float(settings.HTTP_BACKOFF_BASE_S)

    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                resp = await client.request(method, url, headers=headers, params=params, json=json)

            if resp.status_code in _RETRYABLE_STATUS:
                raise httpx.HTTPStatusError("retryable_status", request=resp.request, response=resp)

            resp.raise_for_status()
            _circuit_on_success(host)
            return resp
        except httpx.HTTPStatusError as e:
            # 4xx other than 429 will not get better by asking again
            if e.response.status_code not in _RETRYABLE_STATUS:
                raise
            last_exc = e
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            last_exc = e

        _circuit_on_failure(host)
        if attempt >= max_retries:
            break
        await asyncio.sleep(min(5.0, backoff * (2**attempt)))

    assert last_exc is not None
    raise last_exc
