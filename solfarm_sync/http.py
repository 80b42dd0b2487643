from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Mapping, Sequence
from urllib.parse import urlparse

import aiohttp

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw not in {None, ""} else float(default)
    except ValueError:
        return float(default)


class HTTPError(Exception):
    """Raised when an HTTP request returns a non-success status code."""


class HostCircuitOpenError(RuntimeError):
    """Raised when a host circuit breaker blocks new requests."""


# Maintain a session per event loop to avoid cross-loop usage errors.
_SESSIONS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aiohttp.ClientSession]" = (
    weakref.WeakKeyDictionary()
)

CONNECTOR_LIMIT = int(os.getenv("HTTP_CONNECTOR_LIMIT", "0") or 0)
CONNECTOR_LIMIT_PER_HOST = int(os.getenv("HTTP_CONNECTOR_LIMIT_PER_HOST", "0") or 0)


async def get_session() -> aiohttp.ClientSession:
    """Return an aiohttp session bound to the current event loop."""
    loop = asyncio.get_running_loop()
    sess = _SESSIONS.get(loop)
    if sess is None or sess.closed:
        ua = os.getenv("HTTP_USER_AGENT", "solfarm-sync/0.1")
        connector = aiohttp.TCPConnector(
            limit=CONNECTOR_LIMIT,
            limit_per_host=CONNECTOR_LIMIT_PER_HOST,
        )
        sess = aiohttp.ClientSession(
            headers={"User-Agent": ua},
            timeout=aiohttp.ClientTimeout(total=_env_float("HTTP_TIMEOUT_SEC", 15.0)),
            connector=connector,
        )
        _SESSIONS[loop] = sess
    return sess


async def close_session() -> None:
    """Close all known aiohttp sessions."""
    to_close = list(_SESSIONS.values())
    _SESSIONS.clear()
    for sess in to_close:
        if not sess.closed:
            await sess.close()


# ---------------------------------------------------------------------------
# Host-level concurrency guards and retry hints
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _HostConfig:
    host: str
    limit: int
    threshold: int
    cooldown: float
    max_attempts: int
    backoff: float


_HOST_RULES: tuple[_HostConfig, ...] = (
    _HostConfig("api.raydium.io", limit=4, threshold=3, cooldown=20.0, max_attempts=2, backoff=0.3),
    _HostConfig("api-v3.raydium.io", limit=4, threshold=3, cooldown=20.0, max_attempts=2, backoff=0.3),
    _HostConfig("api.mainnet-beta.solana.com", limit=4, threshold=3, cooldown=20.0, max_attempts=2, backoff=0.25),
    _HostConfig("mainnet.helius-rpc.com", limit=4, threshold=3, cooldown=20.0, max_attempts=2, backoff=0.25),
)


class _HostController:
    """Track concurrency and failures for a particular host."""

    __slots__ = ("config", "semaphore", "_failures", "_opened_until")

    def __init__(self, config: _HostConfig) -> None:
        self.config = config
        self.semaphore: asyncio.Semaphore = asyncio.Semaphore(max(1, config.limit))
        self._failures: list[float] = []
        self._opened_until: float = 0.0

    def allow(self) -> bool:
        now = time.monotonic()
        if self._opened_until and now < self._opened_until:
            return False
        if self._opened_until and now >= self._opened_until:
            self._opened_until = 0.0
            self._failures.clear()
        return True

    def record_success(self) -> None:
        self._failures.clear()
        self._opened_until = 0.0

    def record_failure(self) -> None:
        now = time.monotonic()
        self._failures.append(now)
        window_start = now - self.config.cooldown
        self._failures = [ts for ts in self._failures if ts >= window_start]
        if len(self._failures) >= self.config.threshold:
            self._opened_until = now + self.config.cooldown
            logger.warning(
                "HTTP circuit open for %s for %.1fs after repeated failures",
                self.config.host,
                self.config.cooldown,
            )


_HOST_CONTROLLERS: Dict[str, _HostController] = {}


def _match_host_config(host: str) -> _HostConfig:
    host = host.lower()
    for rule in _HOST_RULES:
        if host == rule.host or host.endswith("." + rule.host):
            return rule
    default_limit = CONNECTOR_LIMIT_PER_HOST or 4
    return _HostConfig(host, limit=max(1, default_limit), threshold=3, cooldown=30.0, max_attempts=2, backoff=0.3)


def _controller_for(host: str) -> _HostController:
    controller = _HOST_CONTROLLERS.get(host)
    if controller is None:
        controller = _HostController(_match_host_config(host))
        _HOST_CONTROLLERS[host] = controller
    return controller


def reset_host_controllers() -> None:
    """Forget per-host semaphores and breaker state."""

    _HOST_CONTROLLERS.clear()


@asynccontextmanager
async def host_request(url: str) -> AsyncIterator[_HostConfig]:
    """Context manager guarding a request to *url*'s host."""

    parsed = urlparse(url)
    host = parsed.hostname or parsed.netloc
    if not host:
        yield _match_host_config("unknown")
        return
    controller = _controller_for(host)
    if not controller.allow():
        raise HostCircuitOpenError(f"circuit open for host {host}")
    async with controller.semaphore:
        try:
            yield controller.config
        except Exception:
            controller.record_failure()
            raise
        else:
            controller.record_success()


def host_retry_config(url: str) -> tuple[int, float]:
    """Return ``(max_attempts, backoff)`` for *url*'s host."""

    host = urlparse(url).hostname or ""
    config = _match_host_config(host)
    return config.max_attempts, config.backoff


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

_RPC_IDS = itertools.count(1)


@dataclass(frozen=True)
class JsonRpcRequest:
    """Fully enumerated configuration for a single JSON-RPC call.

    ``timeout`` bounds each attempt; ``attempts``/``backoff`` default to the
    host rule when left as ``None``.
    """

    method: str
    params: Sequence[Any] = ()
    timeout: float = 10.0
    attempts: int | None = None
    backoff: float | None = None
    headers: Mapping[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )

    def payload(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(_RPC_IDS),
            "method": self.method,
            "params": list(self.params),
        }


async def _request_json(
    method: str,
    url: str,
    *,
    session: aiohttp.ClientSession | None,
    timeout: float,
    attempts: int | None,
    backoff: float | None,
    headers: Mapping[str, str] | None = None,
    body: Any = None,
) -> Any:
    session_obj = session or await get_session()
    default_attempts, default_backoff = host_retry_config(url)
    attempts = max(1, attempts if attempts is not None else default_attempts)
    backoff = default_backoff if backoff is None else backoff
    client_timeout = aiohttp.ClientTimeout(total=timeout)

    for attempt in range(attempts):
        try:
            async with host_request(url):
                async with session_obj.request(
                    method,
                    url,
                    headers=dict(headers or {"accept": "application/json"}),
                    json=body,
                    timeout=client_timeout,
                ) as resp:
                    if resp.status >= 400:
                        raise HTTPError(f"{method} {url} returned HTTP {resp.status}")
                    return await resp.json(content_type=None)
        except HostCircuitOpenError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, HTTPError, ValueError) as exc:
            if attempt + 1 >= attempts:
                raise
            delay = backoff * (2**attempt)
            logger.debug(
                "%s %s failed (attempt %d/%d): %s; retrying in %.2fs",
                method,
                url,
                attempt + 1,
                attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
    raise HTTPError(f"{method} {url} exhausted retries")  # pragma: no cover - loop always returns or raises


async def fetch_json(
    url: str,
    *,
    session: aiohttp.ClientSession | None = None,
    timeout: float = 10.0,
    attempts: int | None = None,
    backoff: float | None = None,
) -> Any:
    """GET *url* and decode the JSON body, retrying transient failures."""

    return await _request_json(
        "GET",
        url,
        session=session,
        timeout=timeout,
        attempts=attempts,
        backoff=backoff,
    )


async def post_json_rpc(
    url: str,
    request: JsonRpcRequest,
    *,
    session: aiohttp.ClientSession | None = None,
) -> Any:
    """POST a JSON-RPC ``request`` to *url* and return its ``result`` member."""

    data = await _request_json(
        "POST",
        url,
        session=session,
        timeout=request.timeout,
        attempts=request.attempts,
        backoff=request.backoff,
        headers=request.headers,
        body=request.payload(),
    )
    if not isinstance(data, Mapping):
        raise HTTPError(f"{request.method}: unexpected response type {type(data).__name__}")
    if data.get("error"):
        raise HTTPError(f"{request.method}: {data['error']}")
    return data.get("result")


__all__ = [
    "HTTPError",
    "HostCircuitOpenError",
    "JsonRpcRequest",
    "close_session",
    "fetch_json",
    "get_session",
    "host_request",
    "host_retry_config",
    "post_json_rpc",
    "reset_host_controllers",
]
