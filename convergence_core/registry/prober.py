"""
Endpoint liveness probing over HTTP.

A probe sends HEAD to the endpoint URL and falls back to GET <url>/health
when HEAD cannot be sent. Any response below 500 counts as alive.
Websocket URLs are probed over their HTTP equivalents. Probes never raise.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from convergence_core.core.errors import ProbeError

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 2.0


@dataclass
class ProbeResult:
    """Outcome of a single probe."""
    url: str
    alive: bool
    latency_ms: float
    status_code: Optional[int] = None
    error: Optional[str] = None


def to_http_url(url: str) -> str:
    """Map ws:// and wss:// to http:// and https://."""
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url


class EndpointProber:
    """
    Probes endpoints with a shared aiohttp session.

    The session is created on first use and closed by close().
    """

    def __init__(self, timeout: float = DEFAULT_PROBE_TIMEOUT):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def probe(self, url: str) -> ProbeResult:
        """Probe one URL within the timeout. Failures become alive=False."""
        target = to_http_url(url)
        started = time.monotonic()

        try:
            status = await asyncio.wait_for(self._request(target), timeout=self.timeout)
        except asyncio.TimeoutError:
            return ProbeResult(
                url=url,
                alive=False,
                latency_ms=(time.monotonic() - started) * 1000,
                error=f"timeout after {self.timeout}s",
            )
        except ProbeError as e:
            return ProbeResult(
                url=url,
                alive=False,
                latency_ms=(time.monotonic() - started) * 1000,
                error=e.reason,
            )

        return ProbeResult(
            url=url,
            alive=status < 500,
            latency_ms=(time.monotonic() - started) * 1000,
            status_code=status,
        )

    async def is_alive(self, url: str) -> bool:
        return (await self.probe(url)).alive

    async def _request(self, url: str) -> int:
        session = await self._get_session()

        try:
            async with session.head(url, allow_redirects=True) as response:
                return response.status
        except aiohttp.ClientError as head_error:
            logger.debug(f"HEAD {url} failed ({head_error}), trying /health")

        health_url = url.rstrip("/") + "/health"
        try:
            async with session.get(health_url) as response:
                return response.status
        except aiohttp.ClientError as e:
            raise ProbeError(url, str(e) or type(e).__name__) from e


__all__ = ["ProbeResult", "EndpointProber", "to_http_url", "DEFAULT_PROBE_TIMEOUT"]
