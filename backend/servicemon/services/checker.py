"""Checker service - performs HTTP, TCP, and ping probes."""
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..schemas.monitor import ServiceMonitor

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10


@dataclass
class ProbeOutcome:
    """Raw result of one connectivity check, before classification."""
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    connect_failed: bool = False


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _failure(message: str, status_code: Optional[int] = None) -> ProbeOutcome:
    return ProbeOutcome(status_code=status_code, error_message=message, connect_failed=True)


class CheckerService:
    """Service for performing a single probe against a monitor's target.

    probe() never raises: DNS failures, refused connections and timeouts are
    reported through the outcome so the scheduler can classify them as down.
    """

    async def probe(self, monitor: ServiceMonitor) -> ProbeOutcome:
        """Perform a probe based on monitor type."""
        try:
            if monitor.type == "http":
                return await self._probe_http(monitor)
            elif monitor.type == "tcp":
                return await self._probe_tcp(monitor)
            elif monitor.type == "ping":
                return await self._probe_ping(monitor)
            else:
                return _failure(f"Unknown type: {monitor.type}")
        except Exception as e:
            logger.warning(f"Probe for monitor {monitor.id} raised: {e}")
            return _failure(str(e) or e.__class__.__name__)

    async def _probe_http(self, monitor: ServiceMonitor) -> ProbeOutcome:
        """GET the monitor URL and report latency and status code.

        Redirects are followed; the status code of the final response is reported.
        """
        if not monitor.url:
            return _failure("No URL configured")

        url = monitor.url
        if not url.startswith("http"):
            url = f"http://{url}"

        try:
            start = time.monotonic()
            # httpx times each phase separately; the whole request gets one deadline
            response = await asyncio.wait_for(
                self._get(url, monitor.timeout_seconds),
                timeout=monitor.timeout_seconds,
            )
            return ProbeOutcome(
                response_time_ms=_elapsed_ms(start),
                status_code=response.status_code,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return _failure("Request timed out")
        except httpx.TooManyRedirects:
            return _failure(f"Too many redirects (>{MAX_REDIRECTS})")
        except httpx.ConnectError as e:
            return _failure(f"Connection error: {e}")
        except httpx.InvalidURL:
            return _failure("Invalid URL")
        except httpx.HTTPError as e:
            return _failure(str(e) or e.__class__.__name__)

    async def _get(self, url: str, timeout: int) -> httpx.Response:
        # Self-signed certificates are common on home-lab services
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            verify=False,
        ) as client:
            return await client.get(url)

    async def _probe_tcp(self, monitor: ServiceMonitor) -> ProbeOutcome:
        """Open and immediately close a TCP connection."""
        host = monitor.url or ""
        port = monitor.port or 80
        if not host:
            return _failure("No host configured")

        start = time.monotonic()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=monitor.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return _failure("Connection timed out")
        except OSError as e:
            return _failure(e.strerror or str(e))

        elapsed = _elapsed_ms(start)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return ProbeOutcome(response_time_ms=elapsed)

    async def _probe_ping(self, monitor: ServiceMonitor) -> ProbeOutcome:
        """Send one ICMP echo using the system ping binary."""
        host = monitor.url or ""
        if not host:
            return _failure("No host configured")

        timeout = monitor.timeout_seconds
        if sys.platform == "win32":
            args = ["ping", "-n", "1", "-w", str(timeout * 1000), host]
        else:
            args = ["ping", "-c", "1", "-W", str(timeout), host]

        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            return _failure(f"Ping unavailable: {e}")

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return _failure("Ping timeout")

        if returncode != 0:
            return _failure("Ping failed")
        return ProbeOutcome(response_time_ms=_elapsed_ms(start))


# Global instance
checker_service = CheckerService()
