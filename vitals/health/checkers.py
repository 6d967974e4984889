"""Built-in checkers: HTTP(S), TLS cert expiry, DNS resolve, TCP connect.

Each reports success with a details mapping and failure by raising
CheckError (with whatever details were gathered). Timeouts are the engine's
job; the HTTP and TCP checkers still bound their own I/O by the context's
remaining time so abandoned checks release sockets promptly.
"""

from __future__ import annotations

import asyncio
import socket
import ssl
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from .context import CheckContext
from .models import CheckError

# Fallback I/O timeout when a context carries no deadline
_IO_TIMEOUT = 10.0


def _io_timeout(ctx: CheckContext) -> float:
    remaining = ctx.remaining()
    return _IO_TIMEOUT if remaining is None else remaining


def _ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


class HttpChecker:
    """HTTP(S) check: status code + latency, with a peek at JSON health bodies."""

    def __init__(
        self,
        url: str,
        method: str = "GET",
        expected_status: int = 200,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("HttpChecker requires a url")
        self.url = url
        self.method = method.upper()
        self.expected_status = expected_status
        self._transport = transport

    async def check(self, ctx: CheckContext) -> dict[str, Any]:
        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=_io_timeout(ctx), follow_redirects=True, transport=self._transport,
            ) as client:
                resp = await client.request(self.method, self.url)
        except httpx.TimeoutException as e:
            raise CheckError(f"Request timed out: {e}", {"latency_ms": _ms(t0)}) from e
        except httpx.HTTPError as e:
            raise CheckError(f"Connection error: {e}", {"latency_ms": _ms(t0)}) from e

        details: dict[str, Any] = {"status_code": resp.status_code, "latency_ms": _ms(t0)}
        try:
            body = resp.json()
            if isinstance(body, dict):
                details.update({k: body[k] for k in ("status", "version", "commit") if k in body})
        except ValueError:
            pass

        if resp.status_code != self.expected_status:
            raise CheckError(f"Expected {self.expected_status}, got {resp.status_code}", details)
        return details


class TcpChecker:
    """Raw TCP port connectivity check."""

    def __init__(self, hostname: str, port: int) -> None:
        if not hostname:
            raise ValueError("TcpChecker requires a hostname")
        self.hostname = hostname
        self.port = port

    async def check(self, ctx: CheckContext) -> dict[str, Any]:
        t0 = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.hostname, self.port), timeout=_io_timeout(ctx),
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise CheckError(
                f"TCP connect to {self.hostname}:{self.port} failed: {type(e).__name__}: {e}",
                {"latency_ms": _ms(t0)},
            ) from e
        latency = _ms(t0)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass  # peer hung up first; the connect already succeeded
        return {"latency_ms": latency}


class DnsChecker:
    """DNS resolution check."""

    def __init__(self, hostname: str) -> None:
        if not hostname:
            raise ValueError("DnsChecker requires a hostname")
        self.hostname = hostname

    async def check(self, ctx: CheckContext) -> dict[str, Any]:
        t0 = time.perf_counter()
        loop = asyncio.get_running_loop()
        try:
            addrs = await loop.getaddrinfo(self.hostname, None)
        except socket.gaierror as e:
            raise CheckError(f"DNS resolution failed: {e}", {"latency_ms": _ms(t0)}) from e

        ips = sorted({a[4][0] for a in addrs})
        return {"ips": ips, "latency_ms": _ms(t0)}


class TlsChecker:
    """TLS certificate expiry check.

    Blocking socket work, so ``check`` is synchronous and runs on a
    dedicated thread. Near-expiry is still up, flagged in details.
    """

    def __init__(self, hostname: str, port: int = 443, warn_days_before: int = 14) -> None:
        if not hostname:
            raise ValueError("TlsChecker requires a hostname")
        self.hostname = hostname
        self.port = port
        self.warn_days_before = warn_days_before

    def check(self, ctx: CheckContext) -> dict[str, Any]:
        t0 = time.perf_counter()
        try:
            tls = ssl.create_default_context()
            with socket.create_connection((self.hostname, self.port), timeout=_io_timeout(ctx)) as sock:
                with tls.wrap_socket(sock, server_hostname=self.hostname) as ssock:
                    cert = ssock.getpeercert()
        except (OSError, ssl.SSLError) as e:
            raise CheckError(f"TLS error: {type(e).__name__}: {e}", {"latency_ms": _ms(t0)}) from e

        if not cert:
            raise CheckError("No certificate returned", {"latency_ms": _ms(t0)})
        return self._expiry_details(cert.get("notAfter", ""), latency_ms=_ms(t0))

    def _expiry_details(self, not_after: str, latency_ms: float = 0.0) -> dict[str, Any]:
        expiry = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
        days_left = (expiry - datetime.now(timezone.utc)).days
        details = {
            "days_left": days_left,
            "expiry": expiry.isoformat(),
            "expiring_soon": days_left < self.warn_days_before,
            "latency_ms": latency_ms,
        }
        if days_left < 0:
            raise CheckError(f"Certificate EXPIRED {-days_left} days ago", details)
        return details
