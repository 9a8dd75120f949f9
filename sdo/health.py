from __future__ import annotations

import socket
import time
from typing import Any

import httpx

HEALTHY = {"healthy", "ok", "pass", "up"}


def _unhealthy_parts(data: Any) -> list[str]:
    """Names of components reporting a non-healthy ``status``.

    Accepts both ``{"status": "healthy"}`` and component maps such as
    ``{"metadatabase": {"status": "healthy"}, "scheduler": {"status": ...}}``.
    """
    if not isinstance(data, dict):
        return []
    bad: list[str] = []
    status = data.get("status")
    if isinstance(status, str) and status.lower() not in HEALTHY:
        bad.append(status)
    for name, part in data.items():
        if isinstance(part, dict):
            s = part.get("status")
            if isinstance(s, str) and s.lower() not in HEALTHY:
                bad.append(f"{name}={s}")
    return bad


def check_health(url: str, timeout_s: float = 2.0, client: httpx.Client | None = None) -> tuple[bool, str, float | None]:
    """Call a service health endpoint.

    Returns (is_healthy, message, latency_ms). HTTP 200 is healthy unless a
    JSON body reports an unhealthy status.
    """
    start = time.time()
    try:
        if client is None:
            with httpx.Client(timeout=timeout_s, follow_redirects=False) as c:
                resp = c.get(url)
        else:
            resp = client.get(url, timeout=timeout_s)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if resp.status_code != 200:
            return False, f"HTTP {resp.status_code}", latency_ms
        try:
            data = resp.json()
        except ValueError:
            return True, "Healthy", latency_ms
        bad = _unhealthy_parts(data)
        if bad:
            return False, f"Unhealthy: {', '.join(bad)}", latency_ms
        return True, "Healthy", latency_ms
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms


def check_tcp(target: str, timeout_s: float = 2.0) -> tuple[bool, str, float | None]:
    """Open and close a TCP connection to ``host:port``."""
    host, _, port = target.rpartition(":")
    start = time.time()
    try:
        with socket.create_connection((host, int(port)), timeout=timeout_s):
            pass
        return True, "Accepting connections", round((time.time() - start) * 1000.0, 2)
    except OSError as e:
        return False, f"No connection: {e}", round((time.time() - start) * 1000.0, 2)
