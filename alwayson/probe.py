"""
Relay reachability probe.

One bounded connection attempt against the relay/signal endpoint. Every
failure mode (DNS, refused, TLS, handshake, timeout, unsupported scheme)
means "unreachable"; nothing is raised and nothing is retried here. Retry
cadence belongs to the supervisor.
"""
import logging
from urllib.parse import urlparse

import requests
import websocket  # websocket-client

log = logging.getLogger("alwayson.probe")

DEFAULT_TIMEOUT = 5.0


def probe_relay(url: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Return True if the relay at url answered within timeout."""
    scheme = urlparse(url).scheme.lower()
    if scheme in ("ws", "wss"):
        return _probe_websocket(url, timeout)
    if scheme in ("http", "https"):
        return _probe_http(url, timeout)
    log.warning("Cannot probe %s: unsupported scheme %r", url, scheme)
    return False


def _probe_websocket(url: str, timeout: float) -> bool:
    try:
        ws = websocket.create_connection(url, timeout=timeout)
    except Exception as exc:
        log.debug("Relay %s unreachable: %s", url, exc)
        return False
    try:
        ws.close()
    except Exception as exc:
        log.debug("Closing probe socket to %s failed: %s", url, exc)
    return True


def _probe_http(url: str, timeout: float) -> bool:
    # Any HTTP status means the endpoint is up; the relay does not serve HEAD
    # on every path.
    try:
        resp = requests.head(url, timeout=timeout, allow_redirects=False)
    except requests.RequestException as exc:
        log.debug("Relay %s unreachable: %s", url, exc)
        return False
    log.debug("Relay %s answered %d", url, resp.status_code)
    return True
