# HTTP Helper for Ionbridge Connections
# Session configuration for the telemetry feed and the raw discovery probe request

import aiohttp
import logging

logger = logging.getLogger(__name__)

FEED_USER_AGENT = "ionbridge-power-monitor"

def create_feed_session(timeout_seconds: float = 1.0) -> aiohttp.ClientSession:
    """
    Create the persistent aiohttp session used for steady-state feed polling
    One keep-alive connection to the charger, reused across polls
    """
    connector = aiohttp.TCPConnector(
        limit=1,                    # Only one charger is polled
        limit_per_host=1,
        ssl=False,                  # The charger serves plain HTTP only
        force_close=False,          # Keep the connection alive between polls
        enable_cleanup_closed=True
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds),
        headers={
            "Accept": "text/plain",
            "User-Agent": FEED_USER_AGENT
        }
    )

def build_probe_request(address: str, feed_path: str = "/metrics") -> bytes:
    """
    Build the single non-persistent GET used to identify a charger
    """
    return (
        f"GET {feed_path} HTTP/1.1\r\n"
        f"Host: {address}\r\n"
        f"User-Agent: {FEED_USER_AGENT}\r\n"
        "Accept: text/plain\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode('ascii')

def feed_url(address: str, port: int = 80, feed_path: str = "/metrics") -> str:
    """Build the feed URL for an address"""
    if port == 80:
        return f"http://{address}{feed_path}"
    return f"http://{address}:{port}{feed_path}"
