"""
Single-address charger probe: TCP connect, raw HTTP GET, signature match
"""

import asyncio
import contextlib
import logging
from typing import Dict, Optional

from http_helper import build_probe_request
from .models import ProbeStatus

logger = logging.getLogger(__name__)

RETRY_PAUSE_SECONDS = 0.01

class Prober:
    """Identifies an ionbridge charger at one address"""

    def __init__(self, config: Dict):
        network = config['network']
        discovery = config['discovery']
        self.port = network.get('feed_port', 80)
        self.feed_path = network.get('feed_path', '/metrics')
        self.signature = network.get('match_signature', 'ionbridge_port_current').encode('ascii')
        self.connect_timeout = discovery.get('connect_timeout', 0.5)
        self.read_timeout = discovery.get('read_timeout', 1.0)
        self.max_response_bytes = discovery.get('max_response_bytes', 2048)
        self.attempts = max(1, discovery.get('probe_attempts', 1))

    async def probe(self, address: str,
                    connect_timeout: Optional[float] = None,
                    read_timeout: Optional[float] = None) -> bool:
        status = await self.check(address, connect_timeout, read_timeout)
        return status is ProbeStatus.MATCHED

    async def check(self, address: str,
                    connect_timeout: Optional[float] = None,
                    read_timeout: Optional[float] = None) -> ProbeStatus:
        """Probe with retries and return the last detailed status"""
        connect_timeout = self.connect_timeout if connect_timeout is None else connect_timeout
        read_timeout = self.read_timeout if read_timeout is None else read_timeout

        status = ProbeStatus.UNREACHABLE
        for attempt in range(self.attempts):
            if attempt > 0:
                logger.debug(f"[PROBE] [{address}] retry {attempt}")
                await asyncio.sleep(RETRY_PAUSE_SECONDS)

            status = await self._probe_once(address, connect_timeout, read_timeout)
            if status is ProbeStatus.MATCHED:
                logger.info(f"[PROBE] [{address}] ionbridge charger confirmed")
                return status

        logger.debug(f"[PROBE] [{address}] no match ({status.value})")
        return status

    async def _probe_once(self, address: str, connect_timeout: float, read_timeout: float) -> ProbeStatus:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(address, self.port),
                timeout=connect_timeout
            )
        except asyncio.TimeoutError:
            return ProbeStatus.TIMEOUT
        except ConnectionRefusedError:
            return ProbeStatus.REFUSED
        except (OSError, ValueError):
            # Malformed host names raise UnicodeError from the idna codec
            return ProbeStatus.UNREACHABLE

        try:
            writer.write(build_probe_request(address, self.feed_path))
            await asyncio.wait_for(writer.drain(), timeout=read_timeout)
            response = await self._read_response(reader, read_timeout)
        except asyncio.TimeoutError:
            return ProbeStatus.TIMEOUT
        except (OSError, ValueError):
            return ProbeStatus.UNREACHABLE
        finally:
            writer.close()
            with contextlib.suppress(OSError, asyncio.TimeoutError):
                await asyncio.wait_for(writer.wait_closed(), timeout=read_timeout)

        if not response:
            return ProbeStatus.TIMEOUT

        # Headers and body are searched together; some firmware omits the blank line
        if self.signature in response:
            return ProbeStatus.MATCHED
        return ProbeStatus.NO_SIGNATURE

    async def _read_response(self, reader: asyncio.StreamReader, read_timeout: float) -> bytes:
        """Accumulate the raw response up to the byte cap; keep what arrived before a timeout"""
        buffer = bytearray()
        while len(buffer) < self.max_response_bytes:
            try:
                chunk = await asyncio.wait_for(
                    reader.read(self.max_response_bytes - len(buffer)),
                    timeout=read_timeout
                )
            except asyncio.TimeoutError:
                break
            if not chunk:
                break
            buffer.extend(chunk)
        return bytes(buffer)
