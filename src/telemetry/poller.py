"""
Telemetry poller: discovery state machine plus the steady-state feed polling loop
"""

import asyncio
import inspect
import ipaddress
import logging
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, List, Optional

import aiohttp

from config_loader import MIN_POLL_INTERVAL_SECONDS
from discovery.address_cache import AddressCache
from discovery.manager import Scanner
from discovery.models import ScanOutcome
from discovery.network_info import NetworkStatus
from http_helper import create_feed_session, feed_url
from .metrics_parser import fold_samples, parse_metrics
from .models import PollStats, PowerModel

logger = logging.getLogger(__name__)

RECENT_OUTCOME_LIMIT = 20
FAILURE_LOG_EVERY = 10

class PollerState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    POLLING = "polling"

class FetchStatus(Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    PROTOCOL_ERROR = "protocol_error"
    HTTP_ERROR = "http_error"
    EMPTY_PAYLOAD = "empty_payload"
    SKIPPED = "skipped"

# Connection-phase failures get a grace period before the session is rebuilt
CONNECT_PHASE_FAILURES = (FetchStatus.TIMEOUT, FetchStatus.CONNECTION_ERROR)


class TelemetryPoller:
    """Owns the charger address, the feed session and the published PowerModel"""

    def __init__(self, config, address_cache: AddressCache, scanner: Scanner, network: NetworkStatus,
                 session_factory: Callable[[float], aiohttp.ClientSession] = create_feed_session,
                 clock: Callable[[], float] = time.monotonic):
        device = config['device']
        network_config = config['network']
        polling = config['polling']

        self.address_cache = address_cache
        self.scanner = scanner
        self.network = network
        self._session_factory = session_factory
        self._clock = clock

        self.port_count = device.get('port_count', 5)
        self.default_address = network_config['default_address']
        self.feed_port = network_config.get('feed_port', 80)
        self.feed_path = network_config.get('feed_path', '/metrics')
        self.validate_cached_enabled = config.get('discovery', {}).get('validate_cached', True)

        self.interval = max(polling.get('interval_seconds', MIN_POLL_INTERVAL_SECONDS), MIN_POLL_INTERVAL_SECONDS)
        self.request_timeout = polling.get('request_timeout', 1.0)
        self.connect_reset_threshold = polling.get('connect_reset_threshold', 5)
        self.rediscover_threshold = polling.get('rediscover_threshold', 20)
        self.network_check_interval = polling.get('network_check_interval', 1.0)

        self.model = PowerModel.empty(self.port_count, device.get('port_names'))
        self.state = PollerState.IDLE
        self.active_address: Optional[str] = None
        self.consecutive_failures = 0
        self.connect_failures = 0
        self.stats = PollStats()
        self.recent_outcomes: Deque[ScanOutcome] = deque(maxlen=RECENT_OUTCOME_LIMIT)

        self.running = False
        self._session: Optional[aiohttp.ClientSession] = None
        self._last_attempt: Optional[float] = None
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._network_was_up = True

        self._model_listeners: List[Callable] = []
        self._discovery_listeners: List[Callable] = []

    # ================== LISTENERS ==================

    def add_model_listener(self, callback: Callable[[PowerModel], object]):
        self._model_listeners.append(callback)

    def add_discovery_listener(self, callback: Callable[[ScanOutcome], object]):
        self._discovery_listeners.append(callback)

    async def _emit(self, listeners: List[Callable], payload, kind: str):
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[{kind}] Listener {getattr(listener, '__name__', listener)} failed: {e}")

    async def _publish_model(self):
        await self._emit(self._model_listeners, self.model, "MODEL")

    async def _publish_outcome(self, outcome: ScanOutcome):
        if outcome.matched:
            self.recent_outcomes.append(outcome)
        await self._emit(self._discovery_listeners, outcome, "DISCOVERY")

    # ================== CONTROL ==================

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self):
        """Gate the timer; accumulated state is kept"""
        if not self.paused:
            logger.info("[POLL] Polling paused")
        self._resumed.clear()

    def resume(self):
        if self.paused:
            logger.info("[POLL] Polling resumed")
        self._resumed.set()

    def request_rediscovery(self) -> bool:
        """Force a discovery pass on the next loop turn; False if one is already pending"""
        if self.state is PollerState.DISCOVERING:
            return False
        logger.info("[DISCOVERY] Rediscovery requested")
        self.state = PollerState.DISCOVERING
        return True

    def set_interval(self, seconds: float) -> float:
        if seconds < MIN_POLL_INTERVAL_SECONDS:
            logger.warning(f"[POLL] Interval {seconds}s below floor - using {MIN_POLL_INTERVAL_SECONDS}s")
            seconds = MIN_POLL_INTERVAL_SECONDS
        self.interval = seconds
        logger.info(f"[POLL] Poll interval set to {self.interval}s")
        return self.interval

    def set_address(self, address: str, persist: bool = True) -> str:
        """Manually point the poller at a charger address"""
        address = str(ipaddress.IPv4Address(address.strip()))
        if persist:
            self.address_cache.save(address)
        return self._start_polling(address)

    async def assign_address(self, address: str, persist: bool = True) -> str:
        """
        Manual address override from the configuration collaborator
        Holds the scanner's scan lock, so it waits for a running scan or cache validation
        Raises ValueError for anything that is not an IPv4 address
        """
        address = str(ipaddress.IPv4Address(address.strip()))
        async with self.scanner.scan_lock:
            if persist:
                await asyncio.to_thread(self.address_cache.save, address)
            logger.info(f"[POLL] Charger address set manually: {address}")
            return self.set_address(address, persist=False)

    # ================== DISCOVERY ==================

    async def discover(self) -> str:
        """
        Cached address -> validation -> subnet scan -> default address
        Always ends in POLLING; returns the chosen address
        """
        self.state = PollerState.DISCOVERING
        self.stats.discoveries += 1
        logger.info("[DISCOVERY] Locating ionbridge charger...")

        cached, found = self.address_cache.load()
        if found:
            if not self.validate_cached_enabled:
                logger.info(f"[DISCOVERY] Using cached address without validation: {cached}")
                return self._start_polling(cached)

            valid = await self.scanner.validate_cached(cached)
            await self._publish_outcome(ScanOutcome(cached, valid))
            if valid:
                return self._start_polling(cached)
            logger.warning(f"[DISCOVERY] Cached address {cached} not responding - scanning subnet")

        prefix = self.network.subnet_prefix()
        if prefix is None:
            logger.error("[DISCOVERY] Cannot determine local subnet - skipping scan")
        else:
            try:
                result = await self.scanner.scan(prefix, self._on_scan_result)
            except ValueError as e:
                logger.error(f"[DISCOVERY] Scan rejected: {e}")
            else:
                if result.found:
                    return self._start_polling(result.address)

        logger.warning(f"[DISCOVERY] No charger found - degraded mode on default address {self.default_address}")
        return self._start_polling(self.default_address)

    async def _on_scan_result(self, address: str, matched: bool):
        await self._publish_outcome(ScanOutcome(address, matched))

    def _start_polling(self, address: str) -> str:
        if address != self.active_address:
            logger.info(
                f"[POLL] Data URL: {feed_url(address, self.feed_port, self.feed_path)} "
                f"(was {self.active_address or 'unset'})"
            )
        self.active_address = address
        self.state = PollerState.POLLING
        self.consecutive_failures = 0
        self.connect_failures = 0
        self._last_attempt = None
        return address

    # ================== POLLING ==================

    async def tick(self) -> FetchStatus:
        """Fetch once if a full interval has elapsed since the last attempt"""
        if self.state is not PollerState.POLLING or self.active_address is None:
            return FetchStatus.SKIPPED

        now = self._clock()
        if self._last_attempt is not None and now - self._last_attempt < self.interval:
            return FetchStatus.SKIPPED

        if not self.network.is_up():
            return FetchStatus.SKIPPED

        self._last_attempt = now
        return await self.fetch_once()

    async def fetch_once(self) -> FetchStatus:
        """One GET against the active address, folded into the model and published"""
        url = feed_url(self.active_address, self.feed_port, self.feed_path)
        session = self._ensure_session()
        self.stats.total_polls += 1

        try:
            async with session.get(url) as response:
                if response.status != 200:
                    return await self._record_failure(FetchStatus.HTTP_ERROR, f"HTTP {response.status}")
                body = await response.text(errors='replace')
        except asyncio.TimeoutError:
            return await self._record_failure(FetchStatus.TIMEOUT, f"timeout after {self.request_timeout}s")
        except aiohttp.ClientConnectorError as e:
            return await self._record_failure(FetchStatus.CONNECTION_ERROR, str(e))
        except aiohttp.ClientError as e:
            return await self._record_failure(FetchStatus.PROTOCOL_ERROR, f"{type(e).__name__}: {e}")

        samples = parse_metrics(body, self.port_count)
        if not samples:
            return await self._record_failure(FetchStatus.EMPTY_PAYLOAD, "no recognizable metric lines")

        self.model = fold_samples(self.model, samples, data_valid=True)
        if self.consecutive_failures:
            logger.info(f"[POLL] Feed recovered after {self.consecutive_failures} failure(s)")
        self.consecutive_failures = 0
        self.connect_failures = 0
        self.stats.successful_polls += 1
        self.stats.last_success = datetime.now(timezone.utc)
        logger.debug(f"[POLL] Power Info: {self.model.summary()}")

        await self._publish_model()
        return FetchStatus.OK

    async def _record_failure(self, status: FetchStatus, detail: str) -> FetchStatus:
        self.consecutive_failures += 1
        self.stats.failed_polls += 1
        self.stats.last_error = f"{status.value}: {detail}"
        self.model = self.model.with_validity(False)

        message = f"[POLL] Fetch from {self.active_address} failed ({status.value}): {detail} [{self.consecutive_failures} in a row]"
        if self.consecutive_failures == 1 or self.consecutive_failures % FAILURE_LOG_EVERY == 0:
            logger.warning(message)
        else:
            logger.debug(message)

        if status in CONNECT_PHASE_FAILURES:
            self.connect_failures += 1
            if self.connect_failures > self.connect_reset_threshold:
                logger.info(f"[POLL] {self.connect_failures} connection failures - resetting HTTP client")
                await self._reset_session()
                self.connect_failures = 0
        elif status is FetchStatus.PROTOCOL_ERROR:
            logger.info("[POLL] Protocol error - resetting HTTP client")
            await self._reset_session()

        if self.rediscover_threshold and self.consecutive_failures >= self.rediscover_threshold:
            logger.warning(
                f"[POLL] {self.consecutive_failures} consecutive failures - charger may have moved, rediscovering"
            )
            self.state = PollerState.DISCOVERING

        await self._publish_model()
        return status

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = self._session_factory(self.request_timeout)
        return self._session

    async def _reset_session(self):
        self.stats.session_resets += 1
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ================== LOOP ==================

    async def run(self):
        """Main loop; runs until stop() or task cancellation"""
        self.running = True
        logger.info(f"[POLL] Telemetry poller started (interval {self.interval}s)")

        try:
            while self.running:
                await self._resumed.wait()
                if not self.running:
                    break

                try:
                    await self._run_cycle()
                except Exception as e:
                    self.stats.last_error = f"{type(e).__name__}: {e}"
                    logger.error(f"[POLL] Poller cycle error in state {self.state.value}: {type(e).__name__}: {e}")
                    # Even on error, back off to prevent a rapid error loop
                    await asyncio.sleep(self.network_check_interval)
        finally:
            self.running = False
            await self.close()
            logger.info("[POLL] Telemetry poller stopped")

    async def _run_cycle(self):
        """One loop turn: network gate, discovery if needed, otherwise a timed tick"""
        if not self.network.is_up():
            if self._network_was_up:
                logger.warning("[POLL] Network down - discovery and polling suspended")
                self._network_was_up = False
            await asyncio.sleep(self.network_check_interval)
            return
        if not self._network_was_up:
            logger.info("[POLL] Network up - resuming")
            self._network_was_up = True

        if self.state is not PollerState.POLLING:
            await self.discover()
            return

        cycle_start = self._clock()
        status = await self.tick()
        elapsed = self._clock() - cycle_start

        if status is not FetchStatus.SKIPPED:
            if elapsed > self.interval:
                # Start the next cycle immediately to prevent pile-up
                logger.warning(
                    f"[POLL] Cycle took {elapsed:.2f}s (>{self.interval}s interval) - skipping sleep"
                )
                return
            if elapsed > self.interval * 0.8:
                logger.debug(f"[POLL] Slow cycle: {elapsed:.2f}s of {self.interval}s interval")

        await asyncio.sleep(self._time_until_next_poll())

    def _time_until_next_poll(self) -> float:
        if self._last_attempt is None:
            return 0
        return max(0.0, self._last_attempt + self.interval - self._clock())

    def stop(self):
        self.running = False
        self._resumed.set()

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
