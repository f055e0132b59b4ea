"""
Subnet scanner: partitions a /24 across concurrent workers and persists the charger match
"""

import asyncio
import inspect
import logging
import time
from typing import Callable, List, Optional

from .address_cache import AddressCache
from .models import HOST_FIRST, HOST_LAST, ScanRange, ScanResult
from .network_info import normalize_prefix
from .prober import Prober

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, bool], object]

def partition_hosts(workers: int, first: int = HOST_FIRST, last: int = HOST_LAST) -> List[ScanRange]:
    """
    Split first..last into equal contiguous ranges, the last one absorbing the remainder
    3 workers over 1..254 -> 1-84, 85-168, 169-254
    """
    total = last - first + 1
    workers = max(1, min(workers, total))
    per_worker = total // workers

    ranges = []
    for i in range(workers):
        start = first + i * per_worker
        end = last if i == workers - 1 else start + per_worker - 1
        ranges.append(ScanRange(start, end))
    return ranges


class _ScanClaim:
    """Per-scan winner bookkeeping, guarded by its own lock"""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.winner: Optional[str] = None
        self.matches: List[str] = []
        self.hosts_probed = 0


class Scanner:
    """Finds the ionbridge charger on the local /24"""

    def __init__(self, config, prober: Prober, address_cache: AddressCache,
                 scan_lock: Optional[asyncio.Lock] = None):
        discovery = config['discovery']
        self.prober = prober
        self.address_cache = address_cache
        self.workers = discovery.get('workers', 3)
        self.probe_pause = discovery.get('probe_pause', 0.005)
        self.worker_stagger = discovery.get('worker_stagger', 0.05)
        self.scan_lock = scan_lock or asyncio.Lock()
        self.last_result: Optional[ScanResult] = None

    def is_scanning(self) -> bool:
        return self.scan_lock.locked()

    async def validate_cached(self, address: str) -> bool:
        """Single probe of a cached address, serialized with full scans"""
        async with self.scan_lock:
            logger.info(f"[VALIDATE] Checking cached charger address {address}...")
            valid = await self.prober.probe(address)
            logger.info(f"[VALIDATE] Cached address {address}: {'valid' if valid else 'not responding'}")
            return valid

    async def scan(self, subnet_prefix: str, on_result: Optional[ResultCallback] = None) -> ScanResult:
        """
        Probe every host of the prefix; returns after all workers finish
        Raises ValueError for an empty or malformed prefix before any worker starts
        """
        prefix = normalize_prefix(subnet_prefix)
        ranges = partition_hosts(self.workers)

        async with self.scan_lock:
            logger.info(f"[SCAN] Scanning {prefix}* with {len(ranges)} workers...")
            start_time = time.time()
            claim = _ScanClaim()

            tasks = []
            for worker_id, scan_range in enumerate(ranges):
                logger.debug(
                    f"[SCAN] Worker {worker_id}: {prefix}{scan_range.start_host} - {prefix}{scan_range.end_host}"
                )
                tasks.append(asyncio.create_task(
                    self._scan_range(worker_id, prefix, scan_range, claim, on_result)
                ))
                if self.worker_stagger and worker_id < len(ranges) - 1:
                    await asyncio.sleep(self.worker_stagger)

            # Join barrier: wait for every worker even after a match
            await asyncio.gather(*tasks)

            result = ScanResult(
                prefix=prefix,
                address=claim.winner,
                matches=list(claim.matches),
                hosts_probed=claim.hosts_probed,
                duration_seconds=time.time() - start_time
            )
            self.last_result = result

        if result.found:
            logger.info(
                f"[SCAN] Complete: charger at {result.address} "
                f"({len(result.matches)} match(es), {result.hosts_probed} hosts in {result.duration_seconds:.1f}s)"
            )
        else:
            logger.warning(
                f"[SCAN] Complete: no charger found on {prefix}* "
                f"({result.hosts_probed} hosts in {result.duration_seconds:.1f}s)"
            )
        return result

    async def _scan_range(self, worker_id: int, prefix: str, scan_range: ScanRange,
                          claim: _ScanClaim, on_result: Optional[ResultCallback]):
        for host in range(scan_range.start_host, scan_range.end_host + 1):
            address = f"{prefix}{host}"
            try:
                matched = await self.prober.probe(address)
            except Exception as e:
                logger.debug(f"[SCAN] Probe of {address} failed unexpectedly: {e}")
                matched = False

            if matched:
                await self._claim(claim, address)

            claim.hosts_probed += 1
            if claim.hosts_probed % 50 == 0:
                logger.info(f"[SCAN] Progress: {claim.hosts_probed}/{HOST_LAST - HOST_FIRST + 1} hosts")

            await self._notify(on_result, address, matched)

            if self.probe_pause:
                await asyncio.sleep(self.probe_pause)

        logger.info(
            f"[SCAN] Worker {worker_id} finished ({prefix}{scan_range.start_host}-{scan_range.end_host})"
        )

    async def _claim(self, claim: _ScanClaim, address: str) -> bool:
        """Check-and-set the scan winner; returns True when the cache was written"""
        async with claim.lock:
            if address not in claim.matches:
                claim.matches.append(address)

            if claim.winner is None:
                claim.winner = address
                logger.info(f"[SCAN] Charger found: {address}")
                await asyncio.to_thread(self.address_cache.save, address)
                return True

            if claim.winner == address:
                return False

            # Last confirmed match wins
            logger.warning(f"[SCAN] Another charger answered at {address} (previous {claim.winner}) - switching")
            claim.winner = address
            await asyncio.to_thread(self.address_cache.save, address)
            return True

    async def _notify(self, on_result: Optional[ResultCallback], address: str, matched: bool):
        if on_result is None:
            return
        try:
            outcome = on_result(address, matched)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"[SCAN] Result callback failed for {address}: {e}")
