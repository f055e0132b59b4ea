"""
Unit tests for subnet partitioning and the concurrent scanner.
"""
import asyncio
import threading

import pytest

from discovery.manager import Scanner, _ScanClaim, partition_hosts
from discovery.models import ScanRange


class SimulatedProber:
    """Prober double over a fixed set of responding addresses."""

    def __init__(self, matches=(), gate=None, explode=()):
        self.matches = set(matches)
        self.gate = gate
        self.explode = set(explode)
        self.calls = []

    async def probe(self, address, connect_timeout=None, read_timeout=None):
        self.calls.append(address)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if address in self.explode:
            raise RuntimeError("socket exploded")
        return address in self.matches


def host_of(address):
    return int(address.rsplit('.', 1)[1])


class TestPartitionHosts:

    def test_three_workers(self):
        assert partition_hosts(3) == [ScanRange(1, 84), ScanRange(85, 168), ScanRange(169, 254)]

    @pytest.mark.parametrize("workers", [1, 2, 3, 4, 7, 16, 254])
    def test_ranges_cover_every_host_once(self, workers):
        ranges = partition_hosts(workers)
        hosts = [h for r in ranges for h in range(r.start_host, r.end_host + 1)]

        assert len(ranges) == workers
        assert hosts == list(range(1, 255))
        assert sum(len(r) for r in ranges) == 254

    def test_worker_count_clamped(self):
        assert partition_hosts(0) == [ScanRange(1, 254)]
        assert len(partition_hosts(500)) == 254


class TestScan:

    @pytest.mark.asyncio
    async def test_single_match_is_persisted(self, config, address_cache):
        prober = SimulatedProber(matches={"10.0.0.5"})
        scanner = Scanner(config, prober, address_cache)

        result = await scanner.scan("10.0.0.")

        assert result.found
        assert result.address == "10.0.0.5"
        assert result.hosts_probed == 254
        assert address_cache.load() == ("10.0.0.5", True)
        assert scanner.last_result is result

    @pytest.mark.asyncio
    async def test_callback_reports_every_address(self, config, address_cache):
        prober = SimulatedProber(matches={"10.0.0.5"})
        scanner = Scanner(config, prober, address_cache)
        outcomes = []

        await scanner.scan("10.0.0", lambda address, matched: outcomes.append((address, matched)))

        assert len(outcomes) == 254
        assert {address for address, _ in outcomes} == {f"10.0.0.{h}" for h in range(1, 255)}
        assert [address for address, matched in outcomes if matched] == ["10.0.0.5"]

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(), address_cache)
        seen = []

        async def on_result(address, matched):
            await asyncio.sleep(0)
            seen.append(address)

        await scanner.scan("10.0.0.", on_result)
        assert len(seen) == 254

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_scan(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(matches={"10.0.0.200"}), address_cache)

        def on_result(address, matched):
            raise RuntimeError("display gone")

        result = await scanner.scan("10.0.0.", on_result)
        assert result.address == "10.0.0.200"

    @pytest.mark.asyncio
    async def test_each_worker_probes_in_ascending_order(self, config, address_cache):
        prober = SimulatedProber()
        scanner = Scanner(config, prober, address_cache)

        await scanner.scan("10.0.0.")

        for scan_range in partition_hosts(3):
            hosts = [host_of(a) for a in prober.calls if scan_range.start_host <= host_of(a) <= scan_range.end_host]
            assert hosts == list(range(scan_range.start_host, scan_range.end_host + 1))

    @pytest.mark.asyncio
    async def test_no_match_completes_without_persisting(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(), address_cache)

        result = await scanner.scan("10.0.0.")

        assert not result.found
        assert result.matches == []
        assert address_cache.load() == (None, False)

    @pytest.mark.asyncio
    async def test_prober_exception_counts_as_no_match(self, config, address_cache):
        prober = SimulatedProber(matches={"10.0.0.9"}, explode={"10.0.0.3"})
        scanner = Scanner(config, prober, address_cache)

        result = await scanner.scan("10.0.0.")

        assert result.address == "10.0.0.9"
        assert result.hosts_probed == 254

    @pytest.mark.asyncio
    async def test_repeated_scan_is_idempotent(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(matches={"10.0.0.5"}), address_cache)

        first = await scanner.scan("10.0.0.")
        second = await scanner.scan("10.0.0.")

        assert first.address == second.address == "10.0.0.5"
        assert address_cache.load() == ("10.0.0.5", True)

    @pytest.mark.asyncio
    async def test_two_matches_persist_exactly_one(self, config, address_cache):
        candidates = {"10.0.0.5", "10.0.0.200"}
        scanner = Scanner(config, SimulatedProber(matches=candidates), address_cache)

        result = await scanner.scan("10.0.0.")
        cached, found = address_cache.load()

        assert found
        assert cached in candidates
        assert cached == result.address
        assert sorted(result.matches) == sorted(candidates)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prefix", [None, "", "   ", "10.0", "10.0.0.1.", "300.0.0.", "a.b.c."])
    async def test_invalid_prefix_fails_fast(self, config, address_cache, prefix):
        prober = SimulatedProber()
        scanner = Scanner(config, prober, address_cache)

        with pytest.raises(ValueError):
            await scanner.scan(prefix)
        assert prober.calls == []
        assert not scanner.is_scanning()


class TestClaim:

    @pytest.mark.asyncio
    async def test_first_wins_then_same_is_noop_then_last_wins(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(), address_cache)
        claim = _ScanClaim()

        assert await scanner._claim(claim, "10.0.0.5") is True
        assert await scanner._claim(claim, "10.0.0.5") is False
        assert address_cache.load() == ("10.0.0.5", True)

        assert await scanner._claim(claim, "10.0.0.9") is True
        assert claim.winner == "10.0.0.9"
        assert claim.matches == ["10.0.0.5", "10.0.0.9"]
        assert address_cache.load() == ("10.0.0.9", True)

    @pytest.mark.asyncio
    async def test_claim_writes_cache_off_the_event_loop_thread(self, config, address_cache, monkeypatch):
        loop_thread = threading.get_ident()
        writer_threads = []
        save = address_cache.save

        def recording_save(address):
            writer_threads.append(threading.get_ident())
            save(address)
        monkeypatch.setattr(address_cache, "save", recording_save)

        scanner = Scanner(config, SimulatedProber(matches={"10.0.0.5"}), address_cache)
        await scanner.scan("10.0.0.")

        assert len(writer_threads) == 1
        assert writer_threads[0] != loop_thread
        assert address_cache.load() == ("10.0.0.5", True)

    @pytest.mark.asyncio
    async def test_concurrent_claims_leave_one_value(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(), address_cache)
        claim = _ScanClaim()

        await asyncio.gather(*(scanner._claim(claim, f"10.0.0.{h}") for h in (5, 6, 7)))

        cached, found = address_cache.load()
        assert found
        assert cached == claim.winner
        assert cached in {"10.0.0.5", "10.0.0.6", "10.0.0.7"}


class TestValidateCached:

    @pytest.mark.asyncio
    async def test_cached_address_responds(self, config, address_cache):
        scanner = Scanner(config, SimulatedProber(matches={"10.0.0.5"}), address_cache)
        assert await scanner.validate_cached("10.0.0.5") is True

    @pytest.mark.asyncio
    async def test_cached_address_gone(self, config, address_cache):
        address_cache.save("10.0.0.5")
        prober = SimulatedProber(matches=set())
        scanner = Scanner(config, prober, address_cache)

        assert await scanner.validate_cached("10.0.0.5") is False
        assert prober.calls == ["10.0.0.5"]
        # Validation never rewrites the cache
        assert address_cache.load() == ("10.0.0.5", True)

    @pytest.mark.asyncio
    async def test_validation_waits_for_running_scan(self, config, address_cache):
        gate = asyncio.Event()
        prober = SimulatedProber(matches={"10.0.0.5"}, gate=gate)
        scanner = Scanner(config, prober, address_cache)

        scan_task = asyncio.create_task(scanner.scan("10.0.0."))
        await asyncio.sleep(0.01)
        assert scanner.is_scanning()

        validate_task = asyncio.create_task(scanner.validate_cached("10.0.0.5"))
        await asyncio.sleep(0.01)
        assert not validate_task.done()

        gate.set()
        result = await scan_task
        assert await validate_task is True
        assert result.hosts_probed == 254
        assert prober.calls[-1] == "10.0.0.5"
        assert not scanner.is_scanning()
