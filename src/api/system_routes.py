"""
Discovery control and system health API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

# Request models
class IntervalRequest(BaseModel):
    interval_seconds: float = Field(gt=0)

class AddressRequest(BaseModel):
    address: str
    persist: bool = True

# Response models
class OutcomeResponse(BaseModel):
    address: str
    matched: bool

class ScanSummaryResponse(BaseModel):
    prefix: str
    address: Optional[str]
    matches: List[str]
    hosts_probed: int
    duration_seconds: float

class DiscoveryStatusResponse(BaseModel):
    state: str
    active_address: Optional[str]
    cached_address: Optional[str]
    scanning: bool
    last_scan: Optional[ScanSummaryResponse]
    recent_outcomes: List[OutcomeResponse]

class ActionResponse(BaseModel):
    status: str
    detail: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    network_up: bool
    paused: bool
    state: str
    interval_seconds: float
    consecutive_failures: int
    total_polls: int
    successful_polls: int
    failed_polls: int
    session_resets: int
    discoveries: int
    last_error: Optional[str]
    last_success: Optional[datetime]


def create_system_routes(poller, address_cache, scanner):
    """Create discovery and health routes"""
    router = APIRouter(prefix="/api", tags=["system"])

    @router.get("/discovery", response_model=DiscoveryStatusResponse)
    async def get_discovery_status():
        """Current address, cache contents and last scan"""
        cached, _ = address_cache.load()
        last = scanner.last_result
        last_scan = None
        if last is not None:
            last_scan = ScanSummaryResponse(
                prefix=last.prefix,
                address=last.address,
                matches=list(last.matches),
                hosts_probed=last.hosts_probed,
                duration_seconds=round(last.duration_seconds, 2)
            )
        return DiscoveryStatusResponse(
            state=poller.state.value,
            active_address=poller.active_address,
            cached_address=cached,
            scanning=scanner.is_scanning(),
            last_scan=last_scan,
            recent_outcomes=[
                OutcomeResponse(address=o.address, matched=o.matched)
                for o in poller.recent_outcomes
            ]
        )

    @router.post("/discovery/rescan", response_model=ActionResponse)
    async def rescan():
        """Force the poller back into discovery"""
        if poller.request_rediscovery():
            return ActionResponse(status="accepted")
        return ActionResponse(status="pending", detail="Discovery already in progress")

    @router.post("/discovery/address", response_model=ActionResponse)
    async def set_charger_address(request: AddressRequest):
        """Point the poller at a known charger address"""
        try:
            address = await poller.assign_address(request.address, persist=request.persist)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Not an IPv4 address: {request.address}")
        return ActionResponse(status="updated", detail=address)

    @router.post("/polling/interval", response_model=ActionResponse)
    async def set_poll_interval(request: IntervalRequest):
        """Change the poll interval; values below the floor are raised to it"""
        interval = poller.set_interval(request.interval_seconds)
        return ActionResponse(status="updated", detail=f"{interval}s")

    @router.post("/polling/pause", response_model=ActionResponse)
    async def pause_polling():
        poller.pause()
        return ActionResponse(status="paused")

    @router.post("/polling/resume", response_model=ActionResponse)
    async def resume_polling():
        poller.resume()
        return ActionResponse(status="resumed")

    @router.get("/system/health", response_model=HealthResponse)
    async def system_health():
        """System health check"""
        network_up = poller.network.is_up()
        stats = poller.stats
        if not network_up:
            status = "offline"
        elif poller.model.data_valid:
            status = "healthy"
        else:
            status = "degraded"

        return HealthResponse(
            status=status,
            network_up=network_up,
            paused=poller.paused,
            state=poller.state.value,
            interval_seconds=poller.interval,
            consecutive_failures=poller.consecutive_failures,
            total_polls=stats.total_polls,
            successful_polls=stats.successful_polls,
            failed_polls=stats.failed_polls,
            session_resets=stats.session_resets,
            discoveries=stats.discoveries,
            last_error=stats.last_error,
            last_success=stats.last_success
        )

    return router
