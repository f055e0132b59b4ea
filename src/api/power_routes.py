"""
Power telemetry API routes
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
import logging

from telemetry.models import classify_voltage, load_percent

logger = logging.getLogger(__name__)

# Response models
class PortResponse(BaseModel):
    id: int
    name: str
    state: int
    protocol: int
    current_ma: int
    voltage_mv: int
    power_watts: float
    voltage_band: str
    load_percent: int

class PowerResponse(BaseModel):
    ports: List[PortResponse]
    total_watts: float
    total_load_percent: int
    data_valid: bool
    updated_at: Optional[datetime]
    address: Optional[str]


def create_power_routes(poller, config):
    """Create power telemetry routes"""
    router = APIRouter(prefix="/api", tags=["power"])
    max_port_watts = config['device']['max_port_watts']
    max_total_watts = config['device']['max_total_watts']

    @router.get("/power", response_model=PowerResponse)
    async def get_power():
        """Latest power model for all ports"""
        model = poller.model
        ports = [
            PortResponse(
                id=port.id,
                name=port.name,
                state=port.state,
                protocol=port.protocol,
                current_ma=port.current_ma,
                voltage_mv=port.voltage_mv,
                power_watts=round(port.power_watts, 3),
                voltage_band=classify_voltage(port.voltage_mv).value,
                load_percent=load_percent(port.power_watts, max_port_watts)
            )
            for port in model.ports
        ]
        return PowerResponse(
            ports=ports,
            total_watts=round(model.total_watts, 3),
            total_load_percent=load_percent(model.total_watts, max_total_watts),
            data_valid=model.data_valid,
            updated_at=model.updated_at,
            address=poller.active_address
        )

    return router
