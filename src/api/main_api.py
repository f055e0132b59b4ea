"""
Main FastAPI application setup

Local HTTP API for the Ionbridge Power Monitor
Read-only power telemetry plus discovery and polling controls
"""

from fastapi import FastAPI
import logging

from .power_routes import create_power_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)


class PowerMonitorAPI:
    """Local HTTP API exposing the power model and discovery state"""

    def __init__(self, poller, address_cache, scanner, config):
        self.poller = poller
        self.address_cache = address_cache
        self.scanner = scanner
        self.config = config
        self.app = FastAPI(
            title="Ionbridge Power Monitor",
            description="Per-port power telemetry from an ionbridge charger on the local network",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        power_router = create_power_routes(self.poller, self.config)
        system_router = create_system_routes(self.poller, self.address_cache, self.scanner)

        self.app.include_router(power_router)
        self.app.include_router(system_router)
