"""
Power Monitor Server - Main orchestrator for all services
"""

import asyncio
import logging
from typing import Dict, Optional
import uvicorn

# Local imports
from config_loader import load_config, setup_logging
from storage import KeyValueStore
from discovery.address_cache import AddressCache
from discovery.manager import Scanner
from discovery.models import ScanOutcome
from discovery.network_info import NetworkStatus
from discovery.prober import Prober
from telemetry.models import PowerModel
from telemetry.poller import TelemetryPoller
from api.main_api import PowerMonitorAPI

logger = logging.getLogger(__name__)

class PowerMonitorServer:
    """Main server wiring discovery, polling, health monitoring and the status API"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config)

        self.store = KeyValueStore(self.config)
        self.address_cache = AddressCache(self.store, self.config)
        self.network = NetworkStatus(self.config)
        self.prober = Prober(self.config)
        self.scanner = Scanner(self.config, self.prober, self.address_cache)
        self.poller = TelemetryPoller(self.config, self.address_cache, self.scanner, self.network)
        self.api = PowerMonitorAPI(self.poller, self.address_cache, self.scanner, self.config)

        self.poller.add_model_listener(self._on_power_model)
        self.poller.add_discovery_listener(self._on_discovery_outcome)

        self.running = False
        self.tasks = []
        self._last_valid: Optional[bool] = None

    async def start(self):
        """Start all server services"""
        logger.info("Starting Ionbridge Power Monitor...")

        try:
            if not self.store.initialize():
                logger.warning("State store unavailable - discovery will rescan on every start")

            self.running = True
            self.tasks = [
                asyncio.create_task(self.poller.run()),
                asyncio.create_task(self._monitoring_service())
            ]
            logger.info(f"All services started successfully ({len(self.tasks)} background tasks)")

            if self.config['api'].get('enabled', True):
                await self._start_api_server()
            else:
                logger.info("Status API disabled - running headless")
                await asyncio.gather(*self.tasks)

        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop all server services gracefully"""
        if not self.running and not self.tasks:
            return
        logger.info("Stopping server...")
        self.running = False

        stats = self.poller.stats
        if stats.total_polls > 0:
            success_rate = stats.successful_polls / stats.total_polls * 100
            logger.info(
                f"Poll statistics: {stats.successful_polls}/{stats.total_polls} successful "
                f"({success_rate:.1f}%), {stats.session_resets} client resets, {stats.discoveries} discoveries"
            )

        self.poller.stop()
        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await self.poller.close()
        self.store.close()
        logger.info("Server stopped")

    # ================== LISTENERS ==================

    def _on_power_model(self, model: PowerModel):
        # Validity transitions only
        if model.data_valid != self._last_valid:
            if model.data_valid:
                logger.info(f"[DATA] Receiving telemetry from {self.poller.active_address}: {model.summary()}")
            else:
                logger.warning(f"[DATA] DATA ERROR - telemetry from {self.poller.active_address} unavailable")
            self._last_valid = model.data_valid

    def _on_discovery_outcome(self, outcome: ScanOutcome):
        if outcome.matched:
            logger.info(f"[DISCOVERY] Ionbridge charger at {outcome.address}")

    # ================== BACKGROUND SERVICES ==================

    async def _monitoring_service(self):
        """Background service for periodic health reporting"""
        check_interval = self.config['monitoring']['health_check_interval_minutes'] * 60

        logger.info(f"Monitoring service started (every {check_interval/60} minutes)")

        while self.running:
            try:
                await asyncio.sleep(check_interval)
                if not self.running:
                    break

                stats = self.poller.stats
                success_rate = stats.successful_polls / max(stats.total_polls, 1) * 100
                logger.info(
                    f"Health check: state={self.poller.state.value}, address={self.poller.active_address}, "
                    f"data_valid={self.poller.model.data_valid}, total={self.poller.model.total_watts:.2f}W | "
                    f"polls: {stats.successful_polls}/{stats.total_polls} ({success_rate:.1f}%), "
                    f"failures in a row: {self.poller.consecutive_failures}, resets: {stats.session_resets}"
                )
                if stats.last_error and not self.poller.model.data_valid:
                    logger.warning(f"Last poll error: {stats.last_error}")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Monitoring service error: {e}")

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        logger.info(f"API documentation: http://localhost:{self.config['api']['port']}/docs")

        await server.serve()
