"""
API module for power telemetry and monitor control
"""

from .main_api import PowerMonitorAPI
from .power_routes import create_power_routes
from .system_routes import create_system_routes

__all__ = ['PowerMonitorAPI', 'create_power_routes', 'create_system_routes']
