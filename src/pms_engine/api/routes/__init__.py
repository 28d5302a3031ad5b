"""API routes."""

from pms_engine.api.routes.health import router as health_router
from pms_engine.api.routes.meter_readings import router as meter_readings_router
from pms_engine.api.routes.pms_calculations import router as pms_calculations_router
from pms_engine.api.routes.pump_configurations import router as pump_configurations_router

__all__ = [
    "health_router",
    "meter_readings_router",
    "pms_calculations_router",
    "pump_configurations_router",
]
