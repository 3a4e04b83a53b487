"""API routes."""

from nomina_engine.api.routes.benefits import router as benefits_router
from nomina_engine.api.routes.calculations import router as calculations_router
from nomina_engine.api.routes.health import router as health_router
from nomina_engine.api.routes.periods import router as periods_router

__all__ = ["benefits_router", "calculations_router", "health_router", "periods_router"]
