"""API router initialization."""

# Hey future me, this is the main API router aggregator! It gets mounted under /api in
# main.py, so endpoints become /api/generations, /api/ingestions and so on. The health
# router is NOT in here: it lives at /health outside the /api prefix.

from fastapi import APIRouter

from trackforge.api.routers import callbacks, generations, health, ingestions, maintenance

api_router = APIRouter()

api_router.include_router(generations.router, prefix="/generations", tags=["Generations"])
api_router.include_router(ingestions.router, prefix="/ingestions", tags=["Ingestions"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["Maintenance"])
api_router.include_router(callbacks.router, prefix="/callbacks", tags=["Callbacks"])

__all__ = [
    "api_router",
    "callbacks",
    "generations",
    "health",
    "ingestions",
    "maintenance",
]
