"""API route registration for HVACOps."""

from fastapi import APIRouter

from . import cron, entities, sites, zones

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
api_router.include_router(entities.router, prefix="/entities", tags=["entities"])
api_router.include_router(zones.router, prefix="/zones", tags=["zones"])
api_router.include_router(sites.router, prefix="/sites", tags=["sites"])


__all__ = [
    "api_router",
    "cron",
    "entities",
    "sites",
    "zones",
]
