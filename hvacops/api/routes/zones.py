"""Zone setpoint API routes."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hvacops.api.dependencies import get_db
from hvacops.core.setpoint_resolver import resolve_setpoints
from hvacops.models.schemas import ResolvedSetpointsResponse
from hvacops.services.site_data import SiteDataStore

router = APIRouter()


# ---------------------------------------------------------------------------
# GET /zones/{zone_id}/setpoints: resolved setpoints with their source
# ---------------------------------------------------------------------------
@router.get("/{zone_id}/setpoints", response_model=ResolvedSetpointsResponse)
async def get_zone_setpoints(
    zone_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ResolvedSetpointsResponse:
    store = SiteDataStore(db)
    zone = await store.get_zone(zone_id)
    if zone is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Zone not found")
    profile = await store.get_profile(zone.profile_id)
    resolved = resolve_setpoints(zone, profile)
    return ResolvedSetpointsResponse(zone_id=zone.id, **resolved.to_dict())


__all__ = ["router"]
