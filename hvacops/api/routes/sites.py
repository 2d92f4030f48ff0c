"""Manual site push."""

from __future__ import annotations

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hvacops.api.dependencies import SettingsDep, get_db
from hvacops.models.schemas import SitePushRequest, SitePushResponse, ZonePushResultResponse
from hvacops.services.site_data import SiteDataStore
from hvacops.services.site_push import SitePushService

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /sites/{site_id}/push: push every managed zone now
# ---------------------------------------------------------------------------
@router.post("/{site_id}/push", response_model=SitePushResponse)
async def push_site(
    site_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: SettingsDep,
    payload: SitePushRequest | None = None,
) -> SitePushResponse:
    payload = payload or SitePushRequest()
    store = SiteDataStore(db)
    if await store.get_site(site_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")

    logger.info("Manual push for site %s (trigger: %s)", site_id, payload.trigger)
    outcome = await SitePushService(store, settings).push_site(
        site_id, payload.trigger, triggered_by=payload.triggered_by
    )
    await db.commit()
    return SitePushResponse(
        site_id=site_id,
        device_api_connected=outcome.device_api_connected,
        trigger=payload.trigger,
        results=[ZonePushResultResponse(**r.to_dict()) for r in outcome.results],
    )


__all__ = ["router"]
