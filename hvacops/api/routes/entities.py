"""Entity value ingestion from the device gateway."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hvacops.api.dependencies import get_db
from hvacops.core.alert_evaluator import AlertEvaluator
from hvacops.models.schemas import EntitySyncRequest, EntitySyncResponse
from hvacops.services.alert_store import AlertStore
from hvacops.services.notification_service import AlertNotifier
from hvacops.services.site_data import SiteDataStore

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /entities/sync: upsert one value and run realtime alerts
# ---------------------------------------------------------------------------
@router.post("/sync", response_model=EntitySyncResponse)
async def sync_entity(
    payload: EntitySyncRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> EntitySyncResponse:
    store = SiteDataStore(db)
    site = await store.get_site(payload.site_id)
    if site is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")

    now = datetime.now(UTC)
    previous, _ = await store.upsert_entity_value(
        site.id,
        payload.entity_id,
        payload.state,
        seen_at=payload.observed_at or now,
        domain=payload.domain or payload.entity_id.split(".", 1)[0],
        external_device_id=payload.external_device_id,
        friendly_name=payload.friendly_name,
        unit_of_measurement=payload.unit_of_measurement,
    )

    alert_store = AlertStore(db)
    evaluator = AlertEvaluator(alert_store, AlertNotifier(alert_store))
    stats = await evaluator.evaluate_entity_change(
        site.org_id, site.id, payload.entity_id, previous, payload.state, now
    )
    await db.commit()
    return EntitySyncResponse(
        entity_id=payload.entity_id,
        previous_state=previous,
        state=payload.state,
        alerts_evaluated=stats.definitions_evaluated,
    )


__all__ = ["router"]
