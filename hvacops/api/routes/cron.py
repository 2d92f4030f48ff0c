"""Cron-triggered job endpoints (thermostat enforcement, alert evaluation)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from hvacops.api.dependencies import (
    RedisDep,
    SessionFactoryDep,
    SettingsDep,
    verify_cron_secret,
)
from hvacops.models.schemas import AlertEvaluationSummary, EnforcementSummary
from hvacops.services.enforcement import AlertEvaluationJob, ThermostatEnforcer

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


# ---------------------------------------------------------------------------
# GET|POST /cron/thermostat-enforce
# ---------------------------------------------------------------------------
@router.api_route("/thermostat-enforce", methods=["GET", "POST"], response_model=EnforcementSummary)
async def thermostat_enforce(
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
    redis_client: RedisDep,
) -> EnforcementSummary:
    """Run smart start, push, daily health and snapshots for every managed site."""
    enforcer = ThermostatEnforcer(session_factory, settings, redis_client=redis_client)
    return await enforcer.run()


# ---------------------------------------------------------------------------
# GET|POST /cron/alerts-evaluate
# ---------------------------------------------------------------------------
@router.api_route("/alerts-evaluate", methods=["GET", "POST"], response_model=AlertEvaluationSummary)
async def alerts_evaluate(session_factory: SessionFactoryDep) -> AlertEvaluationSummary:
    """Evaluate every cron-path alert definition, then send repeat notifications."""
    return await AlertEvaluationJob(session_factory).run()


__all__ = ["router"]
