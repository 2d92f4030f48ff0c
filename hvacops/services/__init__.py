"""HVACOps application services."""

from .alert_store import AlertStore
from .enforcement import AlertEvaluationJob, ThermostatEnforcer
from .notification_service import AlertNotifier
from .site_data import SiteDataStore
from .site_push import SitePushService

__all__ = [
    "AlertEvaluationJob",
    "AlertNotifier",
    "AlertStore",
    "SiteDataStore",
    "SitePushService",
    "ThermostatEnforcer",
]
