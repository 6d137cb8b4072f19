"""Business logic services."""

from .contact_scoring import ContactScore, ContactScoringService
from .network_engine import NetworkEngine
from .notification_policy import NotificationDispatcher, build_daily_digest, plan_notifications
from .opportunity_generator import OpportunityGenerator
from .relationship_discovery import RelationshipDiscoveryService
from .success_tracking import Adjustment, SuccessMetrics, SuccessTrackingService
from .weights import EngineConfig

__all__ = [
    "ContactScore",
    "ContactScoringService",
    "NetworkEngine",
    "NotificationDispatcher",
    "build_daily_digest",
    "plan_notifications",
    "OpportunityGenerator",
    "RelationshipDiscoveryService",
    "Adjustment",
    "SuccessMetrics",
    "SuccessTrackingService",
    "EngineConfig",
]
