"""ORM models."""

from .base import BaseModel
from .contact import Contact
from .engine_config import EngineConfigVersion
from .notification import NotificationDelivery, NotificationSettings
from .opportunity import OpportunityFeedback, OpportunitySuggestion
from .relationship import ContactRelationship, PotentialRelationship

__all__ = [
    "BaseModel",
    "Contact",
    "ContactRelationship",
    "PotentialRelationship",
    "OpportunitySuggestion",
    "OpportunityFeedback",
    "NotificationSettings",
    "NotificationDelivery",
    "EngineConfigVersion",
]
