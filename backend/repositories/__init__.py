"""Storage adapters behind the engine's repository interfaces."""

from .base import (
    ConfigRepository,
    ContactRepository,
    NotificationRepository,
    NotificationSink,
    OpportunityRepository,
    RelationshipRepository,
    UnitOfWork,
)
from .memory import InMemoryUnitOfWork, MemoryStore

__all__ = [
    "ConfigRepository",
    "ContactRepository",
    "RelationshipRepository",
    "OpportunityRepository",
    "NotificationRepository",
    "NotificationSink",
    "UnitOfWork",
    "InMemoryUnitOfWork",
    "MemoryStore",
]
