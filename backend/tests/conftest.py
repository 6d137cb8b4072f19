"""Shared fixtures for the engine test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from models.domain import Contact, OpportunityCategory, OpportunityPriority, OpportunitySuggestion, OpportunityType
from repositories.memory import InMemoryUnitOfWork, MemoryStore
from services.weights import EngineConfig

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ACCOUNT = "acct-1"


def fixed_clock():
    return NOW


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def uow(store):
    """In-memory unit of work over a fresh store."""
    return InMemoryUnitOfWork(store)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def make_contact(uow):
    """Factory that builds a contact and stores it."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "account_id": ACCOUNT,
            "first_name": f"Person{counter['n']}",
            "last_name": "Test",
            "id": f"c{counter['n']:03d}",
        }
        data.update(overrides)
        contact = Contact(**data)
        uow.contacts.add(contact)
        return contact

    return _make


@pytest.fixture
def make_suggestion(uow):
    """Factory that builds an opportunity suggestion and stores it."""
    counter = {"n": 0}

    def _make(store_it=True, **overrides):
        counter["n"] += 1
        data = {
            "account_id": ACCOUNT,
            "category": OpportunityCategory.RECONNECTION,
            "type": OpportunityType.RECONNECT,
            "title": f"Opportunity {counter['n']}",
            "confidence_score": 0.8,
            "impact_score": 80.0,
            "priority": OpportunityPriority.HIGH,
            "primary_contact_id": f"c{counter['n']:03d}",
            "path_signature": "direct",
            "created_at": NOW - timedelta(days=5),
            "expires_at": NOW + timedelta(days=20),
            "id": f"opp{counter['n']:03d}",
        }
        data.update(overrides)
        suggestion = OpportunitySuggestion(**data)
        if store_it:
            uow.opportunities.create(suggestion)
        return suggestion

    return _make
