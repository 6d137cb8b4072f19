"""Tests for the SQLAlchemy repositories against in-memory SQLite."""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models.orm  # noqa: F401
from lib.database import Base
from lib.exceptions import ConflictError
from models.domain import (
    ActualOutcome,
    CandidateStatus,
    Contact,
    ContactTier,
    NotificationSettings,
    OpportunityCategory,
    OpportunityFeedback,
    OpportunityFlag,
    OpportunityPriority,
    OpportunityStatus,
    OpportunitySuggestion,
    OpportunityType,
    PotentialRelationship,
    Relationship,
    RelationshipType,
    Signal,
    SignalType,
)
from repositories.sql import SqlUnitOfWork
from services.contact_scoring import ContactScoringService
from services.relationship_discovery import RelationshipDiscoveryService
from services.weights import EngineConfig

ACCOUNT = "acct-1"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def sql_uow(session_factory):
    uow = SqlUnitOfWork(session_factory=session_factory)
    yield uow
    uow.close()


@pytest.fixture
def contacts(sql_uow, now):
    ann = Contact(
        account_id=ACCOUNT,
        id="c1",
        first_name="Ann",
        company="Acme",
        email="ann@acme.com",
        tier=ContactTier.TIER_1,
        last_contact_date=now - timedelta(days=100),
        updated_at=now - timedelta(days=400),
    )
    bob = Contact(account_id=ACCOUNT, id="c2", first_name="Bob", company="Acme Inc", email="bob@acme.com")
    with sql_uow.transaction():
        sql_uow.contacts.add(ann)
        sql_uow.contacts.add(bob)
    return ann, bob


def suggestion(**overrides):
    data = {
        "account_id": ACCOUNT,
        "category": OpportunityCategory.RECONNECTION,
        "type": OpportunityType.RECONNECT,
        "title": "Reconnect with Ann",
        "confidence_score": 0.8,
        "impact_score": 80.0,
        "priority": OpportunityPriority.HIGH,
        "primary_contact_id": "c1",
        "path_signature": "direct",
        "id": "opp1",
    }
    data.update(overrides)
    return OpportunitySuggestion(**data)


class TestSqlContacts:

    def test_round_trip_keeps_timezone_and_enums(self, sql_uow, contacts, now):
        ann = sql_uow.contacts.get("c1")

        assert ann.name == "Ann"
        assert ann.tier == ContactTier.TIER_1
        assert ann.last_contact_date == now - timedelta(days=100)
        assert ann.last_contact_date.tzinfo is not None
        assert [c.id for c in sql_uow.contacts.list(ACCOUNT)] == ["c1", "c2"]
        assert sql_uow.contacts.account_ids() == [ACCOUNT]

    def test_scoring_write_back(self, sql_uow, contacts, config, clock, now):
        ContactScoringService(sql_uow, config, clock, interests=[]).score_account(ACCOUNT)

        ann = sql_uow.contacts.get("c1")
        assert ann.priority_score is not None
        assert ann.last_scored_at == now
        assert ann.updated_at == now - timedelta(days=400)
        assert OpportunityFlag.RECONNECTION_OPPORTUNITY in ann.opportunity_flags
        assert "network_position" in ann.scoring_factors


class TestSqlRelationships:

    def test_discovery_and_approval(self, sql_uow, contacts, config, clock):
        service = RelationshipDiscoveryService(sql_uow, config, clock)

        first = service.discover_batch(ACCOUNT)
        second = service.discover_batch(ACCOUNT)
        candidate = service.list_pending(ACCOUNT)[0]
        service.approve(candidate.id, is_mutual=True)

        assert first.created == 1
        assert second.created == 0
        assert sql_uow.relationships.exists_between("c2", "c1")
        assert sql_uow.relationships.neighbors_of("c1") == {"c2"}
        assert sql_uow.relationships.get_candidate(candidate.id).status == CandidateStatus.APPROVED

    def test_duplicate_edge_conflicts(self, sql_uow, contacts):
        edge = Relationship(contact_id="c1", related_contact_id="c2", type=RelationshipType.FRIEND)
        with sql_uow.transaction():
            sql_uow.relationships.create(edge)

        with pytest.raises(ConflictError):
            with sql_uow.transaction():
                sql_uow.relationships.create(
                    Relationship(contact_id="c1", related_contact_id="c2", type=RelationshipType.FRIEND)
                )
        assert len(sql_uow.relationships.list_account_edges(ACCOUNT)) == 1

    def test_candidate_evidence_round_trip(self, sql_uow, contacts, now):
        evidence = [Signal(SignalType.SAME_COMPANY, 1.0, "Both work at acme")]
        with sql_uow.transaction():
            sql_uow.relationships.save_candidate(PotentialRelationship(
                account_id=ACCOUNT,
                contact_id="c1",
                related_contact_id="c2",
                inferred_type=RelationshipType.COLLEAGUE,
                confidence=0.3,
                evidence=evidence,
                fingerprint="abc",
                created_at=now,
            ))

        stored = sql_uow.relationships.find_candidate("abc")

        assert stored.evidence == evidence
        assert stored.created_at == now

    def test_refresh_pending_candidate_for_pair(self, sql_uow, contacts, now):
        old = PotentialRelationship(
            account_id=ACCOUNT,
            contact_id="c1",
            related_contact_id="c2",
            inferred_type=RelationshipType.ACQUAINTANCE,
            confidence=0.35,
            evidence=[Signal(SignalType.SAME_LOCATION, 1.0, "Both in Austin")],
            fingerprint="old",
            created_at=now,
            id="cand1",
        )
        new = PotentialRelationship(
            account_id=ACCOUNT,
            contact_id="c2",
            related_contact_id="c1",
            inferred_type=RelationshipType.COLLEAGUE,
            confidence=0.65,
            evidence=[Signal(SignalType.SAME_COMPANY, 1.0, "Both work at acme")],
            fingerprint="new",
        )
        with sql_uow.transaction():
            sql_uow.relationships.save_candidate(old)
            refreshed = sql_uow.relationships.refresh_candidate("cand1", new)

        assert [c.id for c in sql_uow.relationships.pending_for_pair("c2", "c1")] == ["cand1"]
        assert refreshed.fingerprint == "new"
        assert refreshed.inferred_type == RelationshipType.COLLEAGUE
        assert refreshed.contact_id == "c1"
        assert sql_uow.relationships.find_candidate("old") is None

        with sql_uow.transaction():
            sql_uow.relationships.update_candidate("cand1", CandidateStatus.SUPERSEDED, reviewed_at=now)
        assert sql_uow.relationships.pending_for_pair("c1", "c2") == []
        with pytest.raises(ConflictError):
            sql_uow.relationships.refresh_candidate("cand1", new)


class TestSqlOpportunities:

    def test_status_update_merges_metadata(self, sql_uow, contacts, now):
        with sql_uow.transaction():
            sql_uow.opportunities.create(suggestion(created_at=now, metadata={"path_strength": 1.0}))
            sql_uow.opportunities.update_status(
                "opp1",
                OpportunityStatus.COMPLETED,
                metadata={"success": True},
                expected_status=OpportunityStatus.PENDING,
                timestamps={"completed_at": now},
            )

        stored = sql_uow.opportunities.get("opp1")
        assert stored.status == OpportunityStatus.COMPLETED
        assert stored.metadata == {"path_strength": 1.0, "success": True}
        assert stored.completed_at == now
        assert sql_uow.opportunities.find_open(stored.dedup_key) is None

    def test_cluster_dedup_ignores_primary_contact(self, sql_uow, contacts):
        cluster = dict(
            category=OpportunityCategory.STRATEGIC_MOVE,
            type=OpportunityType.COMPANY_CLUSTER,
            path_signature="cluster:acme|software",
        )
        with sql_uow.transaction():
            sql_uow.opportunities.create(suggestion(**cluster))

        rescored = suggestion(id="opp2", primary_contact_id="c2", **cluster)
        elsewhere = suggestion(id="opp3", account_id="acct-2", **cluster)

        assert sql_uow.opportunities.find_open(rescored.dedup_key).id == "opp1"
        assert sql_uow.opportunities.find_open(elsewhere.dedup_key) is None

    def test_expected_status_mismatch(self, sql_uow, contacts):
        with sql_uow.transaction():
            sql_uow.opportunities.create(suggestion(status=OpportunityStatus.VIEWED))

        with pytest.raises(ConflictError):
            sql_uow.opportunities.update_status(
                "opp1", OpportunityStatus.ACCEPTED, expected_status=OpportunityStatus.PENDING
            )

    def test_pending_excludes_expired(self, sql_uow, contacts, now):
        with sql_uow.transaction():
            sql_uow.opportunities.create(suggestion(expires_at=now + timedelta(days=1)))
            sql_uow.opportunities.create(suggestion(id="opp2", path_signature="x", expires_at=now - timedelta(days=1)))

        assert [s.id for s in sql_uow.opportunities.list_pending(ACCOUNT, now)] == ["opp1"]

    def test_feedback_once(self, sql_uow, contacts):
        with sql_uow.transaction():
            sql_uow.opportunities.create(suggestion())
        feedback = OpportunityFeedback("opp1", 5, ActualOutcome.SUCCESS, 70.0)
        with sql_uow.transaction():
            sql_uow.opportunities.save_feedback(feedback)

        with pytest.raises(ConflictError):
            sql_uow.opportunities.save_feedback(feedback)
        assert sql_uow.opportunities.get_feedback("opp1").actual_outcome == ActualOutcome.SUCCESS


class TestSqlNotifications:

    def test_settings_and_deliveries(self, sql_uow):
        settings = NotificationSettings(user_id="u1", enabled_categories=[OpportunityCategory.INTRODUCTION])
        with sql_uow.transaction():
            sql_uow.notifications.save_settings(ACCOUNT, settings)
            sql_uow.notifications.mark_sent("u1", ["opp1", "opp2", "opp1"])
            sql_uow.notifications.mark_dismissed("u1", "opp3")

        assert sql_uow.notifications.get_settings("u1") == settings
        assert sql_uow.notifications.users_for_account(ACCOUNT) == ["u1"]
        assert sql_uow.notifications.sent_ids("u1") == {"opp1", "opp2", "opp3"}
        assert sql_uow.notifications.get_settings("nobody") is None


class TestSqlConfigs:

    def test_versions_survive_a_new_unit_of_work(self, sql_uow, session_factory):
        config = EngineConfig().next_version(category_multipliers={"INTRODUCTION": 0.9})
        with sql_uow.transaction():
            sql_uow.configs.append(ACCOUNT, config.version, config.model_dump(mode="json"))

        other = SqlUnitOfWork(session_factory=session_factory)
        try:
            stored = EngineConfig.model_validate(other.configs.latest(ACCOUNT))
            assert stored == config
            assert other.configs.versions(ACCOUNT) == [2]
            assert other.configs.latest("acct-2") is None
        finally:
            other.close()

    def test_duplicate_version_conflicts(self, sql_uow):
        payload = EngineConfig(version=2).model_dump(mode="json")
        with sql_uow.transaction():
            sql_uow.configs.append(ACCOUNT, 2, payload)

        with pytest.raises(ConflictError):
            sql_uow.configs.append(ACCOUNT, 2, payload)
