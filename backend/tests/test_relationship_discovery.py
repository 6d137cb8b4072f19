"""Tests for RelationshipDiscoveryService."""

import pytest

from lib.exceptions import ConflictError, NotFoundError
from models.domain import CandidateStatus, ContactStatus, Relationship, RelationshipType
from services.relationship_discovery import RelationshipDiscoveryService, fingerprint_for

ACCOUNT = "acct-1"


@pytest.fixture
def service(uow, config, clock):
    return RelationshipDiscoveryService(uow, config, clock)


@pytest.fixture
def colleagues(make_contact):
    """Two people at Acme with acme.com addresses."""
    a = make_contact(company="Acme", email="ann@acme.com")
    b = make_contact(company="Acme Inc.", email="bob@acme.com")
    return a, b


class TestEvaluate:

    def test_colleagues_at_same_company(self, service, colleagues, now):
        """Shared company and domain give a COLLEAGUE candidate at 0.5 confidence."""
        a, b = colleagues

        candidate = service.evaluate(a, b)

        assert candidate is not None
        assert candidate.confidence == pytest.approx(0.5)
        assert candidate.confidence >= 0.5
        assert candidate.inferred_type == RelationshipType.COLLEAGUE
        assert candidate.status == CandidateStatus.PENDING
        assert candidate.created_at == now

    def test_weak_evidence_is_dropped(self, service, make_contact):
        a = make_contact(country="USA")
        b = make_contact(country="USA")

        assert service.evaluate(a, b) is None

    def test_same_contact_is_never_a_candidate(self, service, colleagues):
        a, _ = colleagues

        assert service.evaluate(a, a) is None

    def test_location_dominant_pair_is_acquaintance(self, service, make_contact):
        a = make_contact(city="Austin", position="VP Sales")
        b = make_contact(city="Austin", position="VP Marketing")
        shared = {"x1", "x2", "x3", "x4", "x5"}

        candidate = service.evaluate(a, b, shared, shared)

        assert candidate.inferred_type == RelationshipType.ACQUAINTANCE
        assert 0.0 <= candidate.confidence <= 1.0

    def test_fingerprint_ignores_pair_order(self, service, colleagues):
        a, b = colleagues

        forward = service.evaluate(a, b)
        backward = service.evaluate(b, a)

        assert forward.fingerprint == backward.fingerprint
        assert forward.fingerprint == fingerprint_for(b.id, a.id, forward.evidence)


class TestDiscoverBatch:

    def test_second_run_creates_nothing(self, service, colleagues):
        first = service.discover_batch(ACCOUNT)
        second = service.discover_batch(ACCOUNT)

        assert first.created == 1
        assert second.created == 0
        assert second.ok

    def test_already_connected_pairs_are_skipped(self, service, uow, colleagues):
        a, b = colleagues
        uow.relationships.create(Relationship(contact_id=a.id, related_contact_id=b.id, type=RelationshipType.FRIEND))

        result = service.discover_batch(ACCOUNT)

        assert result.created == 0
        assert result.processed == 0

    def test_archived_contacts_are_ignored(self, service, make_contact):
        make_contact(company="Acme")
        make_contact(company="Acme", status=ContactStatus.ARCHIVED)

        result = service.discover_batch(ACCOUNT)

        assert result.created == 0

    def test_failing_chunk_is_recorded_and_batch_continues(self, uow, config, clock, make_contact):
        for _ in range(3):
            make_contact(company="Acme")
        service = RelationshipDiscoveryService(uow, config, clock, chunk_size=1)
        original = uow.relationships.save_candidate

        def flaky(candidate):
            if (candidate.contact_id, candidate.related_contact_id) == ("c001", "c002"):
                raise RuntimeError("disk full")
            return original(candidate)

        uow.relationships.save_candidate = flaky

        result = service.discover_batch(ACCOUNT)

        assert result.processed == 3
        assert result.created == 2
        assert result.failed == 1
        assert result.errors[0]["chunk"] == 0
        assert result.errors[0]["item_ids"] == ["c001:c002"]
        assert result.errors[0]["error_type"] == "PartialBatchFailure"

    def test_large_accounts_only_compare_blocked_pairs(self, uow, config, clock, make_contact):
        a = make_contact(company="Acme")
        b = make_contact(company="Acme")
        make_contact(company="Globex")
        service = RelationshipDiscoveryService(uow, config, clock, pair_ceiling=2)

        pairs = service._candidate_pairs(uow.contacts.list(ACCOUNT))

        assert pairs == [(a.id, b.id)]


class TestReview:

    def test_rejected_candidate_never_resurfaces(self, service, colleagues):
        service.discover_batch(ACCOUNT)
        candidate = service.list_pending(ACCOUNT)[0]

        service.reject(candidate.id)
        rerun = service.discover_batch(ACCOUNT)

        assert rerun.created == 0
        assert service.list_pending(ACCOUNT) == []

    def test_approve_creates_one_mutual_edge(self, service, uow, colleagues):
        a, b = colleagues
        service.discover_batch(ACCOUNT)
        candidate = service.list_pending(ACCOUNT)[0]

        edge = service.approve(candidate.id, is_mutual=True)

        edges = uow.relationships.list_account_edges(ACCOUNT)
        assert len(edges) == 1
        assert edge.is_mutual
        assert edge.is_verified
        assert edge.source == "discovery_approved"
        assert edge.strength == pytest.approx(0.5)
        assert edge.type == RelationshipType.COLLEAGUE
        assert b.id in uow.relationships.neighbors_of(a.id)
        assert a.id in uow.relationships.neighbors_of(b.id)
        assert service.list_pending(ACCOUNT) == []
        assert uow.relationships.get_candidate(candidate.id).status == CandidateStatus.APPROVED

    def test_approve_twice_conflicts(self, service, uow, colleagues):
        service.discover_batch(ACCOUNT)
        candidate = service.list_pending(ACCOUNT)[0]
        service.approve(candidate.id)

        with pytest.raises(ConflictError):
            service.approve(candidate.id)
        assert len(uow.relationships.list_account_edges(ACCOUNT)) == 1

    def test_reject_after_approve_conflicts(self, service, colleagues):
        service.discover_batch(ACCOUNT)
        candidate = service.list_pending(ACCOUNT)[0]
        service.approve(candidate.id)

        with pytest.raises(ConflictError):
            service.reject(candidate.id)

    def test_unknown_candidate(self, service):
        with pytest.raises(NotFoundError):
            service.approve("missing")
        with pytest.raises(NotFoundError):
            service.reject("missing")


class TestDiscoverForContact:

    def test_persists_and_sorts_by_confidence(self, service, uow, make_contact):
        a = make_contact(company="Acme", email="a@acme.com")
        make_contact(company="Acme", email="b@acme.com")
        make_contact(company="Acme")

        found = service.discover_for_contact(a.id)

        assert [c.confidence for c in found] == sorted((c.confidence for c in found), reverse=True)
        assert len(uow.relationships.list_candidates(ACCOUNT, CandidateStatus.PENDING)) == 2

    def test_unknown_contact(self, service):
        with pytest.raises(NotFoundError):
            service.discover_for_contact("nobody")


class TestOnePendingPerPair:

    @pytest.fixture
    def same_domain(self, make_contact):
        """Shared corporate domain and city, no company on file yet."""
        a = make_contact(email="ann@acme.com", city="Austin")
        b = make_contact(email="bob@acme.com", city="Austin")
        return a, b

    def test_new_evidence_refreshes_the_pending_candidate(self, service, uow, same_domain):
        a, b = same_domain
        first = service.discover_batch(ACCOUNT)
        original = service.list_pending(ACCOUNT)[0]
        uow.contacts.update(a.id, {"company": "Acme"})
        uow.contacts.update(b.id, {"company": "Acme"})

        second = service.discover_batch(ACCOUNT)

        pending = service.list_pending(ACCOUNT)
        assert first.created == 1
        assert second.created == 0
        assert [c.id for c in pending] == [original.id]
        assert pending[0].confidence == pytest.approx(0.65)
        assert pending[0].fingerprint != original.fingerprint
        assert pending[0].evidence[0].signal_type.value == "same_company"

    def test_approving_refreshed_candidate_creates_one_edge(self, service, uow, same_domain):
        a, b = same_domain
        service.discover_batch(ACCOUNT)
        uow.contacts.update(a.id, {"company": "Acme"})
        uow.contacts.update(b.id, {"company": "Acme"})
        service.discover_batch(ACCOUNT)

        service.approve(service.list_pending(ACCOUNT)[0].id)
        rerun = service.discover_batch(ACCOUNT)

        assert len(uow.relationships.list_account_edges(ACCOUNT)) == 1
        assert service.list_pending(ACCOUNT) == []
        assert rerun.created == 0

    def test_refresh_from_single_contact_discovery(self, service, uow, same_domain):
        a, b = same_domain
        original = service.discover_for_contact(a.id)[0]
        uow.contacts.update(b.id, {"company": "Acme"})
        uow.contacts.update(a.id, {"company": "Acme"})

        refreshed = service.discover_for_contact(b.id)

        assert [c.id for c in refreshed] == [original.id]
        assert len(uow.relationships.list_candidates(ACCOUNT)) == 1

    def test_rejected_evidence_stays_suppressed(self, service, uow, same_domain):
        a, b = same_domain
        service.discover_batch(ACCOUNT)
        uow.contacts.update(a.id, {"company": "Acme"})
        uow.contacts.update(b.id, {"company": "Acme"})
        service.discover_batch(ACCOUNT)

        service.reject(service.list_pending(ACCOUNT)[0].id)
        rerun = service.discover_batch(ACCOUNT)

        assert rerun.created == 0
        assert service.list_pending(ACCOUNT) == []

    def test_approve_supersedes_other_pending_candidates(self, service, uow, same_domain, now):
        a, b = same_domain
        older = service.evaluate(a, b)
        uow.relationships.save_candidate(older)
        uow.contacts.update(a.id, {"company": "Acme"})
        uow.contacts.update(b.id, {"company": "Acme"})
        newer = service.evaluate(uow.contacts.get(b.id), uow.contacts.get(a.id))
        uow.relationships.save_candidate(newer)

        service.approve(newer.id)

        assert service.list_pending(ACCOUNT) == []
        assert uow.relationships.get_candidate(older.id).status == CandidateStatus.SUPERSEDED
        assert uow.relationships.get_candidate(older.id).reviewed_at == now
        with pytest.raises(ConflictError):
            service.approve(older.id)
        assert len(uow.relationships.list_account_edges(ACCOUNT)) == 1

    def test_approve_refuses_already_connected_pair(self, service, uow, same_domain):
        a, b = same_domain
        candidate = service.evaluate(a, b)
        uow.relationships.save_candidate(candidate)
        uow.relationships.create(Relationship(contact_id=b.id, related_contact_id=a.id, type=RelationshipType.FRIEND))

        with pytest.raises(ConflictError) as exc_info:
            service.approve(candidate.id)

        assert exc_info.value.details == {"contact_id": a.id, "related_contact_id": b.id}
        assert uow.relationships.get_candidate(candidate.id).status == CandidateStatus.PENDING
        assert len(uow.relationships.list_account_edges(ACCOUNT)) == 1
