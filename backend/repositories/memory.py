"""
In-memory repositories.

Used by the test suite and for local experiments. Records are copied in and
out so callers never share state with the store, mirroring a real database.
"""

import copy
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from lib.exceptions import ConflictError, NotFoundError, ValidationError
from models.domain import (
    CandidateStatus,
    Contact,
    ContactStatus,
    NotificationSettings,
    OpportunityFeedback,
    OpportunityStatus,
    OpportunitySuggestion,
    PotentialRelationship,
    Relationship,
)
from repositories.base import (
    ConfigRepository,
    ContactRepository,
    DedupKey,
    NotificationRepository,
    OpportunityRepository,
    RelationshipRepository,
    UnitOfWork,
)

_CONTACT_FIELDS = {f.name for f in fields(Contact)}


@dataclass
class MemoryStore:
    contacts: Dict[str, Contact] = field(default_factory=dict)
    edges: Dict[str, Relationship] = field(default_factory=dict)
    candidates: Dict[str, PotentialRelationship] = field(default_factory=dict)
    opportunities: Dict[str, OpportunitySuggestion] = field(default_factory=dict)
    feedback: Dict[str, OpportunityFeedback] = field(default_factory=dict)
    settings: Dict[str, Tuple[str, NotificationSettings]] = field(default_factory=dict)
    deliveries: Dict[str, Dict[str, str]] = field(default_factory=dict)
    configs: Dict[str, Dict[int, Dict[str, Any]]] = field(default_factory=dict)

    def snapshot(self) -> "MemoryStore":
        return copy.deepcopy(self)

    def restore(self, other: "MemoryStore") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))


class InMemoryContactRepository(ContactRepository):

    def __init__(self, store: MemoryStore):
        self.store = store

    def add(self, contact: Contact) -> Contact:
        self.store.contacts[contact.id] = copy.deepcopy(contact)
        return contact

    def list(self, account_id: str, status: Optional[ContactStatus] = None) -> List[Contact]:
        return [
            copy.deepcopy(c)
            for c in self.store.contacts.values()
            if c.account_id == account_id and (status is None or c.status == status)
        ]

    def get(self, contact_id: str) -> Optional[Contact]:
        contact = self.store.contacts.get(contact_id)
        return copy.deepcopy(contact) if contact else None

    def update(self, contact_id: str, patch: Dict[str, Any]) -> Contact:
        contact = self.store.contacts.get(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        unknown = set(patch) - _CONTACT_FIELDS
        if unknown:
            raise ValidationError(f"Unknown contact fields: {sorted(unknown)}")
        for key, value in patch.items():
            setattr(contact, key, copy.deepcopy(value))
        return copy.deepcopy(contact)

    def account_ids(self) -> List[str]:
        return sorted({c.account_id for c in self.store.contacts.values()})


class InMemoryRelationshipRepository(RelationshipRepository):

    def __init__(self, store: MemoryStore):
        self.store = store

    def list_edges(self, contact_id: str) -> List[Relationship]:
        return [
            copy.deepcopy(e)
            for e in self.store.edges.values()
            if contact_id in (e.contact_id, e.related_contact_id)
        ]

    def list_account_edges(self, account_id: str) -> List[Relationship]:
        members = {c.id for c in self.store.contacts.values() if c.account_id == account_id}
        return [copy.deepcopy(e) for e in self.store.edges.values() if e.contact_id in members]

    def create(self, edge: Relationship) -> Relationship:
        for existing in self.store.edges.values():
            if (existing.contact_id, existing.related_contact_id, existing.type) == (
                edge.contact_id, edge.related_contact_id, edge.type
            ):
                raise ConflictError(
                    "Relationship already exists",
                    {"contact_id": edge.contact_id, "related_contact_id": edge.related_contact_id},
                )
        self.store.edges[edge.id] = copy.deepcopy(edge)
        return edge

    def exists_between(self, contact_a: str, contact_b: str) -> bool:
        pair = {contact_a, contact_b}
        return any({e.contact_id, e.related_contact_id} == pair for e in self.store.edges.values())

    def find_candidate(self, fingerprint: str) -> Optional[PotentialRelationship]:
        for candidate in self.store.candidates.values():
            if candidate.fingerprint == fingerprint:
                return copy.deepcopy(candidate)
        return None

    def save_candidate(self, candidate: PotentialRelationship) -> PotentialRelationship:
        for existing in self.store.candidates.values():
            if existing.fingerprint == candidate.fingerprint and existing.id != candidate.id:
                raise ConflictError("Candidate fingerprint already recorded", {"fingerprint": candidate.fingerprint})
        self.store.candidates[candidate.id] = copy.deepcopy(candidate)
        return candidate

    def get_candidate(self, candidate_id: str) -> Optional[PotentialRelationship]:
        candidate = self.store.candidates.get(candidate_id)
        return copy.deepcopy(candidate) if candidate else None

    def update_candidate(
        self,
        candidate_id: str,
        status: CandidateStatus,
        reviewed_at: datetime,
        expected_status: Optional[CandidateStatus] = None,
    ) -> PotentialRelationship:
        candidate = self.store.candidates.get(candidate_id)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found")
        if expected_status is not None and candidate.status != expected_status:
            raise ConflictError(
                f"Candidate {candidate_id} is {candidate.status.value}",
                {"expected": expected_status.value, "actual": candidate.status.value},
            )
        candidate.status = status
        candidate.reviewed_at = reviewed_at
        return copy.deepcopy(candidate)

    def list_candidates(
        self, account_id: str, status: Optional[CandidateStatus] = None
    ) -> List[PotentialRelationship]:
        return [
            copy.deepcopy(c)
            for c in self.store.candidates.values()
            if c.account_id == account_id and (status is None or c.status == status)
        ]

    def pending_for_pair(self, contact_a: str, contact_b: str) -> List[PotentialRelationship]:
        pair = {contact_a, contact_b}
        matches = [
            c for c in self.store.candidates.values()
            if c.status == CandidateStatus.PENDING and {c.contact_id, c.related_contact_id} == pair
        ]
        matches.sort(key=lambda c: (c.created_at is None, c.created_at or datetime.min, c.id))
        return [copy.deepcopy(c) for c in matches]

    def refresh_candidate(self, candidate_id: str, candidate: PotentialRelationship) -> PotentialRelationship:
        existing = self.store.candidates.get(candidate_id)
        if existing is None:
            raise NotFoundError(f"Candidate {candidate_id} not found")
        if existing.status != CandidateStatus.PENDING:
            raise ConflictError(
                f"Candidate {candidate_id} is {existing.status.value}",
                {"expected": CandidateStatus.PENDING.value, "actual": existing.status.value},
            )
        for other in self.store.candidates.values():
            if other.fingerprint == candidate.fingerprint and other.id != candidate_id:
                raise ConflictError("Candidate fingerprint already recorded", {"fingerprint": candidate.fingerprint})
        existing.inferred_type = candidate.inferred_type
        existing.confidence = candidate.confidence
        existing.evidence = copy.deepcopy(candidate.evidence)
        existing.fingerprint = candidate.fingerprint
        return copy.deepcopy(existing)


class InMemoryOpportunityRepository(OpportunityRepository):

    def __init__(self, store: MemoryStore):
        self.store = store

    def create(self, suggestion: OpportunitySuggestion) -> OpportunitySuggestion:
        self.store.opportunities[suggestion.id] = copy.deepcopy(suggestion)
        return suggestion

    def get(self, opportunity_id: str) -> Optional[OpportunitySuggestion]:
        suggestion = self.store.opportunities.get(opportunity_id)
        return copy.deepcopy(suggestion) if suggestion else None

    def list(self, account_id: str, since: Optional[datetime] = None) -> List[OpportunitySuggestion]:
        return [
            copy.deepcopy(s)
            for s in self.store.opportunities.values()
            if s.account_id == account_id
            and (since is None or (s.created_at is not None and s.created_at >= since))
        ]

    def list_pending(self, account_id: str, now: datetime) -> List[OpportunitySuggestion]:
        return [
            copy.deepcopy(s)
            for s in self.store.opportunities.values()
            if s.account_id == account_id
            and not s.status.is_terminal
            and (s.expires_at is None or s.expires_at > now)
        ]

    def update_status(
        self,
        opportunity_id: str,
        status: OpportunityStatus,
        metadata: Optional[Dict[str, Any]] = None,
        expected_status: Optional[OpportunityStatus] = None,
        timestamps: Optional[Dict[str, datetime]] = None,
    ) -> OpportunitySuggestion:
        suggestion = self.store.opportunities.get(opportunity_id)
        if suggestion is None:
            raise NotFoundError(f"Opportunity {opportunity_id} not found")
        if expected_status is not None and suggestion.status != expected_status:
            raise ConflictError(
                f"Opportunity {opportunity_id} is {suggestion.status.value}",
                {"expected": expected_status.value, "actual": suggestion.status.value},
            )
        suggestion.status = status
        if metadata:
            suggestion.metadata.update(copy.deepcopy(metadata))
        for name, value in (timestamps or {}).items():
            setattr(suggestion, name, value)
        return copy.deepcopy(suggestion)

    def find_open(self, dedup_key: DedupKey) -> Optional[OpportunitySuggestion]:
        for suggestion in self.store.opportunities.values():
            if suggestion.dedup_key == dedup_key and not suggestion.status.is_terminal:
                return copy.deepcopy(suggestion)
        return None

    def save_feedback(self, feedback: OpportunityFeedback) -> OpportunityFeedback:
        if feedback.opportunity_id in self.store.feedback:
            raise ConflictError(f"Feedback already recorded for {feedback.opportunity_id}")
        self.store.feedback[feedback.opportunity_id] = copy.deepcopy(feedback)
        return feedback

    def get_feedback(self, opportunity_id: str) -> Optional[OpportunityFeedback]:
        feedback = self.store.feedback.get(opportunity_id)
        return copy.deepcopy(feedback) if feedback else None


class InMemoryNotificationRepository(NotificationRepository):

    def __init__(self, store: MemoryStore):
        self.store = store

    def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        entry = self.store.settings.get(user_id)
        return copy.deepcopy(entry[1]) if entry else None

    def save_settings(self, account_id: str, settings: NotificationSettings) -> NotificationSettings:
        self.store.settings[settings.user_id] = (account_id, copy.deepcopy(settings))
        return settings

    def sent_ids(self, user_id: str) -> Set[str]:
        return set(self.store.deliveries.get(user_id, {}))

    def mark_sent(self, user_id: str, opportunity_ids: List[str]) -> None:
        deliveries = self.store.deliveries.setdefault(user_id, {})
        for opportunity_id in opportunity_ids:
            deliveries.setdefault(opportunity_id, "sent")

    def mark_dismissed(self, user_id: str, opportunity_id: str) -> None:
        self.store.deliveries.setdefault(user_id, {})[opportunity_id] = "dismissed"

    def users_for_account(self, account_id: str) -> List[str]:
        return sorted(user_id for user_id, (acct, _) in self.store.settings.items() if acct == account_id)


class InMemoryConfigRepository(ConfigRepository):

    def __init__(self, store: MemoryStore):
        self.store = store

    def latest(self, account_id: str) -> Optional[Dict[str, Any]]:
        history = self.store.configs.get(account_id)
        if not history:
            return None
        return copy.deepcopy(history[max(history)])

    def append(self, account_id: str, version: int, payload: Dict[str, Any]) -> None:
        history = self.store.configs.setdefault(account_id, {})
        if version in history:
            raise ConflictError(
                f"Config version {version} already recorded for account {account_id}",
                {"account_id": account_id, "version": version},
            )
        history[version] = copy.deepcopy(payload)

    def versions(self, account_id: str) -> List[int]:
        return sorted(self.store.configs.get(account_id, {}))


class InMemoryUnitOfWork(UnitOfWork):
    """All repositories over one store; a failed transaction restores the snapshot."""

    def __init__(self, store: Optional[MemoryStore] = None):
        self.store = store or MemoryStore()
        self.contacts = InMemoryContactRepository(self.store)
        self.relationships = InMemoryRelationshipRepository(self.store)
        self.opportunities = InMemoryOpportunityRepository(self.store)
        self.notifications = InMemoryNotificationRepository(self.store)
        self.configs = InMemoryConfigRepository(self.store)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        saved = self.store.snapshot()
        try:
            yield
        except Exception:
            self.store.restore(saved)
            raise
