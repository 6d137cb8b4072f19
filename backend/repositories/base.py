"""
Repository interfaces consumed by the engine services.

Services only ever talk to these abstractions; ``memory`` and ``sql`` provide
the concrete stores.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from models.domain import (
    CandidateStatus,
    Contact,
    ContactStatus,
    Notification,
    NotificationSettings,
    OpportunityCategory,
    OpportunityFeedback,
    OpportunityStatus,
    OpportunitySuggestion,
    PotentialRelationship,
    Relationship,
)

DedupKey = Tuple[str, OpportunityCategory, Optional[str], str]


class ContactRepository(ABC):

    @abstractmethod
    def list(self, account_id: str, status: Optional[ContactStatus] = None) -> List[Contact]:
        ...

    @abstractmethod
    def get(self, contact_id: str) -> Optional[Contact]:
        ...

    @abstractmethod
    def update(self, contact_id: str, patch: Dict[str, Any]) -> Contact:
        """Apply a partial update; raises NotFoundError for unknown ids."""

    @abstractmethod
    def account_ids(self) -> List[str]:
        """Distinct account ids that own at least one contact."""


class RelationshipRepository(ABC):

    @abstractmethod
    def list_edges(self, contact_id: str) -> List[Relationship]:
        """Edges where the contact is on either end."""

    @abstractmethod
    def list_account_edges(self, account_id: str) -> List[Relationship]:
        ...

    @abstractmethod
    def create(self, edge: Relationship) -> Relationship:
        """Insert an edge; raises ConflictError on a duplicate (contact, related, type)."""

    @abstractmethod
    def exists_between(self, contact_a: str, contact_b: str) -> bool:
        """True when any edge connects the two contacts in either direction."""

    @abstractmethod
    def find_candidate(self, fingerprint: str) -> Optional[PotentialRelationship]:
        ...

    @abstractmethod
    def save_candidate(self, candidate: PotentialRelationship) -> PotentialRelationship:
        ...

    @abstractmethod
    def get_candidate(self, candidate_id: str) -> Optional[PotentialRelationship]:
        ...

    @abstractmethod
    def update_candidate(
        self,
        candidate_id: str,
        status: CandidateStatus,
        reviewed_at: datetime,
        expected_status: Optional[CandidateStatus] = None,
    ) -> PotentialRelationship:
        """Set a candidate's status; raises ConflictError if ``expected_status`` no longer holds."""

    @abstractmethod
    def list_candidates(
        self, account_id: str, status: Optional[CandidateStatus] = None
    ) -> List[PotentialRelationship]:
        ...

    @abstractmethod
    def pending_for_pair(self, contact_a: str, contact_b: str) -> List[PotentialRelationship]:
        """PENDING candidates between the two contacts in either orientation, oldest first."""

    @abstractmethod
    def refresh_candidate(self, candidate_id: str, candidate: PotentialRelationship) -> PotentialRelationship:
        """Replace a PENDING candidate's type, confidence, evidence and fingerprint in place.

        Raises ConflictError when the stored candidate is no longer PENDING or
        the new fingerprint belongs to another candidate.
        """

    def neighbors_of(self, contact_id: str) -> Set[str]:
        """Contacts connected to ``contact_id`` through outgoing or incoming edges."""
        neighbors = set()
        for edge in self.list_edges(contact_id):
            other = edge.other_end(contact_id)
            if other and other != contact_id:
                neighbors.add(other)
        return neighbors


class OpportunityRepository(ABC):

    @abstractmethod
    def create(self, suggestion: OpportunitySuggestion) -> OpportunitySuggestion:
        ...

    @abstractmethod
    def get(self, opportunity_id: str) -> Optional[OpportunitySuggestion]:
        ...

    @abstractmethod
    def list(self, account_id: str, since: Optional[datetime] = None) -> List[OpportunitySuggestion]:
        ...

    @abstractmethod
    def list_pending(self, account_id: str, now: datetime) -> List[OpportunitySuggestion]:
        """Non-terminal suggestions whose expiry has not passed."""

    @abstractmethod
    def update_status(
        self,
        opportunity_id: str,
        status: OpportunityStatus,
        metadata: Optional[Dict[str, Any]] = None,
        expected_status: Optional[OpportunityStatus] = None,
        timestamps: Optional[Dict[str, datetime]] = None,
    ) -> OpportunitySuggestion:
        """Transition a suggestion; raises ConflictError if ``expected_status`` no longer holds."""

    @abstractmethod
    def find_open(self, dedup_key: DedupKey) -> Optional[OpportunitySuggestion]:
        """A non-terminal suggestion with the same dedup key, if any.

        A key without a contact matches the company cluster for that path.
        """

    @abstractmethod
    def save_feedback(self, feedback: OpportunityFeedback) -> OpportunityFeedback:
        """Store feedback; raises ConflictError when the opportunity already has some."""

    @abstractmethod
    def get_feedback(self, opportunity_id: str) -> Optional[OpportunityFeedback]:
        ...


class NotificationRepository(ABC):

    @abstractmethod
    def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        ...

    @abstractmethod
    def save_settings(self, account_id: str, settings: NotificationSettings) -> NotificationSettings:
        ...

    @abstractmethod
    def sent_ids(self, user_id: str) -> Set[str]:
        """Opportunity ids already sent to, or dismissed by, the user."""

    @abstractmethod
    def mark_sent(self, user_id: str, opportunity_ids: List[str]) -> None:
        ...

    @abstractmethod
    def mark_dismissed(self, user_id: str, opportunity_id: str) -> None:
        ...

    @abstractmethod
    def users_for_account(self, account_id: str) -> List[str]:
        ...


class NotificationSink(ABC):
    """Outbound delivery channel."""

    @abstractmethod
    def send(self, notification: Notification) -> None:
        ...


class ConfigRepository(ABC):
    """Append-only history of serialized engine configs per account."""

    @abstractmethod
    def latest(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Payload of the highest stored version, or None when the account uses the default."""

    @abstractmethod
    def append(self, account_id: str, version: int, payload: Dict[str, Any]) -> None:
        """Store a new version; raises ConflictError if the version is already taken."""

    @abstractmethod
    def versions(self, account_id: str) -> List[int]:
        ...


class UnitOfWork(ABC):
    """Groups repository writes into a transaction per chunk."""

    contacts: ContactRepository
    relationships: RelationshipRepository
    opportunities: OpportunityRepository
    notifications: NotificationRepository
    configs: ConfigRepository

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        ...
