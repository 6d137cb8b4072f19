"""
Domain records for the network engine.

These are the snapshots the core services operate on. Repositories translate
between them and the ORM rows in ``models.orm``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4


def new_id() -> str:
    return str(uuid4())


class ContactStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class ContactTier(str, Enum):
    """Coarse manual priority bucket"""
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"


class RelationshipType(str, Enum):
    COLLEAGUE = "COLLEAGUE"
    ACQUAINTANCE = "ACQUAINTANCE"
    CLIENT = "CLIENT"
    PARTNER = "PARTNER"
    MENTOR = "MENTOR"
    MENTEE = "MENTEE"
    INVESTOR = "INVESTOR"
    FRIEND = "FRIEND"
    PROSPECT = "PROSPECT"
    VENDOR = "VENDOR"
    COMPETITOR = "COMPETITOR"
    FAMILY = "FAMILY"


class SignalType(str, Enum):
    """Evidence signals in declaration order (used for tie breaking)"""
    SAME_COMPANY = "same_company"
    SAME_EMAIL_DOMAIN = "same_email_domain"
    SAME_LOCATION = "same_location"
    ROLE_SIMILARITY = "role_similarity"
    MUTUAL_CONNECTIONS = "mutual_connections"


class CandidateStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"


class OpportunityFlag(str, Enum):
    RECENT_JOB_CHANGE = "RECENT_JOB_CHANGE"
    ROLE_EXPANSION_POTENTIAL = "ROLE_EXPANSION_POTENTIAL"
    COMPANY_GROWTH = "COMPANY_GROWTH"
    RECONNECTION_OPPORTUNITY = "RECONNECTION_OPPORTUNITY"
    DECISION_MAKER = "DECISION_MAKER"
    WARM_INTRO_AVAILABLE = "WARM_INTRO_AVAILABLE"


class OpportunityCategory(str, Enum):
    INTRODUCTION = "INTRODUCTION"
    RECONNECTION = "RECONNECTION"
    BUSINESS_MATCH = "BUSINESS_MATCH"
    STRATEGIC_MOVE = "STRATEGIC_MOVE"


class OpportunityType(str, Enum):
    WARM_INTRODUCTION = "WARM_INTRODUCTION"
    RECONNECT = "RECONNECT"
    COMPANY_CLUSTER = "COMPANY_CLUSTER"


class OpportunityPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return ["LOW", "MEDIUM", "HIGH", "URGENT"].index(self.value)


class OpportunityStatus(str, Enum):
    PENDING = "PENDING"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = {
    OpportunityStatus.COMPLETED,
    OpportunityStatus.REJECTED,
    OpportunityStatus.EXPIRED,
}

ACCEPTED_STATUSES = {
    OpportunityStatus.ACCEPTED,
    OpportunityStatus.IN_PROGRESS,
    OpportunityStatus.COMPLETED,
}


class ActualOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    NO_RESULT = "NO_RESULT"
    NEGATIVE = "NEGATIVE"


class NotificationKind(str, Enum):
    URGENT_OPPORTUNITY = "URGENT_OPPORTUNITY"
    NEW_OPPORTUNITY = "NEW_OPPORTUNITY"
    OPPORTUNITY_EXPIRING = "OPPORTUNITY_EXPIRING"
    DAILY_DIGEST = "DAILY_DIGEST"


@dataclass
class Contact:
    account_id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    industry: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    source: str = "manual"
    status: ContactStatus = ContactStatus.ACTIVE
    tier: Optional[ContactTier] = None
    relationship_type: Optional[RelationshipType] = None
    last_contact_date: Optional[datetime] = None
    connection_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    outreach_sent: int = 0
    outreach_responded: int = 0
    campaign_contacts: int = 0
    campaign_responses: int = 0
    influence_score: Optional[float] = None
    betweenness_centrality: Optional[float] = None
    total_connections: Optional[int] = None
    # Derived, written only by the contact scorer
    priority_score: Optional[float] = None
    opportunity_score: Optional[float] = None
    strategic_value: Optional[float] = None
    opportunity_flags: Set[OpportunityFlag] = field(default_factory=set)
    scoring_factors: Dict[str, Any] = field(default_factory=dict)
    last_scored_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or (self.email or self.id)


@dataclass
class Relationship:
    """A single logical edge; ``is_mutual`` marks it as holding both ways"""
    contact_id: str
    related_contact_id: str
    type: RelationshipType
    strength: float = 0.5
    confidence: float = 1.0
    notes: Optional[str] = None
    is_verified: bool = False
    is_mutual: bool = False
    source: str = "manual"
    id: str = field(default_factory=new_id)

    def other_end(self, contact_id: str) -> Optional[str]:
        if contact_id == self.contact_id:
            return self.related_contact_id
        if contact_id == self.related_contact_id:
            return self.contact_id
        return None


@dataclass
class Signal:
    signal_type: SignalType
    score: float
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {"signal_type": self.signal_type.value, "score": self.score, "detail": self.detail}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signal":
        return cls(SignalType(data["signal_type"]), float(data["score"]), data.get("detail", ""))


@dataclass
class PotentialRelationship:
    account_id: str
    contact_id: str
    related_contact_id: str
    inferred_type: RelationshipType
    confidence: float
    evidence: List[Signal]
    fingerprint: str
    status: CandidateStatus = CandidateStatus.PENDING
    source: str = "auto_discovery"
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)


@dataclass
class OpportunitySuggestion:
    account_id: str
    category: OpportunityCategory
    type: OpportunityType
    title: str
    confidence_score: float
    impact_score: float
    priority: OpportunityPriority
    primary_contact_id: str
    path_signature: str = ""
    description: str = ""
    urgency_score: float = 50.0
    secondary_contact_id: Optional[str] = None
    reasoning: List[str] = field(default_factory=list)
    narrative: str = ""
    status: OpportunityStatus = OpportunityStatus.PENDING
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    acted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    @property
    def dedup_key(self):
        # A cluster is keyed by its company, not by whichever member ranks first
        anchor = None if self.type == OpportunityType.COMPANY_CLUSTER else self.primary_contact_id
        return (self.account_id, self.category, anchor, self.path_signature)

    @property
    def composite_score(self) -> float:
        return self.confidence_score * self.impact_score * (self.urgency_score / 100)


@dataclass
class OpportunityFeedback:
    opportunity_id: str
    rating: int
    actual_outcome: ActualOutcome
    actual_impact: float
    time_invested: float = 0.0
    feedback: str = ""
    user_id: Optional[str] = None
    would_recommend: Optional[bool] = None
    created_at: Optional[datetime] = None


@dataclass
class LearningSignal:
    opportunity_id: str
    category: OpportunityCategory
    type: OpportunityType
    predicted_confidence: float
    predicted_impact: float
    actual_outcome: ActualOutcome
    actual_impact: float
    rating: int
    success: bool


@dataclass
class NotificationSettings:
    user_id: str
    enabled_categories: List[OpportunityCategory] = field(default_factory=lambda: list(OpportunityCategory))
    min_confidence: float = 0.4
    min_impact: float = 60.0
    daily_digest: bool = True
    real_time_alerts: bool = True
    urgent_only: bool = False


@dataclass
class Notification:
    kind: NotificationKind
    title: str
    message: str
    priority: OpportunityPriority
    opportunity_ids: List[str]
    user_id: str
    account_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)


@dataclass
class BatchResult:
    """Outcome of a chunked batch run; chunk failures are recorded, not raised"""
    operation: str
    account_id: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "account_id": self.account_id,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "created": self.created,
            "errors": list(self.errors),
        }
