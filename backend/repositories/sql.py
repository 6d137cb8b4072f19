"""
SQLAlchemy-backed repositories.

Rows are mapped to the domain dataclasses on the way out so services never
hold live ORM objects. Timestamps are stored as naive UTC and returned as
timezone-aware UTC values.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from lib.database import SessionLocal
from lib.exceptions import ConflictError, NotFoundError, ValidationError
from models import orm
from models.domain import (
    CandidateStatus,
    Contact,
    ContactStatus,
    ContactTier,
    NotificationSettings,
    OpportunityCategory,
    OpportunityFeedback,
    OpportunityFlag,
    OpportunityPriority,
    OpportunityStatus,
    OpportunitySuggestion,
    OpportunityType,
    ActualOutcome,
    PotentialRelationship,
    Relationship,
    RelationshipType,
    Signal,
    TERMINAL_STATUSES,
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

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls, value):
    return enum_cls(value) if value else None


# Contact columns that hold enums or timestamps and need conversion on write
_CONTACT_ENUM_FIELDS = {"status", "tier", "relationship_type"}
_CONTACT_DATE_FIELDS = {"last_contact_date", "connection_date", "profile_updated_at", "last_scored_at"}


def contact_to_domain(row: orm.Contact) -> Contact:
    return Contact(
        id=row.id,
        account_id=row.account_id,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email,
        company=row.company,
        position=row.position,
        industry=row.industry,
        city=row.city,
        state=row.state,
        country=row.country,
        tags=list(row.tags or []),
        source=row.source or "manual",
        status=ContactStatus(row.status or "ACTIVE"),
        tier=_enum(ContactTier, row.tier),
        relationship_type=_enum(RelationshipType, row.relationship_type),
        last_contact_date=_aware(row.last_contact_date),
        connection_date=_aware(row.connection_date),
        updated_at=_aware(row.profile_updated_at),
        outreach_sent=row.outreach_sent or 0,
        outreach_responded=row.outreach_responded or 0,
        campaign_contacts=row.campaign_contacts or 0,
        campaign_responses=row.campaign_responses or 0,
        influence_score=row.influence_score,
        betweenness_centrality=row.betweenness_centrality,
        total_connections=row.total_connections,
        priority_score=row.priority_score,
        opportunity_score=row.opportunity_score,
        strategic_value=row.strategic_value,
        opportunity_flags={OpportunityFlag(f) for f in (row.opportunity_flags or [])},
        scoring_factors=dict(row.scoring_factors or {}),
        last_scored_at=_aware(row.last_scored_at),
    )


def contact_to_row(contact: Contact) -> orm.Contact:
    row = orm.Contact(id=contact.id, account_id=contact.account_id)
    _apply_contact_patch(row, {
        name: getattr(contact, name)
        for name in contact.__dataclass_fields__
        if name not in ("id", "account_id") and getattr(contact, name) is not None
    })
    return row


def _apply_contact_patch(row: orm.Contact, patch: Dict[str, Any]) -> None:
    for key, value in patch.items():
        if key == "updated_at":
            key = "profile_updated_at"
        if not hasattr(orm.Contact, key):
            raise ValidationError(f"Unknown contact field: {key}")
        if key in _CONTACT_ENUM_FIELDS and value is not None:
            value = value.value if hasattr(value, "value") else value
        elif key in _CONTACT_DATE_FIELDS:
            value = _naive(value)
        elif key == "opportunity_flags":
            value = sorted(f.value if hasattr(f, "value") else f for f in (value or []))
        elif key == "tags":
            value = list(value or [])
        setattr(row, key, value)


def edge_to_domain(row: orm.ContactRelationship) -> Relationship:
    return Relationship(
        id=row.id,
        contact_id=row.contact_id,
        related_contact_id=row.related_contact_id,
        type=RelationshipType(row.relationship_type),
        strength=row.strength if row.strength is not None else 0.5,
        confidence=row.confidence if row.confidence is not None else 1.0,
        notes=row.notes,
        is_verified=bool(row.is_verified),
        is_mutual=bool(row.is_mutual),
        source=row.source or "manual",
    )


def candidate_to_domain(row: orm.PotentialRelationship) -> PotentialRelationship:
    return PotentialRelationship(
        id=row.id,
        account_id=row.account_id,
        contact_id=row.contact_id,
        related_contact_id=row.related_contact_id,
        inferred_type=RelationshipType(row.inferred_type),
        confidence=row.confidence,
        evidence=[Signal.from_dict(s) for s in (row.evidence or [])],
        fingerprint=row.fingerprint,
        status=CandidateStatus(row.status),
        source=row.source or "auto_discovery",
        created_at=_aware(row.created_at),
        reviewed_at=_aware(row.reviewed_at),
    )


def suggestion_to_domain(row: orm.OpportunitySuggestion) -> OpportunitySuggestion:
    return OpportunitySuggestion(
        id=row.id,
        account_id=row.account_id,
        category=OpportunityCategory(row.category),
        type=OpportunityType(row.type),
        title=row.title,
        description=row.description or "",
        confidence_score=row.confidence_score,
        impact_score=row.impact_score,
        urgency_score=row.urgency_score if row.urgency_score is not None else 50.0,
        priority=OpportunityPriority(row.priority),
        status=OpportunityStatus(row.status),
        primary_contact_id=row.primary_contact_id,
        secondary_contact_id=row.secondary_contact_id,
        path_signature=row.path_signature or "",
        reasoning=list(row.reasoning or []),
        narrative=row.narrative or "",
        created_at=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
        acted_at=_aware(row.acted_at),
        completed_at=_aware(row.completed_at),
        metadata=dict(row.suggestion_metadata or {}),
    )


class SqlContactRepository(ContactRepository):

    def __init__(self, db: Session):
        self.db = db

    def add(self, contact: Contact) -> Contact:
        self.db.add(contact_to_row(contact))
        self.db.flush()
        return contact

    def list(self, account_id: str, status: Optional[ContactStatus] = None) -> List[Contact]:
        query = self.db.query(orm.Contact).filter(orm.Contact.account_id == account_id)
        if status is not None:
            query = query.filter(orm.Contact.status == status.value)
        return [contact_to_domain(row) for row in query.order_by(orm.Contact.id).all()]

    def get(self, contact_id: str) -> Optional[Contact]:
        row = self.db.get(orm.Contact, contact_id)
        return contact_to_domain(row) if row else None

    def update(self, contact_id: str, patch: Dict[str, Any]) -> Contact:
        row = self.db.get(orm.Contact, contact_id)
        if row is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        _apply_contact_patch(row, patch)
        self.db.flush()
        return contact_to_domain(row)

    def account_ids(self) -> List[str]:
        rows = self.db.query(orm.Contact.account_id).distinct().order_by(orm.Contact.account_id).all()
        return [account_id for (account_id,) in rows]


class SqlRelationshipRepository(RelationshipRepository):

    def __init__(self, db: Session):
        self.db = db

    def list_edges(self, contact_id: str) -> List[Relationship]:
        rows = self.db.query(orm.ContactRelationship).filter(
            or_(
                orm.ContactRelationship.contact_id == contact_id,
                orm.ContactRelationship.related_contact_id == contact_id,
            )
        ).all()
        return [edge_to_domain(row) for row in rows]

    def list_account_edges(self, account_id: str) -> List[Relationship]:
        rows = (
            self.db.query(orm.ContactRelationship)
            .join(orm.Contact, orm.Contact.id == orm.ContactRelationship.contact_id)
            .filter(orm.Contact.account_id == account_id)
            .all()
        )
        return [edge_to_domain(row) for row in rows]

    def create(self, edge: Relationship) -> Relationship:
        row = orm.ContactRelationship(
            id=edge.id,
            contact_id=edge.contact_id,
            related_contact_id=edge.related_contact_id,
            relationship_type=edge.type.value,
            strength=edge.strength,
            confidence=edge.confidence,
            notes=edge.notes,
            is_verified=edge.is_verified,
            is_mutual=edge.is_mutual,
            source=edge.source,
        )
        duplicate = self.db.query(orm.ContactRelationship.id).filter(
            orm.ContactRelationship.contact_id == edge.contact_id,
            orm.ContactRelationship.related_contact_id == edge.related_contact_id,
            orm.ContactRelationship.relationship_type == edge.type.value,
        ).first()
        if duplicate is not None:
            logger.warning(f"Duplicate relationship {edge.contact_id} -> {edge.related_contact_id}")
            raise ConflictError(
                "Relationship already exists",
                {"contact_id": edge.contact_id, "related_contact_id": edge.related_contact_id},
            )
        self.db.add(row)
        self.db.flush()
        return edge

    def exists_between(self, contact_a: str, contact_b: str) -> bool:
        query = self.db.query(orm.ContactRelationship.id).filter(
            or_(
                and_(
                    orm.ContactRelationship.contact_id == contact_a,
                    orm.ContactRelationship.related_contact_id == contact_b,
                ),
                and_(
                    orm.ContactRelationship.contact_id == contact_b,
                    orm.ContactRelationship.related_contact_id == contact_a,
                ),
            )
        )
        return query.first() is not None

    def find_candidate(self, fingerprint: str) -> Optional[PotentialRelationship]:
        row = self.db.query(orm.PotentialRelationship).filter(
            orm.PotentialRelationship.fingerprint == fingerprint
        ).first()
        return candidate_to_domain(row) if row else None

    def save_candidate(self, candidate: PotentialRelationship) -> PotentialRelationship:
        row = orm.PotentialRelationship(
            id=candidate.id,
            account_id=candidate.account_id,
            contact_id=candidate.contact_id,
            related_contact_id=candidate.related_contact_id,
            inferred_type=candidate.inferred_type.value,
            confidence=candidate.confidence,
            evidence=[s.to_dict() for s in candidate.evidence],
            fingerprint=candidate.fingerprint,
            status=candidate.status.value,
            source=candidate.source,
            reviewed_at=_naive(candidate.reviewed_at),
        )
        if candidate.created_at is not None:
            row.created_at = _naive(candidate.created_at)
        if self.find_candidate(candidate.fingerprint) is not None:
            raise ConflictError("Candidate fingerprint already recorded", {"fingerprint": candidate.fingerprint})
        self.db.add(row)
        self.db.flush()
        return candidate

    def get_candidate(self, candidate_id: str) -> Optional[PotentialRelationship]:
        row = self.db.get(orm.PotentialRelationship, candidate_id)
        return candidate_to_domain(row) if row else None

    def update_candidate(
        self,
        candidate_id: str,
        status: CandidateStatus,
        reviewed_at: datetime,
        expected_status: Optional[CandidateStatus] = None,
    ) -> PotentialRelationship:
        row = self.db.get(orm.PotentialRelationship, candidate_id)
        if row is None:
            raise NotFoundError(f"Candidate {candidate_id} not found")
        if expected_status is not None and row.status != expected_status.value:
            raise ConflictError(
                f"Candidate {candidate_id} is {row.status}",
                {"expected": expected_status.value, "actual": row.status},
            )
        row.status = status.value
        row.reviewed_at = _naive(reviewed_at)
        self.db.flush()
        return candidate_to_domain(row)

    def list_candidates(
        self, account_id: str, status: Optional[CandidateStatus] = None
    ) -> List[PotentialRelationship]:
        query = self.db.query(orm.PotentialRelationship).filter(
            orm.PotentialRelationship.account_id == account_id
        )
        if status is not None:
            query = query.filter(orm.PotentialRelationship.status == status.value)
        return [candidate_to_domain(row) for row in query.all()]

    def pending_for_pair(self, contact_a: str, contact_b: str) -> List[PotentialRelationship]:
        rows = self.db.query(orm.PotentialRelationship).filter(
            orm.PotentialRelationship.status == CandidateStatus.PENDING.value,
            or_(
                and_(
                    orm.PotentialRelationship.contact_id == contact_a,
                    orm.PotentialRelationship.related_contact_id == contact_b,
                ),
                and_(
                    orm.PotentialRelationship.contact_id == contact_b,
                    orm.PotentialRelationship.related_contact_id == contact_a,
                ),
            ),
        ).order_by(orm.PotentialRelationship.created_at, orm.PotentialRelationship.id).all()
        return [candidate_to_domain(row) for row in rows]

    def refresh_candidate(self, candidate_id: str, candidate: PotentialRelationship) -> PotentialRelationship:
        row = self.db.get(orm.PotentialRelationship, candidate_id)
        if row is None:
            raise NotFoundError(f"Candidate {candidate_id} not found")
        if row.status != CandidateStatus.PENDING.value:
            raise ConflictError(
                f"Candidate {candidate_id} is {row.status}",
                {"expected": CandidateStatus.PENDING.value, "actual": row.status},
            )
        taken = self.db.query(orm.PotentialRelationship.id).filter(
            orm.PotentialRelationship.fingerprint == candidate.fingerprint,
            orm.PotentialRelationship.id != candidate_id,
        ).first()
        if taken is not None:
            raise ConflictError("Candidate fingerprint already recorded", {"fingerprint": candidate.fingerprint})
        row.inferred_type = candidate.inferred_type.value
        row.confidence = candidate.confidence
        row.evidence = [s.to_dict() for s in candidate.evidence]
        row.fingerprint = candidate.fingerprint
        self.db.flush()
        return candidate_to_domain(row)


class SqlOpportunityRepository(OpportunityRepository):

    def __init__(self, db: Session):
        self.db = db

    def create(self, suggestion: OpportunitySuggestion) -> OpportunitySuggestion:
        row = orm.OpportunitySuggestion(
            id=suggestion.id,
            account_id=suggestion.account_id,
            category=suggestion.category.value,
            type=suggestion.type.value,
            title=suggestion.title,
            description=suggestion.description,
            confidence_score=suggestion.confidence_score,
            impact_score=suggestion.impact_score,
            urgency_score=suggestion.urgency_score,
            priority=suggestion.priority.value,
            status=suggestion.status.value,
            primary_contact_id=suggestion.primary_contact_id,
            secondary_contact_id=suggestion.secondary_contact_id,
            path_signature=suggestion.path_signature,
            reasoning=list(suggestion.reasoning),
            narrative=suggestion.narrative,
            expires_at=_naive(suggestion.expires_at),
            acted_at=_naive(suggestion.acted_at),
            completed_at=_naive(suggestion.completed_at),
            suggestion_metadata=dict(suggestion.metadata),
        )
        if suggestion.created_at is not None:
            row.created_at = _naive(suggestion.created_at)
        self.db.add(row)
        self.db.flush()
        return suggestion

    def get(self, opportunity_id: str) -> Optional[OpportunitySuggestion]:
        row = self.db.get(orm.OpportunitySuggestion, opportunity_id)
        return suggestion_to_domain(row) if row else None

    def list(self, account_id: str, since: Optional[datetime] = None) -> List[OpportunitySuggestion]:
        query = self.db.query(orm.OpportunitySuggestion).filter(
            orm.OpportunitySuggestion.account_id == account_id
        )
        if since is not None:
            query = query.filter(orm.OpportunitySuggestion.created_at >= _naive(since))
        return [suggestion_to_domain(row) for row in query.all()]

    def list_pending(self, account_id: str, now: datetime) -> List[OpportunitySuggestion]:
        rows = self.db.query(orm.OpportunitySuggestion).filter(
            orm.OpportunitySuggestion.account_id == account_id,
            orm.OpportunitySuggestion.status.notin_([s.value for s in TERMINAL_STATUSES]),
            or_(
                orm.OpportunitySuggestion.expires_at.is_(None),
                orm.OpportunitySuggestion.expires_at > _naive(now),
            ),
        ).all()
        return [suggestion_to_domain(row) for row in rows]

    def update_status(
        self,
        opportunity_id: str,
        status: OpportunityStatus,
        metadata: Optional[Dict[str, Any]] = None,
        expected_status: Optional[OpportunityStatus] = None,
        timestamps: Optional[Dict[str, datetime]] = None,
    ) -> OpportunitySuggestion:
        row = self.db.get(orm.OpportunitySuggestion, opportunity_id)
        if row is None:
            raise NotFoundError(f"Opportunity {opportunity_id} not found")
        if expected_status is not None and row.status != expected_status.value:
            raise ConflictError(
                f"Opportunity {opportunity_id} is {row.status}",
                {"expected": expected_status.value, "actual": row.status},
            )
        row.status = status.value
        if metadata:
            # Reassign so the JSON column is flagged dirty
            row.suggestion_metadata = {**(row.suggestion_metadata or {}), **metadata}
        for name, value in (timestamps or {}).items():
            setattr(row, name, _naive(value))
        self.db.flush()
        return suggestion_to_domain(row)

    def find_open(self, dedup_key: DedupKey) -> Optional[OpportunitySuggestion]:
        account_id, category, primary_contact_id, path_signature = dedup_key
        query = self.db.query(orm.OpportunitySuggestion).filter(
            orm.OpportunitySuggestion.account_id == account_id,
            orm.OpportunitySuggestion.category == category.value,
            orm.OpportunitySuggestion.path_signature == path_signature,
            orm.OpportunitySuggestion.status.notin_([s.value for s in TERMINAL_STATUSES]),
        )
        if primary_contact_id is None:
            query = query.filter(orm.OpportunitySuggestion.type == OpportunityType.COMPANY_CLUSTER.value)
        else:
            query = query.filter(orm.OpportunitySuggestion.primary_contact_id == primary_contact_id)
        row = query.first()
        return suggestion_to_domain(row) if row else None

    def save_feedback(self, feedback: OpportunityFeedback) -> OpportunityFeedback:
        row = orm.OpportunityFeedback(
            opportunity_id=feedback.opportunity_id,
            user_id=feedback.user_id,
            rating=feedback.rating,
            actual_outcome=feedback.actual_outcome.value,
            actual_impact=feedback.actual_impact,
            time_invested=feedback.time_invested,
            feedback=feedback.feedback,
            would_recommend=feedback.would_recommend,
        )
        if self.get_feedback(feedback.opportunity_id) is not None:
            raise ConflictError(f"Feedback already recorded for {feedback.opportunity_id}")
        self.db.add(row)
        self.db.flush()
        return feedback

    def get_feedback(self, opportunity_id: str) -> Optional[OpportunityFeedback]:
        row = self.db.query(orm.OpportunityFeedback).filter(
            orm.OpportunityFeedback.opportunity_id == opportunity_id
        ).first()
        if row is None:
            return None
        return OpportunityFeedback(
            opportunity_id=row.opportunity_id,
            user_id=row.user_id,
            rating=row.rating,
            actual_outcome=ActualOutcome(row.actual_outcome),
            actual_impact=row.actual_impact,
            time_invested=row.time_invested or 0.0,
            feedback=row.feedback or "",
            would_recommend=row.would_recommend,
            created_at=_aware(row.created_at),
        )


class SqlNotificationRepository(NotificationRepository):

    def __init__(self, db: Session):
        self.db = db

    def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        row = self.db.query(orm.NotificationSettings).filter(
            orm.NotificationSettings.user_id == user_id
        ).first()
        if row is None:
            return None
        return NotificationSettings(
            user_id=row.user_id,
            enabled_categories=[OpportunityCategory(c) for c in (row.enabled_categories or [])],
            min_confidence=row.min_confidence,
            min_impact=row.min_impact,
            daily_digest=bool(row.daily_digest),
            real_time_alerts=bool(row.real_time_alerts),
            urgent_only=bool(row.urgent_only),
        )

    def save_settings(self, account_id: str, settings: NotificationSettings) -> NotificationSettings:
        row = self.db.query(orm.NotificationSettings).filter(
            orm.NotificationSettings.user_id == settings.user_id
        ).first()
        if row is None:
            row = orm.NotificationSettings(user_id=settings.user_id)
            self.db.add(row)
        row.account_id = account_id
        row.enabled_categories = [c.value for c in settings.enabled_categories]
        row.min_confidence = settings.min_confidence
        row.min_impact = settings.min_impact
        row.daily_digest = settings.daily_digest
        row.real_time_alerts = settings.real_time_alerts
        row.urgent_only = settings.urgent_only
        self.db.flush()
        return settings

    def sent_ids(self, user_id: str) -> Set[str]:
        rows = self.db.query(orm.NotificationDelivery.opportunity_id).filter(
            orm.NotificationDelivery.user_id == user_id
        ).all()
        return {row[0] for row in rows}

    def mark_sent(self, user_id: str, opportunity_ids: List[str]) -> None:
        already = self.sent_ids(user_id)
        for opportunity_id in opportunity_ids:
            if opportunity_id not in already:
                self.db.add(orm.NotificationDelivery(user_id=user_id, opportunity_id=opportunity_id, state="sent"))
                already.add(opportunity_id)
        self.db.flush()

    def mark_dismissed(self, user_id: str, opportunity_id: str) -> None:
        row = self.db.query(orm.NotificationDelivery).filter(
            orm.NotificationDelivery.user_id == user_id,
            orm.NotificationDelivery.opportunity_id == opportunity_id,
        ).first()
        if row is None:
            self.db.add(orm.NotificationDelivery(user_id=user_id, opportunity_id=opportunity_id, state="dismissed"))
        else:
            row.state = "dismissed"
        self.db.flush()

    def users_for_account(self, account_id: str) -> List[str]:
        rows = self.db.query(orm.NotificationSettings.user_id).filter(
            orm.NotificationSettings.account_id == account_id
        ).order_by(orm.NotificationSettings.user_id).all()
        return [row[0] for row in rows]


class SqlConfigRepository(ConfigRepository):

    def __init__(self, db: Session):
        self.db = db

    def latest(self, account_id: str) -> Optional[Dict[str, Any]]:
        row = (
            self.db.query(orm.EngineConfigVersion)
            .filter(orm.EngineConfigVersion.account_id == account_id)
            .order_by(orm.EngineConfigVersion.version.desc())
            .first()
        )
        return dict(row.payload) if row else None

    def append(self, account_id: str, version: int, payload: Dict[str, Any]) -> None:
        taken = self.db.query(orm.EngineConfigVersion.id).filter(
            orm.EngineConfigVersion.account_id == account_id,
            orm.EngineConfigVersion.version == version,
        ).first()
        if taken is not None:
            raise ConflictError(
                f"Config version {version} already recorded for account {account_id}",
                {"account_id": account_id, "version": version},
            )
        self.db.add(orm.EngineConfigVersion(account_id=account_id, version=version, payload=payload))
        self.db.flush()

    def versions(self, account_id: str) -> List[int]:
        rows = (
            self.db.query(orm.EngineConfigVersion.version)
            .filter(orm.EngineConfigVersion.account_id == account_id)
            .order_by(orm.EngineConfigVersion.version)
            .all()
        )
        return [version for (version,) in rows]


class SqlUnitOfWork(UnitOfWork):
    """Repositories sharing one session; ``transaction()`` commits or rolls back."""

    def __init__(self, db: Optional[Session] = None, session_factory=SessionLocal):
        self.db = db or session_factory()
        self.contacts = SqlContactRepository(self.db)
        self.relationships = SqlRelationshipRepository(self.db)
        self.opportunities = SqlOpportunityRepository(self.db)
        self.notifications = SqlNotificationRepository(self.db)
        self.configs = SqlConfigRepository(self.db)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except Exception as e:
            logger.error(f"Transaction rolled back: {e}")
            self.db.rollback()
            raise

    def close(self) -> None:
        self.db.close()
