"""
Opportunity Generator

Scans an account's contacts and relationship graph for actionable patterns and
emits ranked opportunity suggestions. Each pattern is a pure function over a
``NetworkSnapshot``; the generator applies shared scoring, deduplication,
optional narrative summaries and persistence.
"""

import logging
import math
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from config import settings
from lib.exceptions import ConflictError, NotFoundError, ValidationError
from models.domain import (
    ACCEPTED_STATUSES,
    BatchResult,
    Contact,
    ContactStatus,
    ContactTier,
    OpportunityCategory,
    OpportunityPriority,
    OpportunityStatus,
    OpportunitySuggestion,
    OpportunityType,
    Relationship,
)
from repositories.base import UnitOfWork
from services.batching import run_in_chunks
from services.evidence_extractor import normalize_company
from services.weights import EngineConfig, GenerationThresholds

logger = logging.getLogger(__name__)

RECONNECTION_TTL = timedelta(days=30)
INTRODUCTION_TTL = timedelta(days=21)
CLUSTER_TTL = timedelta(days=45)

INTRODUCTION_URGENCY = 70.0
CLUSTER_URGENCY = 50.0
CLUSTER_FULL_SIZE = 10

# Lower bounds of c*i for each priority, highest first
PRIORITY_BUCKETS = [
    (85.0, OpportunityPriority.URGENT),
    (65.0, OpportunityPriority.HIGH),
    (35.0, OpportunityPriority.MEDIUM),
]

ALLOWED_TRANSITIONS = {
    OpportunityStatus.PENDING: {
        OpportunityStatus.VIEWED,
        OpportunityStatus.ACCEPTED,
        OpportunityStatus.REJECTED,
        OpportunityStatus.EXPIRED,
    },
    OpportunityStatus.VIEWED: {
        OpportunityStatus.ACCEPTED,
        OpportunityStatus.REJECTED,
        OpportunityStatus.EXPIRED,
    },
    OpportunityStatus.ACCEPTED: {
        OpportunityStatus.IN_PROGRESS,
        OpportunityStatus.COMPLETED,
        OpportunityStatus.REJECTED,
    },
    OpportunityStatus.IN_PROGRESS: {
        OpportunityStatus.COMPLETED,
        OpportunityStatus.REJECTED,
    },
}

SORT_KEYS = {
    "confidence": lambda s: s.confidence_score,
    "impact": lambda s: s.impact_score,
    "urgency": lambda s: s.urgency_score,
    "composite": lambda s: s.composite_score,
    "date": lambda s: s.created_at or datetime.min.replace(tzinfo=timezone.utc),
}


def priority_bucket(confidence: float, impact: float) -> OpportunityPriority:
    """Bucket c*i (0-100) into a priority; monotonic in both inputs"""
    product = confidence * impact
    for threshold, priority in PRIORITY_BUCKETS:
        if product >= threshold:
            return priority
    return OpportunityPriority.LOW


def impact_score(strategic_value: Optional[float], path_strength: float, urgency: float) -> float:
    raw = 0.6 * (strategic_value or 0.0) + 25 * path_strength + 0.15 * urgency
    return round(max(0.0, min(100.0, raw)), 2)


def _days_since(moment: Optional[datetime], as_of: datetime) -> Optional[int]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (as_of - moment).days


@dataclass
class NetworkSnapshot:
    """Read-only view of an account's ACTIVE contacts and their edges"""
    account_id: str
    contacts: Dict[str, Contact]
    edges: List[Relationship]
    as_of: datetime
    interests: List[str] = field(default_factory=list)

    def edges_of(self, contact_id: str) -> List[Tuple[str, Relationship]]:
        """(other contact id, edge) for edges on either end, limited to snapshot contacts"""
        found = []
        for edge in self.edges:
            other = edge.other_end(contact_id)
            if other and other != contact_id and other in self.contacts:
                found.append((other, edge))
        return found


PatternFn = Callable[[NetworkSnapshot, GenerationThresholds], List[OpportunitySuggestion]]


def _build(
    snapshot: NetworkSnapshot,
    category: OpportunityCategory,
    opportunity_type: OpportunityType,
    primary: Contact,
    confidence: float,
    path_strength: float,
    urgency: float,
    ttl: timedelta,
    title: str,
    description: str,
    reasoning: List[str],
    path_signature: str,
    secondary: Optional[Contact] = None,
    min_priority: Optional[OpportunityPriority] = None,
    metadata: Optional[dict] = None,
) -> OpportunitySuggestion:
    confidence = round(max(0.0, min(1.0, confidence)), 4)
    impact = impact_score(primary.strategic_value, path_strength, urgency)
    priority = priority_bucket(confidence, impact)
    if min_priority is not None and priority.rank < min_priority.rank:
        priority = min_priority
    return OpportunitySuggestion(
        account_id=snapshot.account_id,
        category=category,
        type=opportunity_type,
        title=title,
        description=description,
        confidence_score=confidence,
        impact_score=impact,
        urgency_score=round(min(100.0, urgency), 2),
        priority=priority,
        primary_contact_id=primary.id,
        secondary_contact_id=secondary.id if secondary else None,
        path_signature=path_signature,
        reasoning=reasoning,
        created_at=snapshot.as_of,
        expires_at=snapshot.as_of + ttl,
        metadata={"path_strength": round(path_strength, 4), **(metadata or {})},
    )


def _reconnection_urgency(contact: Contact, days: int, as_of: datetime) -> Tuple[float, List[str]]:
    urgency = 0.0
    factors = []
    if days > 365:
        urgency += 40
        factors.append("Over 1 year since contact")
    elif days > 180:
        urgency += 30
        factors.append("Over 6 months since contact")
    elif days > 90:
        urgency += 20
        factors.append("Over 3 months since contact")

    opportunity = contact.opportunity_score or 0
    if opportunity > 80:
        urgency += 25
        factors.append("High opportunity score")
    elif opportunity > 60:
        urgency += 15

    if (contact.strategic_value or 0) > 80:
        urgency += 20
        factors.append("High strategic value")

    updated = _days_since(contact.updated_at, as_of)
    if updated is not None and updated < 60:
        urgency += 15
        factors.append("Recent profile updates")

    return min(100.0, urgency), factors


def reconnection_pattern(snapshot: NetworkSnapshot, thresholds: GenerationThresholds) -> List[OpportunitySuggestion]:
    """Valuable contacts that have gone quiet"""
    stale = thresholds.reconnection_stale_days
    suggestions = []
    for contact in sorted(snapshot.contacts.values(), key=lambda c: c.id):
        valuable = contact.tier in (ContactTier.TIER_1, ContactTier.TIER_2) or (
            (contact.priority_score or 0) >= thresholds.reconnection_min_priority
        )
        if not valuable:
            continue
        days = _days_since(contact.last_contact_date, snapshot.as_of)
        if days is None or not stale < days < thresholds.reconnection_max_days:
            continue

        confidence = max(0.1, min(1.0, 0.9 * math.exp(-(days - stale) / 365)))
        urgency, factors = _reconnection_urgency(contact, days, snapshot.as_of)
        company = f" at {contact.company}" if contact.company else ""
        suggestions.append(_build(
            snapshot,
            OpportunityCategory.RECONNECTION,
            OpportunityType.RECONNECT,
            primary=contact,
            confidence=confidence,
            path_strength=1.0,
            urgency=urgency,
            ttl=RECONNECTION_TTL,
            title=f"Reconnect with {contact.name}",
            description=f"Reestablish connection with {contact.name}{company}. Last contact: {days} days ago.",
            reasoning=[f"No contact for {days} days"] + factors,
            path_signature="direct",
            min_priority=OpportunityPriority.MEDIUM,
            metadata={"days_since_contact": days},
        ))
    return suggestions


def _matches_interest(contact: Contact, interests: List[str]) -> bool:
    text = f"{contact.company or ''} {contact.position or ''}".lower()
    return any(interest.lower() in text for interest in interests if interest)


def introduction_pattern(snapshot: NetworkSnapshot, thresholds: GenerationThresholds) -> List[OpportunitySuggestion]:
    """Targets reachable through one strong intermediary"""
    suggestions = []
    for target in sorted(snapshot.contacts.values(), key=lambda c: c.id):
        if snapshot.interests:
            if not _matches_interest(target, snapshot.interests):
                continue
        elif (target.opportunity_score or 0) < thresholds.introduction_min_opportunity:
            continue

        paths = [
            (edge.strength, other_id)
            for other_id, edge in snapshot.edges_of(target.id)
            if edge.strength >= thresholds.introduction_min_strength
        ]
        if not paths:
            continue
        # Strongest intermediary, ties broken by id
        paths.sort(key=lambda p: (-p[0], p[1]))
        strength, intermediary_id = paths[0]
        intermediary = snapshot.contacts[intermediary_id]

        confidence = strength * (target.opportunity_score or 0) / 100
        company = f" ({target.company})" if target.company else ""
        suggestions.append(_build(
            snapshot,
            OpportunityCategory.INTRODUCTION,
            OpportunityType.WARM_INTRODUCTION,
            primary=target,
            secondary=intermediary,
            confidence=confidence,
            path_strength=strength,
            urgency=INTRODUCTION_URGENCY,
            ttl=INTRODUCTION_TTL,
            title=f"Introduction to {target.name} via {intermediary.name}",
            description=f"Ask {intermediary.name} for a warm introduction to {target.name}{company}.",
            reasoning=[
                f"{intermediary.name} has a strong relationship with {target.name} (strength {strength:.2f})",
                f"{target.name} has an opportunity score of {target.opportunity_score or 0:.0f}",
            ],
            path_signature=f"via:{intermediary.id}",
            metadata={"intermediary_id": intermediary.id},
        ))
    return suggestions


def company_cluster_pattern(snapshot: NetworkSnapshot, thresholds: GenerationThresholds) -> List[OpportunitySuggestion]:
    """Several strategic contacts at the same company and industry"""
    clusters: Dict[Tuple[str, str], List[Contact]] = defaultdict(list)
    for contact in snapshot.contacts.values():
        company = normalize_company(contact.company)
        industry = (contact.industry or "").strip().lower()
        if company and industry:
            clusters[(company, industry)].append(contact)

    suggestions = []
    for (company, industry), members in sorted(clusters.items()):
        if len(members) < thresholds.cluster_min_size:
            continue
        mean_value = sum(m.strategic_value or 0 for m in members) / len(members)
        if mean_value < thresholds.cluster_min_strategic_value:
            continue

        members.sort(key=lambda m: (-(m.strategic_value or 0), m.id))
        primary = members[0]
        size_strength = min(1.0, len(members) / CLUSTER_FULL_SIZE)
        display = primary.company or company
        suggestions.append(_build(
            snapshot,
            OpportunityCategory.STRATEGIC_MOVE,
            OpportunityType.COMPANY_CLUSTER,
            primary=primary,
            confidence=mean_value / 100,
            path_strength=size_strength,
            urgency=CLUSTER_URGENCY,
            ttl=CLUSTER_TTL,
            title=f"Strategic cluster at {display}",
            description=(
                f"You know {len(members)} people at {display} in {primary.industry}. "
                f"Start with {primary.name}."
            ),
            reasoning=[
                f"{len(members)} active contacts share company and industry",
                f"Mean strategic value {mean_value:.0f}",
            ],
            path_signature=f"cluster:{company}|{industry}",
            metadata={"member_ids": [m.id for m in members], "cluster_size": len(members)},
        ))
    return suggestions


DEFAULT_PATTERNS: List[Tuple[str, PatternFn]] = [
    ("reconnection", reconnection_pattern),
    ("introduction", introduction_pattern),
    ("company_cluster", company_cluster_pattern),
]


class OpportunityGenerator:
    """Generates, stores and manages the lifecycle of opportunity suggestions"""

    def __init__(
        self,
        uow: UnitOfWork,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        summarize: Optional[Callable[[str], str]] = None,
        summarize_timeout: Optional[float] = None,
        patterns: Optional[List[Tuple[str, PatternFn]]] = None,
        interests: Optional[List[str]] = None,
    ):
        """
        Args:
            uow: Repositories and transaction boundary
            config: Versioned thresholds and category multipliers
            clock: Source of "now"
            summarize: Optional prompt -> narrative callable
            summarize_timeout: Seconds to wait for a narrative before falling back to ""
            patterns: (name, pattern) pairs; defaults to the built-in catalog
            interests: Account interest keywords for introduction targets
        """
        self.uow = uow
        self.config = config or EngineConfig()
        self.clock = clock
        self.summarize = summarize
        self.summarize_timeout = summarize_timeout or settings.OPENAI_TIMEOUT
        self.patterns = list(patterns or DEFAULT_PATTERNS)
        self.interests = list(interests if interests is not None else settings.ACCOUNT_INTERESTS)

    def register_pattern(self, name: str, pattern: PatternFn) -> None:
        self.patterns.append((name, pattern))

    def snapshot(self, account_id: str) -> NetworkSnapshot:
        contacts = {c.id: c for c in self.uow.contacts.list(account_id, ContactStatus.ACTIVE)}
        return NetworkSnapshot(
            account_id=account_id,
            contacts=contacts,
            edges=self.uow.relationships.list_account_edges(account_id),
            as_of=self.clock(),
            interests=self.interests,
        )

    def generate(self, account_id: str) -> BatchResult:
        """
        Run every pattern for an account and persist new suggestions

        Stale suggestions are expired first. Each pattern runs as its own
        chunk, so a failing pattern is recorded and the others still commit.
        Patterns and narratives are evaluated before the chunk transaction
        opens; the transaction only re-checks dedup and inserts.
        """
        result = BatchResult(operation="opportunity_generation", account_id=account_id)
        self.expire_stale(account_id)

        snapshot = self.snapshot(account_id)
        logger.info(
            f"Generating opportunities for account {account_id} over "
            f"{len(snapshot.contacts)} contacts and {len(snapshot.edges)} edges"
        )

        def prepare(chunk) -> List[OpportunitySuggestion]:
            admitted = []
            seen = set()
            for name, pattern in chunk:
                for suggestion in pattern(snapshot, self.config.generation):
                    if not self._calibrate(suggestion) or suggestion.dedup_key in seen:
                        continue
                    if self.uow.opportunities.find_open(suggestion.dedup_key) is not None:
                        continue
                    seen.add(suggestion.dedup_key)
                    suggestion.narrative = self._narrate(suggestion)
                    admitted.append(suggestion)
                logger.debug(f"Pattern {name} done for account {account_id}")
            return admitted

        def process_chunk(admitted) -> int:
            created = 0
            for suggestion in admitted:
                if self.uow.opportunities.find_open(suggestion.dedup_key) is None:
                    self.uow.opportunities.create(suggestion)
                    created += 1
            return created

        run_in_chunks(
            self.uow, self.patterns, 1, process_chunk, result, item_id=lambda p: p[0], prepare=prepare
        )
        logger.info(f"Created {result.created} opportunities for account {account_id}")
        return result

    def _calibrate(self, suggestion: OpportunitySuggestion) -> bool:
        """Apply the category multiplier; False when the result falls below the confidence floor"""
        multiplier = self.config.category_multipliers.get(suggestion.category.value, 1.0)
        if multiplier != 1.0:
            suggestion.confidence_score = round(max(0.0, min(1.0, suggestion.confidence_score * multiplier)), 4)
            priority = priority_bucket(suggestion.confidence_score, suggestion.impact_score)
            if suggestion.category == OpportunityCategory.RECONNECTION and priority.rank < OpportunityPriority.MEDIUM.rank:
                priority = OpportunityPriority.MEDIUM
            suggestion.priority = priority
        return suggestion.confidence_score >= self.config.generation.opportunity_confidence_floor

    def _narrate(self, suggestion: OpportunitySuggestion) -> str:
        if self.summarize is None:
            return ""
        prompt = (
            f"Write two sentences explaining this networking opportunity to the user.\n"
            f"Title: {suggestion.title}\nDetails: {suggestion.description}\n"
            f"Reasons: {'; '.join(suggestion.reasoning)}"
        )
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.summarize, prompt)
            return (future.result(timeout=self.summarize_timeout) or "").strip()
        except FutureTimeout:
            logger.warning(f"Narrative for opportunity {suggestion.id} timed out after {self.summarize_timeout}s")
            return ""
        except Exception as e:
            logger.warning(f"Narrative for opportunity {suggestion.id} failed: {e}")
            return ""
        finally:
            executor.shutdown(wait=False)

    def expire_stale(self, account_id: str, now: Optional[datetime] = None) -> int:
        """Move suggestions whose expiry has passed to EXPIRED"""
        now = now or self.clock()
        expired = 0
        with self.uow.transaction():
            for suggestion in self.uow.opportunities.list(account_id):
                if suggestion.status.is_terminal or suggestion.expires_at is None:
                    continue
                if suggestion.expires_at <= now:
                    self.uow.opportunities.update_status(
                        suggestion.id, OpportunityStatus.EXPIRED, expected_status=suggestion.status
                    )
                    expired += 1
        if expired:
            logger.info(f"Expired {expired} opportunities for account {account_id}")
        return expired

    def list_pending(
        self, account_id: str, now: Optional[datetime] = None, sort_by: str = "composite"
    ) -> List[OpportunitySuggestion]:
        return self.rank(self.uow.opportunities.list_pending(account_id, now or self.clock()), sort_by)

    def update_status(self, opportunity_id: str, status: OpportunityStatus) -> OpportunitySuggestion:
        """
        Transition a suggestion

        Raises:
            NotFoundError: Unknown opportunity
            ConflictError: Current status is terminal or the transition is not allowed
        """
        with self.uow.transaction():
            current = self.uow.opportunities.get(opportunity_id)
            if current is None:
                raise NotFoundError(f"Opportunity {opportunity_id} not found")
            if current.status.is_terminal:
                raise ConflictError(
                    f"Opportunity {opportunity_id} is {current.status.value} and can no longer change",
                    {"status": current.status.value},
                )
            if status not in ALLOWED_TRANSITIONS.get(current.status, set()):
                raise ConflictError(
                    f"Cannot move opportunity from {current.status.value} to {status.value}",
                    {"from": current.status.value, "to": status.value},
                )

            now = self.clock()
            timestamps = {}
            if current.acted_at is None and (status in ACCEPTED_STATUSES or status == OpportunityStatus.REJECTED):
                timestamps["acted_at"] = now
            if status == OpportunityStatus.COMPLETED:
                timestamps["completed_at"] = now

            updated = self.uow.opportunities.update_status(
                opportunity_id, status, expected_status=current.status, timestamps=timestamps
            )
        logger.info(f"Opportunity {opportunity_id}: {current.status.value} -> {status.value}")
        return updated

    @staticmethod
    def rank(suggestions: List[OpportunitySuggestion], sort_by: str = "composite") -> List[OpportunitySuggestion]:
        if sort_by not in SORT_KEYS:
            raise ValidationError(f"Unknown sort key: {sort_by}", {"allowed": sorted(SORT_KEYS)})
        key = SORT_KEYS[sort_by]
        return sorted(suggestions, key=lambda s: (key(s), s.id), reverse=True)

    def dashboard(self, account_id: str) -> Dict[str, object]:
        """Summary counts and conversion rates for an account's suggestions"""
        suggestions = self.uow.opportunities.list(account_id)
        total = len(suggestions)
        by_category: Dict[str, int] = defaultdict(int)
        by_priority: Dict[str, int] = defaultdict(int)
        by_status: Dict[str, int] = defaultdict(int)
        for s in suggestions:
            by_category[s.category.value] += 1
            by_priority[s.priority.value] += 1
            by_status[s.status.value] += 1

        viewed = sum(1 for s in suggestions if s.status == OpportunityStatus.VIEWED or s.status in ACCEPTED_STATUSES)
        accepted = sum(1 for s in suggestions if s.status in ACCEPTED_STATUSES)
        completed = by_status.get(OpportunityStatus.COMPLETED.value, 0)
        pending = self.uow.opportunities.list_pending(account_id, self.clock())

        def rate(part: int) -> float:
            return round(part / total * 100, 1) if total else 0.0

        return {
            "total": total,
            "pending": len(pending),
            "by_category": dict(by_category),
            "by_priority": dict(by_priority),
            "by_status": dict(by_status),
            "average_confidence": round(sum(s.confidence_score for s in suggestions) / total, 3) if total else 0.0,
            "view_rate": rate(viewed),
            "acceptance_rate": rate(accepted),
            "completion_rate": rate(completed),
        }
