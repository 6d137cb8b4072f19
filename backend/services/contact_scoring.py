"""
Contact Scoring Service

Computes three composite scores per contact (priority, opportunity and
strategic value) from six individually explainable factors: network position,
relationship strength, professional relevance, mutual connections, engagement
pattern and opportunity indicators. Scoring is deterministic for a given
snapshot and ``as_of`` timestamp.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from config import settings
from lib.exceptions import NotFoundError
from models.domain import (
    BatchResult,
    Contact,
    ContactStatus,
    ContactTier,
    OpportunityFlag,
    Relationship,
    RelationshipType,
)
from repositories.base import UnitOfWork
from services.batching import run_in_chunks
from services.weights import EngineConfig

logger = logging.getLogger(__name__)

FACTORS = [
    "network_position",
    "relationship_strength",
    "professional_relevance",
    "mutual_connections",
    "engagement_pattern",
    "opportunity_indicators",
]

RELATIONSHIP_TYPE_SCORES = {
    RelationshipType.CLIENT: 90,
    RelationshipType.PARTNER: 85,
    RelationshipType.COLLEAGUE: 75,
    RelationshipType.MENTOR: 95,
    RelationshipType.INVESTOR: 90,
    RelationshipType.FRIEND: 70,
    RelationshipType.ACQUAINTANCE: 60,
    RelationshipType.PROSPECT: 80,
    RelationshipType.VENDOR: 65,
    RelationshipType.MENTEE: 70,
    RelationshipType.COMPETITOR: 40,
    RelationshipType.FAMILY: 30,
}

# First match wins, so longer titles come before their substrings
SENIORITY_KEYWORDS = [
    ("ceo", 100), ("president", 95), ("founder", 95), ("owner", 90),
    ("cto", 95), ("cfo", 95), ("cmo", 95), ("coo", 95),
    ("svp", 90), ("vice president", 85), ("vp", 85),
    ("director", 75), ("head", 75), ("chief", 80),
    ("senior", 65), ("lead", 60), ("principal", 70),
    ("manager", 55), ("supervisor", 50),
    ("associate", 40), ("junior", 30), ("intern", 20),
]
DEFAULT_SENIORITY = 45
DECISION_MAKER_SENIORITY = 75

RELEVANT_KEYWORDS = [
    "technology", "software", "ai", "data", "digital", "startup", "venture",
    "marketing", "sales", "business development", "strategy", "consulting",
]
LARGE_COMPANIES = ["microsoft", "google", "apple", "amazon", "facebook", "meta", "tesla"]
INCORPORATED_MARKERS = ["inc", "corp", "corporation", "ltd", "llc"]
TRENDING_KEYWORDS = ["ai", "artificial intelligence", "machine learning", "blockchain", "crypto", "fintech"]
GROWTH_KEYWORDS = ["startup", "venture", "series", "funding", "ipo"]
EXPANSION_KEYWORDS = ["manager", "director", "lead", "senior", "principal"]

NO_ANALYTICS_SCORE = 20.0
WARM_EDGE_STRENGTH = 0.6


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def _days_between(earlier: Optional[datetime], later: datetime) -> Optional[int]:
    if earlier is None:
        return None
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    return max(0, (later - earlier).days)


def _clip(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass
class FactorScore:
    """One factor's 0-100 sub-score with its explanation"""
    score: float
    reasoning: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "reasoning": self.reasoning, **self.details}


@dataclass
class ContactScore:
    """Scores and explanations for a single contact"""
    contact_id: str
    priority_score: float
    opportunity_score: float
    strategic_value: float
    factors: Dict[str, FactorScore]
    flags: Set[OpportunityFlag]
    tier: str
    scored_at: datetime

    def factors_dict(self) -> Dict[str, Any]:
        return {name: factor.to_dict() for name, factor in self.factors.items()}


class ContactScoringService:
    """Service for scoring contacts and writing the results back"""

    def __init__(
        self,
        uow: UnitOfWork,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        chunk_size: Optional[int] = None,
        interests: Optional[List[str]] = None,
    ):
        self.uow = uow
        self.config = config or EngineConfig()
        self.clock = clock
        self.chunk_size = chunk_size or settings.SCORING_CHUNK_SIZE
        self.interests = [i.lower() for i in (interests if interests is not None else settings.ACCOUNT_INTERESTS)]
        self.tier_thresholds = {
            "high_priority": 80,
            "medium_priority": 60,
            "low_priority": 40,
            "minimal": 0,
        }
        self.tier_descriptions = {
            "high_priority": "Reach out soon; strong network value and engagement",
            "medium_priority": "Worth regular attention",
            "low_priority": "Occasional touchpoints are enough",
            "minimal": "Little current networking value",
        }

    def tier_for(self, priority_score: float) -> str:
        """Label for a priority score"""
        for tier, threshold in self.tier_thresholds.items():
            if priority_score >= threshold:
                return tier
        return "minimal"

    def score_contact(
        self,
        contact: Contact,
        neighbors: List[Contact],
        as_of: datetime,
        edges: Optional[List[Relationship]] = None,
    ) -> ContactScore:
        """
        Score a single contact

        Args:
            contact: Contact snapshot
            neighbors: Contacts connected to it by an edge in either direction
            as_of: Reference time for all recency calculations
            edges: The contact's edges, used for degree and mean strength

        Returns:
            ContactScore with three aggregates, six factors and the flag set
        """
        edges = edges or []
        neighbor_ids = {n.id for n in neighbors}
        for edge in edges:
            other = edge.other_end(contact.id)
            if other and other != contact.id:
                neighbor_ids.add(other)
        degree = len(neighbor_ids)

        indicators, flags = self._calculate_opportunity_indicators(contact, edges, as_of)
        factors = {
            "network_position": self._calculate_network_position(contact, degree),
            "relationship_strength": self._calculate_relationship_strength(contact, edges, as_of),
            "professional_relevance": self._calculate_professional_relevance(contact),
            "mutual_connections": self._calculate_mutual_connections(neighbors, degree),
            "engagement_pattern": self._calculate_engagement_pattern(contact),
            "opportunity_indicators": indicators,
        }

        weights = self.config.scoring
        priority = self._combine(factors, weights.priority.as_dict())
        opportunity = self._combine(factors, weights.opportunity.as_dict())
        strategic = self._combine(factors, weights.strategic.as_dict())

        return ContactScore(
            contact_id=contact.id,
            priority_score=priority,
            opportunity_score=opportunity,
            strategic_value=strategic,
            factors=factors,
            flags=flags,
            tier=self.tier_for(priority),
            scored_at=as_of,
        )

    def score_account(self, account_id: str) -> BatchResult:
        """
        Score every ACTIVE contact of an account and write the results back

        Contacts are processed in chunks, each in its own transaction. The
        same ``as_of`` is used for the whole run so reruns on unchanged data
        write identical scores.
        """
        result = BatchResult(operation="contact_scoring", account_id=account_id)
        as_of = self.clock()

        everyone = {c.id: c for c in self.uow.contacts.list(account_id)}
        active = sorted(
            (c for c in everyone.values() if c.status == ContactStatus.ACTIVE),
            key=lambda c: c.id,
        )
        edges_by_contact: Dict[str, List[Relationship]] = {}
        for edge in self.uow.relationships.list_account_edges(account_id):
            edges_by_contact.setdefault(edge.contact_id, []).append(edge)
            edges_by_contact.setdefault(edge.related_contact_id, []).append(edge)

        logger.info(f"Scoring {len(active)} contacts for account {account_id}")

        def process_chunk(chunk: List[Contact]) -> int:
            for contact in chunk:
                edges = edges_by_contact.get(contact.id, [])
                neighbors = [
                    everyone[other]
                    for other in sorted({e.other_end(contact.id) for e in edges})
                    if other in everyone and other != contact.id
                ]
                score = self.score_contact(contact, neighbors, as_of, edges)
                self._write_back(score)
            return 0

        run_in_chunks(self.uow, active, self.chunk_size, process_chunk, result, item_id=lambda c: c.id)
        logger.info(f"Scored {result.succeeded} contacts for account {account_id}, {result.failed} failed")
        return result

    def rescore_contact(self, contact_id: str) -> ContactScore:
        """Score one contact from storage and persist the result"""
        contact = self.uow.contacts.get(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")

        edges = self.uow.relationships.list_edges(contact_id)
        neighbors = []
        for other_id in sorted({e.other_end(contact_id) for e in edges} - {contact_id}):
            other = self.uow.contacts.get(other_id)
            if other is not None:
                neighbors.append(other)

        score = self.score_contact(contact, neighbors, self.clock(), edges)
        with self.uow.transaction():
            self._write_back(score)
        return score

    def top_priority(self, account_id: str, limit: int = 20) -> List[Contact]:
        scored = [c for c in self.uow.contacts.list(account_id, ContactStatus.ACTIVE) if c.priority_score is not None]
        scored.sort(key=lambda c: (-c.priority_score, -(c.opportunity_score or 0), c.id))
        return scored[:limit]

    def high_opportunity(self, account_id: str, min_score: float = 70, limit: int = 20) -> List[Contact]:
        hits = [
            c for c in self.uow.contacts.list(account_id, ContactStatus.ACTIVE)
            if c.opportunity_score is not None and c.opportunity_score >= min_score
        ]
        hits.sort(key=lambda c: (-c.opportunity_score, -(c.priority_score or 0), c.id))
        return hits[:limit]

    def strategic_recommendations(self, account_id: str, min_value: float = 60, limit: int = 20) -> List[Contact]:
        hits = [
            c for c in self.uow.contacts.list(account_id, ContactStatus.ACTIVE)
            if c.strategic_value is not None and c.strategic_value >= min_value
        ]
        hits.sort(key=lambda c: (-c.strategic_value, -(c.priority_score or 0), c.id))
        return hits[:limit]

    def _write_back(self, score: ContactScore) -> None:
        self.uow.contacts.update(score.contact_id, {
            "priority_score": score.priority_score,
            "opportunity_score": score.opportunity_score,
            "strategic_value": score.strategic_value,
            "opportunity_flags": set(score.flags),
            "scoring_factors": score.factors_dict(),
            "last_scored_at": score.scored_at,
        })

    @staticmethod
    def _combine(factors: Dict[str, FactorScore], weights: Dict[str, float]) -> float:
        total = sum(factors[name].score * weight for name, weight in weights.items())
        return round(_clip(total), 2)

    def _calculate_network_position(self, contact: Contact, degree: int) -> FactorScore:
        """Influence, connection count and centrality"""
        has_analytics = any(
            value is not None
            for value in (contact.influence_score, contact.betweenness_centrality, contact.total_connections)
        )
        if not has_analytics and degree == 0:
            return FactorScore(NO_ANALYTICS_SCORE, "No network analytics data", {"connections": 0})

        connections = contact.total_connections if contact.total_connections is not None else degree
        influence = _clip((contact.influence_score or 0.0) * 100)
        connections_score = _clip(math.log10(connections + 1) * 25)
        centrality = _clip((contact.betweenness_centrality or 0.0) * 100)
        score = influence * 0.4 + connections_score * 0.3 + centrality * 0.3
        if not has_analytics:
            score = max(NO_ANALYTICS_SCORE, score)

        return FactorScore(
            round(score, 2),
            f"Network influence: {round(influence)}/100, Connections: {connections}, "
            f"Centrality: {round(centrality)}/100",
            {"influence": influence, "connections": connections, "centrality": centrality},
        )

    def _calculate_relationship_strength(
        self, contact: Contact, edges: List[Relationship], as_of: datetime
    ) -> FactorScore:
        """Recency, outreach frequency, relationship type and edge strength"""
        days_since_contact = _days_between(contact.last_contact_date, as_of)
        recency = 0.0 if days_since_contact is None else _clip(100 - (days_since_contact / 30) * 20)

        days_since_connection = _days_between(contact.connection_date, as_of)
        if days_since_connection is None:
            days_since_connection = 365
        frequency = (contact.outreach_sent / days_since_connection) * 30 if days_since_connection > 0 else 0.0

        type_score = RELATIONSHIP_TYPE_SCORES.get(contact.relationship_type, 50)
        score = recency * 0.4 + min(100.0, frequency * 50) * 0.3 + type_score * 0.3

        mean_strength = None
        if edges:
            mean_strength = sum(e.strength for e in edges) / len(edges)
            score = score * 0.8 + mean_strength * 100 * 0.2

        last_contact = f"{days_since_contact} days ago" if days_since_contact is not None else "Never"
        relationship = contact.relationship_type.value if contact.relationship_type else "Unknown"
        return FactorScore(
            round(_clip(score), 2),
            f"Last contact: {last_contact}, Contact frequency: {round(frequency, 1)}/month, "
            f"Relationship: {relationship}",
            {"days_since_contact": days_since_contact, "frequency": round(frequency, 2), "mean_edge_strength": mean_strength},
        )

    def _calculate_professional_relevance(self, contact: Contact) -> FactorScore:
        industry = self._calculate_industry_alignment(contact)
        seniority = self._calculate_seniority_level(contact.position)
        company_size = self._estimate_company_size(contact.company)
        score = industry * 0.4 + seniority * 0.35 + company_size * 0.25
        return FactorScore(
            round(score, 2),
            f"Industry alignment: {industry}/100, Seniority: {seniority}/100, Company scale: {company_size}/100",
            {"industry_alignment": industry, "seniority": seniority, "company_size": company_size},
        )

    def _calculate_mutual_connections(self, neighbors: List[Contact], degree: int) -> FactorScore:
        high_value = [n for n in neighbors if n.tier in (ContactTier.TIER_1, ContactTier.TIER_2)]
        quality = len(high_value) / max(1, degree) * 100
        score = _clip(math.log10(degree + 1) * 40 + quality * 0.6)
        return FactorScore(
            round(score, 2),
            f"{degree} connections, {len(high_value)} high-value connections",
            {"connections": degree, "high_value": len(high_value), "network_quality": round(quality, 2)},
        )

    def _calculate_engagement_pattern(self, contact: Contact) -> FactorScore:
        sent = contact.outreach_sent
        response_rate = (contact.outreach_responded / sent) * 100 if sent > 0 else 0.0
        # Contacts we have not over-contacted score higher
        outreach = 100.0 if sent == 0 else max(0.0, 100 - sent * 5)
        if contact.campaign_contacts > 0:
            campaign = (contact.campaign_responses / contact.campaign_contacts) * 100
        else:
            campaign = 50.0
        score = response_rate * 0.4 + outreach * 0.3 + campaign * 0.3
        return FactorScore(
            round(_clip(score), 2),
            f"Response rate: {round(response_rate)}%, Outreach count: {sent}, "
            f"Campaign performance: {round(campaign)}%",
            {"response_rate": round(response_rate, 1), "outreach_count": sent, "campaign_performance": round(campaign)},
        )

    def _calculate_opportunity_indicators(self, contact: Contact, edges: List[Relationship], as_of: datetime):
        flags: Set[OpportunityFlag] = set()
        score = 0.0
        company = (contact.company or "").lower()
        position = (contact.position or "").lower()

        days_since_update = _days_between(contact.updated_at, as_of)
        if days_since_update is not None and days_since_update < 30 and (contact.position or contact.company):
            flags.add(OpportunityFlag.RECENT_JOB_CHANGE)
            score += 25

        trend = 80 if any(_contains(company, k) for k in TRENDING_KEYWORDS) else 50
        score += trend * 0.3

        if any(_contains(position, k) for k in EXPANSION_KEYWORDS):
            flags.add(OpportunityFlag.ROLE_EXPANSION_POTENTIAL)
            score += 20

        if any(_contains(company, k) for k in GROWTH_KEYWORDS):
            flags.add(OpportunityFlag.COMPANY_GROWTH)
            score += 15

        days_since_contact = _days_between(contact.last_contact_date, as_of)
        if days_since_contact is not None and 90 < days_since_contact < 365:
            flags.add(OpportunityFlag.RECONNECTION_OPPORTUNITY)
            score += 10

        if self._calculate_seniority_level(contact.position) >= DECISION_MAKER_SENIORITY:
            flags.add(OpportunityFlag.DECISION_MAKER)

        if any(e.strength >= WARM_EDGE_STRENGTH for e in edges):
            flags.add(OpportunityFlag.WARM_INTRO_AVAILABLE)

        labels = ", ".join(sorted(f.value.lower() for f in flags)) or "none"
        return FactorScore(
            round(_clip(score), 2),
            f"Opportunity flags: {labels}",
            {"industry_trend": trend},
        ), flags

    def _calculate_industry_alignment(self, contact: Contact) -> int:
        text = " ".join(filter(None, [contact.company, contact.position, contact.industry])).lower()
        matches = [k for k in RELEVANT_KEYWORDS if _contains(text, k)]
        goal_alignment = 20 if any(interest in text for interest in self.interests) else 0
        return min(100, len(matches) * 15 + goal_alignment)

    @staticmethod
    def _calculate_seniority_level(position: Optional[str]) -> int:
        text = (position or "").lower()
        for keyword, level in SENIORITY_KEYWORDS:
            if _contains(text, keyword):
                return level
        return DEFAULT_SENIORITY

    @staticmethod
    def _estimate_company_size(company: Optional[str]) -> int:
        text = (company or "").lower()
        if any(_contains(text, k) for k in LARGE_COMPANIES):
            return 90
        if any(_contains(text, k) for k in INCORPORATED_MARKERS):
            return 60
        return 40
