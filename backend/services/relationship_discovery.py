"""
Relationship Discovery Service

Infers undeclared relationships between contacts from shared attributes and
manages the review lifecycle of the resulting candidates. Candidates are keyed
by an evidence fingerprint so a rejected suggestion never resurfaces for the
same evidence. A pair holds at most one PENDING candidate; new evidence for the
pair refreshes it in place.
"""

import hashlib
import logging
from collections import defaultdict
from datetime import datetime, timezone
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import settings
from lib.exceptions import ConflictError, NotFoundError
from models.domain import (
    BatchResult,
    CandidateStatus,
    Contact,
    ContactStatus,
    PotentialRelationship,
    Relationship,
    RelationshipType,
    Signal,
    SignalType,
)
from repositories.base import UnitOfWork
from services.batching import run_in_chunks
from services.evidence_extractor import blocking_keys, evidence_signature, extract_evidence
from services.weights import EngineConfig

logger = logging.getLogger(__name__)

SIGNAL_ORDER = list(SignalType)

# Signals that imply a working relationship
COLLEAGUE_SIGNALS = {SignalType.SAME_COMPANY, SignalType.SAME_EMAIL_DOMAIN}

APPROVED_STRENGTH_CAP = 0.8

Pair = Tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint_for(contact_a_id: str, contact_b_id: str, evidence: Iterable[Signal]) -> str:
    """sha256 over the sorted contact pair and the evidence signature"""
    low, high = sorted((contact_a_id, contact_b_id))
    signature = ";".join(f"{name}:{score:.2f}" for name, score in evidence_signature(evidence))
    return hashlib.sha256(f"{low}|{high}|{signature}".encode("utf-8")).hexdigest()


class RelationshipDiscoveryService:
    """Discovers, persists and reviews candidate relationships"""

    def __init__(
        self,
        uow: UnitOfWork,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        pair_ceiling: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ):
        """
        Initialize the discovery service

        Args:
            uow: Repositories and transaction boundary
            config: Versioned weights; defaults to the built-in version
            clock: Source of "now" for review timestamps
            pair_ceiling: Contact count above which pairs are blocked by company/domain
            chunk_size: Pairs persisted per transaction
        """
        self.uow = uow
        self.config = config or EngineConfig()
        self.clock = clock
        self.pair_ceiling = pair_ceiling or settings.DISCOVERY_PAIR_CEILING
        self.chunk_size = chunk_size or settings.DISCOVERY_CHUNK_SIZE

    @property
    def confidence_floor(self) -> float:
        return self.config.discovery_confidence_floor

    def evaluate(
        self,
        a: Contact,
        b: Contact,
        neighbors_a: Iterable[str] = (),
        neighbors_b: Iterable[str] = (),
    ) -> Optional[PotentialRelationship]:
        """
        Score a pair without consulting storage

        Returns:
            An unsaved PENDING candidate, or None below the confidence floor
        """
        if a.id == b.id:
            return None

        evidence = extract_evidence(a, b, neighbors_a, neighbors_b)
        if not evidence:
            return None

        weights = self.config.discovery
        confidence = sum(weights.weight_for(s.signal_type) * s.score for s in evidence)
        confidence = round(max(0.0, min(1.0, confidence)), 4)
        if confidence < self.confidence_floor:
            return None

        return PotentialRelationship(
            account_id=a.account_id,
            contact_id=a.id,
            related_contact_id=b.id,
            inferred_type=self._infer_type(evidence),
            confidence=confidence,
            evidence=evidence,
            fingerprint=fingerprint_for(a.id, b.id, evidence),
            created_at=self.clock(),
        )

    def discover_pair(self, a: Contact, b: Contact) -> Optional[PotentialRelationship]:
        """
        Candidate for a single pair, or None if it should not be suggested

        None is returned below the confidence floor, when any relationship
        already connects the pair, or when a candidate with the same
        fingerprint exists in any status.
        """
        if self.uow.relationships.exists_between(a.id, b.id):
            return None

        candidate = self.evaluate(
            a,
            b,
            self.uow.relationships.neighbors_of(a.id),
            self.uow.relationships.neighbors_of(b.id),
        )
        if candidate is None:
            return None
        if self.uow.relationships.find_candidate(candidate.fingerprint) is not None:
            return None
        return candidate

    def discover_for_contact(self, contact_id: str) -> List[PotentialRelationship]:
        """
        Discover and persist candidates between one contact and the rest of its account

        Args:
            contact_id: The contact to match against others

        Returns:
            New candidates sorted by confidence, highest first
        """
        contact = self.uow.contacts.get(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")

        try:
            others = [
                c for c in self.uow.contacts.list(contact.account_id, ContactStatus.ACTIVE)
                if c.id != contact_id
            ]
            found = []
            with self.uow.transaction():
                for other in others:
                    candidate = self.discover_pair(contact, other)
                    if candidate is not None and self._record(candidate) is not None:
                        found.append(candidate)

            found.sort(key=lambda c: c.confidence, reverse=True)
            logger.info(f"Discovered {len(found)} candidate relationships for contact {contact_id}")
            return found

        except Exception as e:
            logger.error(f"Error discovering relationships for contact {contact_id}: {e}")
            raise

    def discover_batch(self, account_id: str) -> BatchResult:
        """
        Discover candidates across all ACTIVE contacts of an account

        Pairs already connected by an edge are skipped. Accounts larger than
        the pair ceiling only compare contacts sharing a company or corporate
        email domain. Each chunk of pairs commits on its own; a failing chunk
        is recorded in the result and the batch continues.
        """
        result = BatchResult(operation="relationship_discovery", account_id=account_id)

        contacts = self.uow.contacts.list(account_id, ContactStatus.ACTIVE)
        if len(contacts) < 2:
            logger.info(f"Account {account_id} has fewer than 2 active contacts, nothing to discover")
            return result

        by_id = {c.id: c for c in contacts}
        edges = self.uow.relationships.list_account_edges(account_id)
        neighbors: Dict[str, Set[str]] = defaultdict(set)
        connected: Set[Pair] = set()
        for edge in edges:
            neighbors[edge.contact_id].add(edge.related_contact_id)
            neighbors[edge.related_contact_id].add(edge.contact_id)
            connected.add(tuple(sorted((edge.contact_id, edge.related_contact_id))))

        pairs = [pair for pair in self._candidate_pairs(contacts) if pair not in connected]
        logger.info(f"Scanning {len(pairs)} contact pairs for account {account_id}")

        refreshed = 0

        def process_chunk(chunk: List[Pair]) -> int:
            nonlocal refreshed
            created = 0
            for id_a, id_b in chunk:
                candidate = self.evaluate(by_id[id_a], by_id[id_b], neighbors[id_a], neighbors[id_b])
                if candidate is None:
                    continue
                outcome = self._record(candidate)
                if outcome == "created":
                    created += 1
                elif outcome == "refreshed":
                    refreshed += 1
            return created

        run_in_chunks(self.uow, pairs, self.chunk_size, process_chunk, result, item_id=lambda p: f"{p[0]}:{p[1]}")
        logger.info(
            f"Discovery for account {account_id}: {result.created} new candidates, "
            f"{refreshed} refreshed, {result.failed} pairs failed"
        )
        return result

    def approve(self, candidate_id: str, is_mutual: bool = False) -> Relationship:
        """
        Promote a PENDING candidate to a verified relationship

        Args:
            candidate_id: Candidate to approve
            is_mutual: Record the relationship as holding in both directions

        Returns:
            The created relationship edge

        Raises:
            NotFoundError: Unknown candidate
            ConflictError: Candidate is not PENDING, or the pair is already connected
        """
        with self.uow.transaction():
            candidate = self.uow.relationships.get_candidate(candidate_id)
            if candidate is None:
                raise NotFoundError(f"Candidate {candidate_id} not found")

            reviewed_at = self.clock()
            self.uow.relationships.update_candidate(
                candidate_id,
                CandidateStatus.APPROVED,
                reviewed_at=reviewed_at,
                expected_status=CandidateStatus.PENDING,
            )
            if self.uow.relationships.exists_between(candidate.contact_id, candidate.related_contact_id):
                raise ConflictError(
                    "Contacts are already connected",
                    {"contact_id": candidate.contact_id, "related_contact_id": candidate.related_contact_id},
                )
            for other in self.uow.relationships.pending_for_pair(candidate.contact_id, candidate.related_contact_id):
                self.uow.relationships.update_candidate(
                    other.id,
                    CandidateStatus.SUPERSEDED,
                    reviewed_at=reviewed_at,
                    expected_status=CandidateStatus.PENDING,
                )

            edge = Relationship(
                contact_id=candidate.contact_id,
                related_contact_id=candidate.related_contact_id,
                type=candidate.inferred_type,
                strength=min(candidate.confidence, APPROVED_STRENGTH_CAP),
                confidence=candidate.confidence,
                notes=self._summarize_evidence(candidate.evidence),
                is_verified=True,
                is_mutual=is_mutual,
                source="discovery_approved",
            )
            self.uow.relationships.create(edge)

        logger.info(f"Approved candidate {candidate_id} as relationship {edge.id}")
        return edge

    def reject(self, candidate_id: str) -> PotentialRelationship:
        """Mark a PENDING candidate REJECTED; its fingerprint is suppressed for good"""
        with self.uow.transaction():
            candidate = self.uow.relationships.get_candidate(candidate_id)
            if candidate is None:
                raise NotFoundError(f"Candidate {candidate_id} not found")
            rejected = self.uow.relationships.update_candidate(
                candidate_id,
                CandidateStatus.REJECTED,
                reviewed_at=self.clock(),
                expected_status=CandidateStatus.PENDING,
            )
        logger.info(f"Rejected candidate {candidate_id}")
        return rejected

    def list_pending(self, account_id: str) -> List[PotentialRelationship]:
        pending = self.uow.relationships.list_candidates(account_id, CandidateStatus.PENDING)
        return sorted(pending, key=lambda c: (-c.confidence, c.fingerprint))

    def _record(self, candidate: PotentialRelationship) -> Optional[str]:
        """
        Persist a scored candidate, keeping one PENDING candidate per pair

        Returns:
            "created", "refreshed", or None when the fingerprint is already known
        """
        relationships = self.uow.relationships
        if relationships.find_candidate(candidate.fingerprint) is not None:
            return None

        pending = relationships.pending_for_pair(candidate.contact_id, candidate.related_contact_id)
        if not pending:
            relationships.save_candidate(candidate)
            return "created"

        current, extras = pending[0], pending[1:]
        for extra in extras:
            relationships.update_candidate(
                extra.id,
                CandidateStatus.SUPERSEDED,
                reviewed_at=self.clock(),
                expected_status=CandidateStatus.PENDING,
            )
        refreshed = relationships.refresh_candidate(current.id, candidate)
        candidate.id = refreshed.id
        candidate.contact_id = refreshed.contact_id
        candidate.related_contact_id = refreshed.related_contact_id
        candidate.created_at = refreshed.created_at
        logger.debug(f"Refreshed candidate {refreshed.id} with new evidence")
        return "refreshed"

    def _candidate_pairs(self, contacts: List[Contact]) -> List[Pair]:
        """Unordered pairs, blocked by company/domain above the ceiling"""
        ids = sorted(c.id for c in contacts)
        if len(contacts) <= self.pair_ceiling:
            return list(combinations(ids, 2))

        blocks: Dict[str, List[str]] = defaultdict(list)
        for contact in contacts:
            for key in blocking_keys(contact):
                blocks[key].append(contact.id)

        pairs: Set[Pair] = set()
        for members in blocks.values():
            pairs.update(combinations(sorted(members), 2))
        logger.info(f"Blocking reduced {len(contacts)} contacts to {len(pairs)} pairs")
        return sorted(pairs)

    def _infer_type(self, evidence: List[Signal]) -> RelationshipType:
        weights = self.config.discovery
        dominant = max(
            evidence,
            key=lambda s: (weights.weight_for(s.signal_type) * s.score, -SIGNAL_ORDER.index(s.signal_type)),
        )
        if dominant.signal_type in COLLEAGUE_SIGNALS:
            return RelationshipType.COLLEAGUE
        return RelationshipType.ACQUAINTANCE

    @staticmethod
    def _summarize_evidence(evidence: List[Signal]) -> str:
        return "; ".join(s.detail for s in evidence)
