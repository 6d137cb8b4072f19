"""Pydantic response models shared by the routers."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from models.domain import (
    CandidateStatus,
    ContactTier,
    OpportunityCategory,
    OpportunityFlag,
    OpportunityPriority,
    OpportunityStatus,
    OpportunityType,
    RelationshipType,
    SignalType,
)


class BatchResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    operation: str
    account_id: str
    processed: int
    succeeded: int
    failed: int
    created: int
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class SignalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    signal_type: SignalType
    score: float
    detail: str


class CandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    contact_id: str
    related_contact_id: str
    inferred_type: RelationshipType
    confidence: float
    evidence: List[SignalResponse]
    status: CandidateStatus
    source: str
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None


class RelationshipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    contact_id: str
    related_contact_id: str
    type: RelationshipType
    strength: float
    confidence: float
    notes: Optional[str] = None
    is_verified: bool
    is_mutual: bool
    source: str


class ContactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    company: Optional[str] = None
    position: Optional[str] = None
    tier: Optional[ContactTier] = None
    priority_score: Optional[float] = None
    opportunity_score: Optional[float] = None
    strategic_value: Optional[float] = None
    opportunity_flags: Set[OpportunityFlag] = Field(default_factory=set)
    last_scored_at: Optional[datetime] = None


class OpportunityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    category: OpportunityCategory
    type: OpportunityType
    title: str
    description: str
    confidence_score: float
    impact_score: float
    urgency_score: float
    priority: OpportunityPriority
    status: OpportunityStatus
    primary_contact_id: str
    secondary_contact_id: Optional[str] = None
    reasoning: List[str] = Field(default_factory=list)
    narrative: str = ""
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    acted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
